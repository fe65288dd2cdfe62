"""
Transcription model lifecycle state.
"""

from dataclasses import dataclass
from enum import Enum
import typing as t


class ModelStatus(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class LifecycleEvent(Enum):
    LOADING_STARTED = "loading_started"
    LOADED = "loaded"
    LOADING_FAILED = "loading_failed"
    UNLOADED = "unloaded"


@dataclass(frozen=True)
class ModelHandle:
    model_id: t.Optional[str]
    status: ModelStatus
    loaded_at: t.Optional[float] = None
    error: t.Optional[str] = None


@dataclass(frozen=True)
class ModelStateEvent:
    kind: LifecycleEvent
    model_id: t.Optional[str] = None
    error: t.Optional[str] = None
