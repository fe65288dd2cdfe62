"""
Recording state machine: idle -> recording -> processing -> idle.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
import typing as t


class RecordingMode(Enum):
    TOGGLE = "toggle"
    PUSH_TO_TALK = "push_to_talk"


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


@dataclass
class RecordingSession:
    mode: RecordingMode
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    started_at: float = field(default_factory=time.time)


class Transition(Enum):
    """What the caller must do after feeding a signal to the state machine."""
    NONE = "none"
    START = "start"
    STOP = "stop"
    QUEUED = "queued"


class RecordingStateMachine:
    """Thread-safe recording control.

    Only one session exists process-wide. A start requested while the
    previous session is still processing is remembered (at most once) and
    handed back by ``complete()``.
    """

    def __init__(self, mode=RecordingMode.TOGGLE):
        self.logger = logging.getLogger(__name__)
        self.mode = mode
        self._state = RecordingState.IDLE
        self._session: t.Optional[RecordingSession] = None
        self._pending_start = False
        self._lock = threading.Lock()

    @property
    def state(self) -> RecordingState:
        with self._lock:
            return self._state

    @property
    def session(self) -> t.Optional[RecordingSession]:
        with self._lock:
            return self._session

    @property
    def has_pending_start(self) -> bool:
        with self._lock:
            return self._pending_start

    def set_mode(self, mode: RecordingMode):
        with self._lock:
            self.mode = mode

    def start(self) -> Transition:
        with self._lock:
            return self._start_locked()

    def stop(self) -> Transition:
        with self._lock:
            return self._stop_locked()

    def toggle(self) -> Transition:
        with self._lock:
            if self._state is RecordingState.RECORDING:
                return self._stop_locked()
            return self._start_locked()

    def key_press(self) -> Transition:
        with self._lock:
            if self.mode is RecordingMode.PUSH_TO_TALK:
                return self._start_locked()
            if self._state is RecordingState.RECORDING:
                return self._stop_locked()
            return self._start_locked()

    def key_release(self) -> Transition:
        with self._lock:
            if self.mode is not RecordingMode.PUSH_TO_TALK:
                return Transition.NONE
            return self._stop_locked()

    def complete(self) -> bool:
        """Finish processing. Returns True if a queued start should be launched now."""
        with self._lock:
            if self._state is not RecordingState.PROCESSING:
                self.logger.warning(f"complete() called in state {self._state.value}")
                return False
            self._state = RecordingState.IDLE
            self._session = None
            pending = self._pending_start
            self._pending_start = False
            return pending

    def _start_locked(self) -> Transition:
        if self._state is RecordingState.IDLE:
            self._state = RecordingState.RECORDING
            self._session = RecordingSession(mode=self.mode)
            self.logger.info(f"Recording started (session {self._session.session_id}, {self.mode.value})")
            return Transition.START
        if self._state is RecordingState.PROCESSING:
            if not self._pending_start:
                self.logger.info("Start requested while processing, queued")
            self._pending_start = True
            return Transition.QUEUED
        return Transition.NONE

    def _stop_locked(self) -> Transition:
        if self._state is not RecordingState.RECORDING:
            return Transition.NONE
        self._state = RecordingState.PROCESSING
        self.logger.info(f"Recording stopped (session {self._session.session_id}), processing")
        return Transition.STOP
