"""
Result wrapper for optional pipeline stages.
"""

from dataclasses import dataclass
import typing as t


@dataclass(frozen=True)
class StageResult:
    """Value produced by a stage, plus the non-fatal error it hit, if any.

    A failed stage still carries a usable value (the fallback the caller
    should continue with).
    """
    value: t.Any
    error: t.Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value):
        return cls(value=value)

    @classmethod
    def failure(cls, error, value=None):
        return cls(value=value, error=error)
