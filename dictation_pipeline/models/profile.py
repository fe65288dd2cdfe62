"""
Jargon profile data model.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
import typing as t


class Provenance(Enum):
    BUILTIN = "builtin"
    USER = "user"


@dataclass(frozen=True)
class Correction:
    """Replace ``source`` with ``replacement`` wherever it appears as a whole word."""
    source: str
    replacement: str

    def __post_init__(self):
        if not self.source.strip() or not self.replacement.strip():
            raise ValueError("Correction source and replacement must be non-empty")


@dataclass(frozen=True)
class Profile:
    id: str
    label: str
    terms: t.Tuple[str, ...] = ()
    corrections: t.Tuple[Correction, ...] = ()
    enabled: bool = True
    provenance: Provenance = Provenance.USER

    @property
    def is_builtin(self) -> bool:
        return self.provenance is Provenance.BUILTIN

    def with_enabled(self, enabled: bool) -> "Profile":
        return replace(self, enabled=enabled)

    def to_pack_entry(self) -> t.Dict[str, t.Any]:
        """Serialize into the jargon pack document shape."""
        return {
            "id": self.id,
            "label": self.label,
            "terms": list(self.terms),
            "corrections": [{"from": c.source, "to": c.replacement} for c in self.corrections],
        }
