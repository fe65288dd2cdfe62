"""
Speech segment data model.
"""

from dataclasses import dataclass
import numpy as np


@dataclass
class Segment:
    """A contiguous run of speech cut from the capture stream."""
    samples: np.ndarray  # int16 mono
    start_ms: int
    end_ms: int
    sample_rate: int
    segment_id: int  # For ordering

    def __post_init__(self):
        if self.end_ms <= self.start_ms:
            raise ValueError(f"Segment {self.segment_id} has end_ms {self.end_ms} <= start_ms {self.start_ms}")

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms
