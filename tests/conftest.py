import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

SAMPLE_RATE = 16000
FRAME_SAMPLES = 480  # 30 ms at 16 kHz


def speech_frame(level=1000):
    return np.full(FRAME_SAMPLES, level, dtype=np.int16)


def silence_frame():
    return np.zeros(FRAME_SAMPLES, dtype=np.int16)


class LevelClassifier:
    """Speech whenever any sample is non-zero."""

    def is_speech(self, samples):
        return bool(np.any(samples))


@pytest.fixture
def classifier():
    return LevelClassifier()
