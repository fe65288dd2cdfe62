"""
Audio preprocessing helpers applied before transcription.
"""

import logging

import numpy as np
from scipy import signal

logger = logging.getLogger(__name__)


def int16_to_float32(samples: np.ndarray) -> np.ndarray:
    """Convert 16-bit PCM samples to float32 in [-1.0, 1.0]."""
    return samples.astype(np.float32) / 32768.0


def normalize_audio(audio: np.ndarray) -> np.ndarray:
    """
    Scale audio so its peak amplitude is 0.9.

    Args:
        audio: numpy array of audio data

    Returns:
        Normalized audio, or the input unchanged if it is silent
    """
    peak = np.abs(audio).max() if audio.size else 0
    if peak > 0:
        return audio / peak * 0.9
    return audio


def apply_highpass_filter(audio: np.ndarray, sample_rate: int, cutoff: int = 100) -> np.ndarray:
    """
    Remove low-frequency rumble with a 2nd order Butterworth high-pass.

    Args:
        audio: numpy array of audio data
        sample_rate: audio sample rate in Hz
        cutoff: cutoff frequency in Hz
    """
    sos = signal.butter(2, cutoff, 'hp', fs=sample_rate, output='sos')
    return signal.sosfilt(sos, audio)


def apply_noise_reduction(audio: np.ndarray, sample_rate: int) -> np.ndarray:
    """
    Spectral-gating noise reduction. The first 0.3 s is used as the
    noise profile when the clip is long enough.
    """
    import noisereduce as nr
    noise_sample = audio[:int(sample_rate * 0.3)] if len(audio) > sample_rate * 0.3 else None
    return nr.reduce_noise(y=audio, sr=sample_rate,
                           y_noise=noise_sample,
                           prop_decrease=0.75,
                           stationary=False)


def preprocess_segment(samples: np.ndarray, sample_rate: int, use_noise_reduction=False) -> np.ndarray:
    """Prepare int16 segment samples for the recogniser as float32."""
    audio = int16_to_float32(samples)
    audio = apply_highpass_filter(audio, sample_rate)
    if use_noise_reduction:
        audio = apply_noise_reduction(audio, sample_rate)
    return normalize_audio(audio).astype(np.float32)
