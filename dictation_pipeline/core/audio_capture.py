"""
Microphone capture.
Reads fixed-size int16 frames from PyAudio on a background thread and
pushes them into a bounded frame queue without ever blocking.
"""

import logging
import threading
import typing as t

import numpy as np
import pyaudio

from dictation_pipeline.exceptions import CaptureError


class AudioCapture:
    """Captures mono 16-bit audio frames from an input device."""
    AUDIO_FORMAT = pyaudio.paInt16
    AUDIO_CHANNELS = 1

    def __init__(self, settings, frame_queue, on_error: t.Optional[t.Callable[[CaptureError], None]] = None):
        """
        Args:
            settings: Settings snapshot for this session
            frame_queue: DropOldestQueue receiving numpy int16 frames
            on_error: Called from the capture thread if the stream fails mid-session
        """
        self.logger = logging.getLogger(__name__)
        self.sample_rate = settings.sample_rate
        self.device_index = settings.input_device_index
        self.frame_samples = int(settings.sample_rate * settings.frame_ms / 1000)
        self.frame_queue = frame_queue
        self.on_error = on_error
        self.dropped_frames = 0

        self._audio = None
        self._stream = None
        self._thread = None
        self._stop_event = threading.Event()

    def start(self):
        """Open the input stream and begin capturing.

        Raises:
            CaptureError: The device could not be opened
        """
        self.logger.info(f"Opening audio stream on device index {self.device_index} at {self.sample_rate}Hz")
        self._audio = pyaudio.PyAudio()
        try:
            self._stream = self._audio.open(
                format=self.AUDIO_FORMAT,
                channels=self.AUDIO_CHANNELS,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frame_samples,
                input_device_index=self.device_index,
            )
        except (IOError, OSError, ValueError) as e:
            self._audio.terminate()
            self._audio = None
            raise CaptureError(f"Could not open input device {self.device_index}: {e}") from e

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._capture_loop, name="audio-capture", daemon=True)
        self._thread.start()

    def _capture_loop(self):
        try:
            while not self._stop_event.is_set():
                data = self._stream.read(self.frame_samples, exception_on_overflow=False)
                # Stopped while blocked in read()
                if self._stop_event.is_set():
                    break
                frame = np.frombuffer(data, dtype=np.int16).copy()
                if self.frame_queue.put_drop_oldest(frame) is not None:
                    self.dropped_frames += 1
                    if self.dropped_frames % 100 == 1:
                        self.logger.warning(f"Frame queue full, {self.dropped_frames} frames dropped so far")
        except (IOError, OSError) as e:
            if self._stop_event.is_set():
                return
            self.logger.error(f"Audio stream failed: {e}")
            if self.on_error:
                self.on_error(CaptureError(f"Audio stream failed: {e}"))

    def stop(self):
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except (IOError, OSError) as e:
                self.logger.warning(f"Error closing audio stream: {e}")
            self._stream = None
        if self._audio is not None:
            self._audio.terminate()
            self._audio = None
        self.logger.info("Audio stream closed")

