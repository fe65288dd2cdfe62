"""
Voice-activity segmentation.
Turns a stream of fixed-size audio frames into speech segments.
"""

import collections
import logging
import queue
import threading
import typing as t

import numpy as np
import webrtcvad

from dictation_pipeline.exceptions import SegmentationError
from dictation_pipeline.models.segment import Segment


class DropOldestQueue(queue.Queue):
    """Bounded FIFO that never blocks the producer.

    When full, the oldest unconsumed item is discarded to make room.
    """

    def __init__(self, maxsize):
        super().__init__(maxsize=maxsize)
        self._put_lock = threading.Lock()

    def put_drop_oldest(self, item):
        """Enqueue ``item``. Returns the item that was dropped, or None."""
        with self._put_lock:
            dropped = None
            while True:
                try:
                    self.put_nowait(item)
                    return dropped
                except queue.Full:
                    try:
                        dropped = self.get_nowait()
                    except queue.Empty:
                        pass


class WebRtcFrameClassifier:
    """Speech/non-speech decision from the WebRTC VAD."""

    def __init__(self, sample_rate, aggressiveness=2):
        self.sample_rate = sample_rate
        self._vad = webrtcvad.Vad(min(max(int(aggressiveness), 0), 3))

    def is_speech(self, samples: np.ndarray) -> bool:
        return bool(self._vad.is_speech(samples.tobytes(), self.sample_rate))


class EnergyFrameClassifier:
    """Mean absolute amplitude over a short smoothing window against a fixed threshold."""

    SMOOTHING_WINDOW = 3

    def __init__(self, threshold=500):
        self.threshold = threshold
        self._history = collections.deque(maxlen=self.SMOOTHING_WINDOW)

    def is_speech(self, samples: np.ndarray) -> bool:
        energy = float(np.abs(samples.astype(np.int32)).mean()) if samples.size else 0.0
        self._history.append(energy)
        return (sum(self._history) / len(self._history)) > self.threshold


def create_frame_classifier(settings):
    """Build the classifier named by ``settings.vad_backend``."""
    if settings.vad_backend == "energy":
        return EnergyFrameClassifier(settings.silence_threshold)
    if settings.vad_backend == "webrtc":
        return WebRtcFrameClassifier(settings.sample_rate, settings.vad_aggressiveness)
    raise ValueError(f"Unknown VAD backend: {settings.vad_backend}")


class VoiceActivitySegmenter:
    """Cuts speech segments out of a frame stream.

    Leading silence is dropped, trailing silence longer than
    ``trailing_silence_ms`` closes the segment and is trimmed, and a
    segment is cut before it would grow past ``max_segment_ms``. Segments shorter
    than ``min_segment_ms`` are discarded.
    """

    def __init__(self, classifier, sample_rate=16000, trailing_silence_ms=700,
                 min_segment_ms=300, max_segment_ms=30000,
                 on_segment: t.Optional[t.Callable[[Segment], None]] = None):
        self.logger = logging.getLogger(__name__)
        self.classifier = classifier
        self.sample_rate = sample_rate
        self.trailing_silence_ms = trailing_silence_ms
        self.min_segment_ms = min_segment_ms
        self.max_segment_ms = max_segment_ms
        self.on_segment = on_segment

        self.position_ms = 0.0
        self.emitted_ms = 0.0
        self.discarded_ms = 0.0
        self._next_id = 0
        self._reset_segment()

    @classmethod
    def from_settings(cls, settings, on_segment=None):
        return cls(
            create_frame_classifier(settings),
            sample_rate=settings.sample_rate,
            trailing_silence_ms=settings.trailing_silence_ms,
            min_segment_ms=settings.min_segment_ms,
            max_segment_ms=settings.max_segment_ms,
            on_segment=on_segment,
        )

    @property
    def in_speech(self) -> bool:
        return self._in_speech

    @property
    def silence_run_ms(self) -> float:
        return self._silence_run_ms

    def _reset_segment(self):
        self._in_speech = False
        self._frames = []
        self._frame_speech = []
        self._segment_start_ms = 0.0
        self._buffered_ms = 0.0
        self._silence_run_ms = 0.0

    def _decode(self, frame) -> np.ndarray:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            if len(frame) % 2:
                raise SegmentationError(f"Frame of {len(frame)} bytes is not 16-bit PCM")
            samples = np.frombuffer(bytes(frame), dtype=np.int16)
        elif isinstance(frame, np.ndarray):
            if frame.dtype != np.int16:
                raise SegmentationError(f"Frame dtype {frame.dtype} is not int16")
            samples = frame.reshape(-1)
        else:
            raise SegmentationError(f"Unsupported frame type {type(frame).__name__}")
        if samples.size == 0:
            raise SegmentationError("Empty frame")
        return samples

    def _classify(self, samples) -> bool:
        try:
            return self.classifier.is_speech(samples)
        except SegmentationError:
            raise
        except Exception as e:
            raise SegmentationError(f"Frame classification failed: {e}") from e

    def feed(self, frame) -> t.List[Segment]:
        """Consume one frame. Returns the segments completed by it."""
        try:
            samples = self._decode(frame)
            is_speech = self._classify(samples)
        except SegmentationError as e:
            self.logger.warning(f"Dropping frame at {self.position_ms:.0f}ms: {e}")
            if self._in_speech:
                self.logger.warning(f"Discarding open segment ({self._buffered_ms:.0f}ms) after bad frame")
                self.discarded_ms += self._buffered_ms
                self._reset_segment()
            return []

        frame_ms = samples.size * 1000.0 / self.sample_rate
        frame_start = self.position_ms
        self.position_ms += frame_ms
        completed = []

        if not self._in_speech:
            if not is_speech:
                self.discarded_ms += frame_ms
                return completed
            self._in_speech = True
            self._segment_start_ms = frame_start
        elif self._frames and self._buffered_ms + frame_ms > self.max_segment_ms:
            completed.extend(self._force_cut(frame_start))

        self._frames.append(samples)
        self._frame_speech.append(is_speech)
        self._buffered_ms += frame_ms
        self._silence_run_ms = 0.0 if is_speech else self._silence_run_ms + frame_ms

        if self._silence_run_ms > self.trailing_silence_ms:
            segment = self._close(trim_silence=True)
            if segment:
                completed.append(segment)
        elif self._buffered_ms >= self.max_segment_ms:
            completed.extend(self._force_cut(self.position_ms))
        return completed

    def _force_cut(self, next_start_ms) -> t.List[Segment]:
        """Close the open segment without trimming; speech continues in a new one."""
        self.logger.debug(f"Forced cut after {self._buffered_ms:.0f}ms (max {self.max_segment_ms}ms)")
        segment = self._close(trim_silence=False)
        self._in_speech = True
        self._segment_start_ms = next_start_ms
        return [segment] if segment else []

    def flush(self) -> t.List[Segment]:
        """Close any open segment at the end of the stream."""
        if not self._in_speech or not self._frames:
            self._reset_segment()
            return []
        segment = self._close(trim_silence=True)
        return [segment] if segment else []

    def _close(self, trim_silence) -> t.Optional[Segment]:
        frames = self._frames
        flags = self._frame_speech
        if trim_silence:
            while flags and not flags[-1]:
                dropped = frames.pop()
                flags.pop()
                trimmed_ms = dropped.size * 1000.0 / self.sample_rate
                self._buffered_ms -= trimmed_ms
                self.discarded_ms += trimmed_ms

        start_ms = self._segment_start_ms
        duration_ms = self._buffered_ms
        self._reset_segment()

        if not frames:
            return None
        if duration_ms < self.min_segment_ms:
            self.logger.debug(f"Discarding {duration_ms:.0f}ms segment (below {self.min_segment_ms}ms)")
            self.discarded_ms += duration_ms
            return None

        segment = Segment(
            samples=np.concatenate(frames),
            start_ms=int(round(start_ms)),
            end_ms=int(round(start_ms + duration_ms)),
            sample_rate=self.sample_rate,
            segment_id=self._next_id,
        )
        self._next_id += 1
        self.emitted_ms += duration_ms
        self.logger.info(f"Segment {segment.segment_id} emitted: {segment.start_ms}-{segment.end_ms}ms")
        if self.on_segment:
            self.on_segment(segment)
        return segment


class SegmentQueue(DropOldestQueue):
    """Segments waiting for transcription.

    ``on_backpressure`` is called with each segment dropped to make room.
    """

    def __init__(self, maxsize=16, on_backpressure=None):
        super().__init__(maxsize)
        self.logger = logging.getLogger(__name__)
        self.on_backpressure = on_backpressure
        self.dropped_count = 0

    def push(self, segment):
        dropped = self.put_drop_oldest(segment)
        if dropped is not None:
            self.dropped_count += 1
            self.logger.warning(f"Segment queue full, dropped segment {getattr(dropped, 'segment_id', '?')}")
            if self.on_backpressure:
                self.on_backpressure(dropped)
        return dropped
