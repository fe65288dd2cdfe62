import numpy as np
import pytest

from conftest import FRAME_SAMPLES, SAMPLE_RATE, LevelClassifier, silence_frame, speech_frame
from dictation_pipeline.core import segmenter as seg_mod
from dictation_pipeline.core.segmenter import (
    DropOldestQueue, EnergyFrameClassifier, SegmentQueue, VoiceActivitySegmenter,
    create_frame_classifier,
)
from dictation_pipeline.models.settings import Settings


def make_segmenter(**kwargs):
    params = dict(sample_rate=SAMPLE_RATE, trailing_silence_ms=700, min_segment_ms=300, max_segment_ms=30000)
    params.update(kwargs)
    return VoiceActivitySegmenter(LevelClassifier(), **params)


def feed_all(segmenter, frames):
    out = []
    for frame in frames:
        out.extend(segmenter.feed(frame))
    return out


def assert_accounted(segmenter):
    open_ms = segmenter.position_ms - segmenter.emitted_ms - segmenter.discarded_ms
    assert open_ms >= 0
    if not segmenter.in_speech:
        assert open_ms == pytest.approx(0)


def test_trailing_silence_closes_segment():
    s = make_segmenter()
    frames = [silence_frame()] * 5 + [speech_frame()] * 20 + [silence_frame()] * 30
    segments = feed_all(s, frames)

    assert len(segments) == 1
    seg = segments[0]
    assert (seg.start_ms, seg.end_ms) == (150, 750)
    assert seg.samples.size == 20 * FRAME_SAMPLES
    assert s.emitted_ms == pytest.approx(600)
    assert s.position_ms == pytest.approx(55 * 30)
    assert s.discarded_ms == pytest.approx(55 * 30 - 600)
    assert not s.in_speech
    assert_accounted(s)


def test_short_pause_does_not_split():
    s = make_segmenter()
    frames = [speech_frame()] * 10 + [silence_frame()] * 10 + [speech_frame()] * 10
    assert feed_all(s, frames) == []
    assert s.in_speech
    segments = s.flush()
    assert len(segments) == 1
    assert segments[0].duration_ms == 900


def test_short_burst_is_discarded():
    s = make_segmenter(min_segment_ms=300)
    segments = feed_all(s, [speech_frame()] * 5 + [silence_frame()] * 30)
    assert segments == []
    assert s.emitted_ms == 0
    assert s.discarded_ms == pytest.approx(s.position_ms)


def test_max_duration_forces_contiguous_cuts():
    s = make_segmenter(max_segment_ms=900)
    segments = feed_all(s, [speech_frame()] * 70)
    segments += s.flush()

    assert [(seg.start_ms, seg.end_ms) for seg in segments] == [(0, 900), (900, 1800), (1800, 2100)]
    assert all(seg.duration_ms <= 900 for seg in segments)
    assert sum(seg.samples.size for seg in segments) == 70 * FRAME_SAMPLES
    assert [seg.segment_id for seg in segments] == [0, 1, 2]
    assert s.emitted_ms == pytest.approx(s.position_ms)


def test_max_duration_not_a_multiple_of_frame_length():
    s = make_segmenter(max_segment_ms=1000, min_segment_ms=10)
    segments = feed_all(s, [speech_frame()] * 100)
    segments += s.flush()

    assert [(seg.start_ms, seg.end_ms) for seg in segments] == [
        (0, 990), (990, 1980), (1980, 2970), (2970, 3000),
    ]
    assert all(seg.duration_ms <= 1000 for seg in segments)
    assert sum(seg.samples.size for seg in segments) == 100 * FRAME_SAMPLES
    assert s.emitted_ms == pytest.approx(s.position_ms)


def test_flush_trims_trailing_silence():
    s = make_segmenter()
    feed_all(s, [speech_frame()] * 15 + [silence_frame()] * 5)
    segments = s.flush()
    assert len(segments) == 1
    assert segments[0].end_ms == 450
    assert_accounted(s)


def test_flush_without_speech_returns_nothing():
    s = make_segmenter()
    feed_all(s, [silence_frame()] * 10)
    assert s.flush() == []


def test_bad_frame_discards_open_segment():
    s = make_segmenter()
    feed_all(s, [speech_frame()] * 10)
    assert s.in_speech

    assert s.feed(b"\x00\x01\x02") == []
    assert not s.in_speech
    assert s.discarded_ms == pytest.approx(300)
    assert_accounted(s)

    segments = feed_all(s, [speech_frame()] * 20 + [silence_frame()] * 30)
    assert len(segments) == 1
    assert segments[0].start_ms == 300


def test_wrong_dtype_frame_is_rejected():
    s = make_segmenter()
    assert s.feed(np.ones(FRAME_SAMPLES, dtype=np.float32)) == []
    assert s.position_ms == 0


def test_bytes_frames_are_accepted():
    s = make_segmenter()
    frames = [speech_frame().tobytes()] * 20 + [silence_frame().tobytes()] * 30
    assert len(feed_all(s, frames)) == 1


def test_on_segment_callback():
    received = []
    s = make_segmenter(on_segment=received.append)
    feed_all(s, [speech_frame()] * 20 + [silence_frame()] * 30)
    assert len(received) == 1
    assert received[0].segment_id == 0


def test_energy_classifier_threshold():
    classifier = EnergyFrameClassifier(threshold=500)
    assert not classifier.is_speech(np.full(480, 100, dtype=np.int16))
    classifier = EnergyFrameClassifier(threshold=500)
    assert classifier.is_speech(np.full(480, 2000, dtype=np.int16))


def test_webrtc_backend_uses_vad(monkeypatch):
    created = {}

    class FakeVad:
        def __init__(self, mode):
            created["mode"] = mode

        def is_speech(self, data, sample_rate):
            return sample_rate == SAMPLE_RATE and any(data)

    class FakeModule:
        Vad = FakeVad

    monkeypatch.setattr(seg_mod, "webrtcvad", FakeModule)
    settings = Settings()
    settings.vad_backend = "webrtc"
    settings.vad_aggressiveness = 3

    classifier = create_frame_classifier(settings)
    assert created["mode"] == 3
    assert classifier.is_speech(speech_frame())
    assert not classifier.is_speech(silence_frame())


def test_unknown_backend():
    settings = Settings()
    settings.vad_backend = "nope"
    with pytest.raises(ValueError):
        create_frame_classifier(settings)


def test_drop_oldest_queue():
    q = DropOldestQueue(2)
    assert q.put_drop_oldest(1) is None
    assert q.put_drop_oldest(2) is None
    assert q.put_drop_oldest(3) == 1
    assert [q.get_nowait(), q.get_nowait()] == [2, 3]


def test_segment_queue_reports_backpressure():
    dropped = []
    q = SegmentQueue(maxsize=2, on_backpressure=dropped.append)
    for item in ("a", "b", "c"):
        q.push(item)
    assert q.dropped_count == 1
    assert dropped == ["a"]
