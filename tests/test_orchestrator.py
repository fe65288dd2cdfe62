import threading
import time
from types import SimpleNamespace

import pytest

from conftest import silence_frame, speech_frame
from dictation_pipeline.core.domain_selector import DomainSelector
from dictation_pipeline.core.jargon import JargonCorrector, ProfileRegistry
from dictation_pipeline.core.model_manager import ModelLifecycleManager
from dictation_pipeline.core import orchestrator as orchestrator_mod
from dictation_pipeline.core.orchestrator import DictationOrchestrator
from dictation_pipeline.core.post_processor import PostProcessor
from dictation_pipeline.core.prompts import get_prompt
from dictation_pipeline.core.recording_session import RecordingMode, RecordingState
from dictation_pipeline.core.segmenter import DropOldestQueue, SegmentQueue, VoiceActivitySegmenter
from dictation_pipeline.core.token_expander import TokenExpander, WorkspaceIndexer
from dictation_pipeline.core.transcriber import TranscriptionEngine
from dictation_pipeline.exceptions import CaptureError
from dictation_pipeline.models.model_state import ModelStatus
from dictation_pipeline.models.settings import Settings

ONE_UTTERANCE = [speech_frame()] * 20 + [silence_frame()] * 20
TWO_UTTERANCES = ONE_UTTERANCE * 2


class FakeWhisper:
    """Returns scripted transcripts, one per call. An exception in the script is raised."""

    def __init__(self, script):
        self.script = list(script)
        self.prompts = []

    def transcribe(self, audio, **kwargs):
        self.prompts.append(kwargs.get("initial_prompt"))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return [SimpleNamespace(text=item)], SimpleNamespace(language="en")


class FakeSource:
    """Pushes a fixed list of frames when started."""

    def __init__(self, frames, fail=False):
        self.frames = frames
        self.fail = fail
        self.started = False
        self.stopped = False
        self.starts = 0

    def __call__(self, settings, frame_queue, on_error):
        self.frame_queue = frame_queue
        return self

    def start(self):
        if self.fail:
            raise CaptureError("No input device")
        self.started = True
        for frame in self.frames:
            self.frame_queue.put_drop_oldest(frame)
        self.starts += 1

    def stop(self):
        self.stopped = True


class FakeOllama:
    def __init__(self, reply=None, error=None, gate=None):
        self.reply = reply
        self.error = error
        self.gate = gate
        self.system_prompts = []

    def chat(self, **kwargs):
        self.system_prompts.append(kwargs["messages"][0]["content"])
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.error:
            raise self.error
        return {"message": {"content": self.reply}}


def make_settings(**overrides):
    settings = Settings()
    settings.vad_backend = "energy"
    settings.silence_threshold = 500
    settings.trailing_silence_ms = 300
    settings.min_segment_ms = 100
    settings.enabled_profiles = ["coding"]
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


class Harness:
    def __init__(self, script=(" use type script",), frames=ONE_UTTERANCE, settings=None,
                 ollama=None, preload=True, source=None, load_error=None):
        self.settings = settings or make_settings()
        self.model = FakeWhisper(script)
        self.load_error = load_error
        self.loaded = []
        self.manager = ModelLifecycleManager(self.load_model)
        if preload:
            self.manager.load("small")
        self.source = source or FakeSource(frames)
        self.deliveries = []
        self.failures = []
        self.states = []
        self.orchestrator = DictationOrchestrator(
            settings_provider=lambda: self.settings,
            model_manager=self.manager,
            engine=TranscriptionEngine(self.manager),
            selector=DomainSelector(),
            corrector=JargonCorrector(),
            post_processor=PostProcessor(client=ollama or FakeOllama(reply="unused")),
            expander=TokenExpander(WorkspaceIndexer(ttl_s=0)),
            registry=ProfileRegistry(),
            audio_source_factory=self.source,
            on_delivery=self.deliveries.append,
            on_failure=self.failures.append,
            on_state_change=self.states.append,
        )

    def load_model(self, model_id):
        if self.load_error:
            raise self.load_error
        self.loaded.append(model_id)
        return self.model

    def dictate(self):
        self.orchestrator.toggle_recording()
        self.orchestrator.toggle_recording()
        assert self.orchestrator.wait_until_idle(5.0)
        return self


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_toggle_session_delivers_corrected_text():
    h = Harness().dictate()

    assert h.orchestrator.state is RecordingState.IDLE
    assert h.failures == []
    assert len(h.deliveries) == 1
    delivery = h.deliveries[0]
    assert delivery.history_text == delivery.delivered_text == "Use TypeScript"
    assert delivery.segment_count == 1
    assert h.states == [RecordingState.RECORDING, RecordingState.PROCESSING, RecordingState.IDLE]
    assert h.source.stopped
    assert h.model.prompts[0].startswith("Technical dictation.")


@pytest.mark.parametrize("ollama, expected", [
    (FakeOllama(reply="Use TypeScript here."), "Use TypeScript here."),
    (FakeOllama(error=ConnectionError("ollama is down")), "Use TypeScript"),
])
def test_session_ends_idle_once_whether_post_processing_works_or_not(ollama, expected):
    h = Harness(settings=make_settings(post_process_enabled=True), ollama=ollama).dictate()

    assert h.states.count(RecordingState.IDLE) == 1
    assert h.orchestrator.state is RecordingState.IDLE
    assert [d.delivered_text for d in h.deliveries] == [expected]


def test_multiple_segments_are_joined_in_order():
    h = Harness(script=[" first part.", " second part."], frames=TWO_UTTERANCES).dictate()
    assert h.deliveries[0].history_text == "First part. Second part."
    assert h.deliveries[0].segment_count == 2


def test_failed_segment_is_skipped():
    h = Harness(script=[RuntimeError("decoder crashed"), " second part"], frames=TWO_UTTERANCES).dictate()
    assert h.failures == []
    assert h.deliveries[0].history_text == "Second part"


def test_capture_failure_ends_session_without_delivery():
    h = Harness(source=FakeSource([], fail=True))
    h.orchestrator.toggle_recording()
    assert h.orchestrator.wait_until_idle(5.0)

    assert h.deliveries == []
    assert h.failures == ["No input device"]
    assert h.orchestrator.state is RecordingState.IDLE
    assert h.states.count(RecordingState.IDLE) == 1


def test_model_load_failure_fails_session():
    # No trailing silence, so the only segment is flushed after the stop
    h = Harness(preload=False, frames=[speech_frame()] * 20, load_error=RuntimeError("weights missing"))
    h.dictate()
    assert h.deliveries == []
    assert len(h.failures) == 1
    assert "weights missing" in h.failures[0]
    assert h.orchestrator.state is RecordingState.IDLE


def test_session_loads_configured_model_without_preload():
    h = Harness(preload=False).dictate()
    assert h.loaded == ["small"]
    assert [d.history_text for d in h.deliveries] == ["Use TypeScript"]


def test_model_settings_apply_to_next_session():
    h = Harness().dictate()
    assert h.loaded == ["small"]

    h.settings.model_id = "medium"
    h.settings.model_unload_timeout_s = 0
    h.dictate()

    assert h.loaded == ["small", "medium"]
    assert h.manager.desired_model_id == "medium"
    assert h.manager.idle_timeout_s == 0
    assert h.manager.status().status is ModelStatus.UNLOADED
    assert len(h.deliveries) == 2


def test_silence_only_session_delivers_nothing():
    h = Harness(frames=[silence_frame()] * 30).dictate()
    assert h.deliveries == []
    assert h.failures == []
    assert h.orchestrator.state is RecordingState.IDLE


def test_at_file_expansion_keeps_history_separate(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "auth.ts").write_text("export const ok = true;\n", encoding="utf-8")
    settings = make_settings(at_file_enabled=True, workspace_root=str(tmp_path), require_git=False)

    h = Harness(script=[" check @auth.ts"], settings=settings).dictate()

    delivery = h.deliveries[0]
    assert delivery.history_text == "Check @auth.ts"
    assert delivery.delivered_text.startswith("Check @auth.ts\n")
    assert "src/auth.ts" in delivery.delivered_text


def test_selector_adds_detected_profile():
    settings = make_settings(enabled_profiles=[], selector_enabled=True, selector_min_score=0.01,
                             selector_top_k=1, selector_timeout_ms=2000)
    h = Harness(script=[" the pie torch and tensor flow model on the gpu"], settings=settings).dictate()
    assert h.deliveries[0].history_text == "The PyTorch and TensorFlow model on the gpu"


def test_push_to_talk_session():
    h = Harness()
    h.orchestrator.set_mode(RecordingMode.PUSH_TO_TALK)
    h.orchestrator.key_press()
    h.orchestrator.key_press()
    h.orchestrator.key_release()
    assert h.orchestrator.wait_until_idle(5.0)
    assert [d.history_text for d in h.deliveries] == ["Use TypeScript"]


def test_stop_and_shutdown_when_idle_are_noops():
    h = Harness()
    h.orchestrator.stop_recording()
    h.orchestrator.shutdown(timeout=1.0)
    assert h.states == []
    assert h.orchestrator.state is RecordingState.IDLE


def test_start_while_processing_launches_one_queued_session():
    gate = threading.Event()
    ollama = FakeOllama(reply="Use TypeScript.", gate=gate)
    h = Harness(settings=make_settings(post_process_enabled=True), ollama=ollama)
    orchestrator = h.orchestrator

    orchestrator.start_recording()
    orchestrator.stop_recording()
    assert orchestrator.state is RecordingState.PROCESSING
    orchestrator.start_recording()
    orchestrator.start_recording()
    assert orchestrator.state is RecordingState.PROCESSING
    gate.set()

    assert wait_for(lambda: h.source.starts == 2)
    orchestrator.stop_recording()
    assert orchestrator.wait_until_idle(5.0)

    assert h.states.count(RecordingState.RECORDING) == 2
    assert orchestrator.state is RecordingState.IDLE
    assert not orchestrator.state_machine.has_pending_start
    assert [d.delivered_text for d in h.deliveries] == ["Use TypeScript.", "Use TypeScript."]


def test_auto_prompt_selection_styles_post_processing():
    ollama = FakeOllama(reply="## Summary\n- Ship Friday")
    settings = make_settings(post_process_enabled=True, post_process_auto_prompt=True)
    h = Harness(script=[" meeting recap with the decisions and notes"], settings=settings, ollama=ollama).dictate()

    assert h.orchestrator.prompt_state.prompt_id == "meeting_notes"
    assert get_prompt("meeting_notes").instructions in ollama.system_prompts[0]
    assert h.deliveries[0].delivered_text == "## Summary\n- Ship Friday"


def test_segmentation_finishes_when_end_marker_was_evicted():
    h = Harness()
    h.orchestrator.END_POLL_S = 0.05
    settings = make_settings()
    frame_queue = DropOldestQueue(4)
    segment_queue = SegmentQueue(4)
    segmenter = VoiceActivitySegmenter.from_settings(settings, on_segment=segment_queue.push)
    run = orchestrator_mod._SessionRun("late", settings, frame_queue, segment_queue, segmenter)
    # Late frames filled the queue after the marker was pushed and pushed it out
    for frame in [speech_frame()] * 4:
        frame_queue.put_drop_oldest(frame)
    run.capture_ended = True

    worker = threading.Thread(target=h.orchestrator._segmentation_worker, args=(run,), daemon=True)
    worker.start()
    worker.join(5.0)

    assert not worker.is_alive()
    items = [segment_queue.get_nowait() for _ in range(segment_queue.qsize())]
    assert items[-1] is orchestrator_mod._END
    assert len(items) == 2
