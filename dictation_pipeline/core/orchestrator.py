"""
Session orchestration for the dictation pipeline.

Drives one recording session from capture to delivery:
capture -> segmentation -> (per segment) transcription, domain selection
and jargon correction -> (per session) post-processing and @file expansion.
"""

import logging
import queue
import threading
import typing as t
from dataclasses import dataclass

from dictation_pipeline.core.domain_selector import (
    PromptSelectionState, SelectionResult, SelectorConfig, SelectorState, effective_profile_ids,
)
from dictation_pipeline.core.jargon import (
    build_active_dictionary, build_vocabulary_prompt, parse_custom_corrections,
)
from dictation_pipeline.core.recording_session import (
    RecordingMode, RecordingState, RecordingStateMachine, Transition,
)
from dictation_pipeline.core.segmenter import DropOldestQueue, SegmentQueue, VoiceActivitySegmenter
from dictation_pipeline.core.token_expander import ExpansionResult, resolve_workspace_root
from dictation_pipeline.exceptions import CaptureError, ModelLoadError, TranscriptionError
from dictation_pipeline.utils.text_processing import join_segment_texts

_END = object()


@dataclass(frozen=True)
class DeliveryResult:
    session_id: str
    history_text: str
    delivered_text: str
    segment_count: int = 0


class _SessionRun:
    """Per-session working state shared by the worker threads."""

    def __init__(self, session_id, settings, frame_queue, segment_queue, segmenter):
        self.session_id = session_id
        self.settings = settings
        self.frame_queue = frame_queue
        self.segment_queue = segment_queue
        self.segmenter = segmenter
        self.selector_state = SelectorState()
        self.texts: t.List[str] = []
        self.terms: t.List[str] = []
        self.source = None
        self.failure: t.Optional[str] = None
        self.cancelled = threading.Event()
        self.capture_ended = False
        self.lock = threading.Lock()


class DictationOrchestrator:
    """Owns the recording state machine and runs the pipeline for each session."""

    END_POLL_S = 0.5

    def __init__(self, settings_provider, model_manager, engine, selector, corrector,
                 post_processor, expander, registry, audio_source_factory,
                 on_delivery: t.Optional[t.Callable[[DeliveryResult], None]] = None,
                 on_failure: t.Optional[t.Callable[[str], None]] = None,
                 on_state_change: t.Optional[t.Callable[[RecordingState], None]] = None):
        """
        Args:
            settings_provider: Callable returning the current Settings
            model_manager: ModelLifecycleManager shared with the host
            engine: TranscriptionEngine
            selector: DomainSelector
            corrector: JargonCorrector
            post_processor: PostProcessor
            expander: TokenExpander
            registry: ProfileRegistry
            audio_source_factory: ``factory(settings, frame_queue, on_error)`` returning
                an object with ``start()`` and ``stop()``
            on_delivery: Called once per successful session
            on_failure: Called once per failed session with the failure reason
            on_state_change: Called after every recording state change
        """
        self.logger = logging.getLogger(__name__)
        self.settings_provider = settings_provider
        self.model_manager = model_manager
        self.engine = engine
        self.selector = selector
        self.corrector = corrector
        self.post_processor = post_processor
        self.expander = expander
        self.registry = registry
        self.audio_source_factory = audio_source_factory
        self.on_delivery = on_delivery
        self.on_failure = on_failure
        self.on_state_change = on_state_change

        self.state_machine = RecordingStateMachine(RecordingMode(settings_provider().recording_mode))
        self._run: t.Optional[_SessionRun] = None
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self.dropped_segments = 0
        self.prompt_state = PromptSelectionState()

    # -- control surface -----------------------------------------------------

    @property
    def state(self) -> RecordingState:
        return self.state_machine.state

    def set_mode(self, mode: RecordingMode):
        self.state_machine.set_mode(mode)

    def start_recording(self):
        self._apply(self.state_machine.start())

    def stop_recording(self):
        self._apply(self.state_machine.stop())

    def toggle_recording(self):
        self._apply(self.state_machine.toggle())

    def key_press(self):
        self._apply(self.state_machine.key_press())

    def key_release(self):
        self._apply(self.state_machine.key_release())

    def wait_until_idle(self, timeout=None) -> bool:
        return self._idle.wait(timeout)

    def shutdown(self, timeout=5.0):
        self.stop_recording()
        self.wait_until_idle(timeout)

    def _apply(self, transition):
        if transition is Transition.START:
            self._begin_session()
        elif transition is Transition.STOP:
            with self._lock:
                run = self._run
            self._notify_state()
            if run is not None:
                self._end_capture(run)

    def _notify_state(self):
        if self.on_state_change:
            try:
                self.on_state_change(self.state_machine.state)
            except Exception as e:
                self.logger.error(f"State change callback failed: {e}")

    # -- session lifecycle ---------------------------------------------------

    def _begin_session(self):
        with self._lock:
            self._idle.clear()
        settings = self.settings_provider().snapshot()
        session = self.state_machine.session
        session_id = session.session_id if session else "?"

        frame_queue = DropOldestQueue(settings.frame_queue_size)
        segment_queue = SegmentQueue(settings.segment_queue_size, on_backpressure=self._on_backpressure)
        try:
            segmenter = VoiceActivitySegmenter.from_settings(settings, on_segment=segment_queue.push)
        except ValueError as e:
            segmenter = None
            failure = e
        else:
            failure = None

        run = _SessionRun(session_id, settings, frame_queue, segment_queue, segmenter)
        with self._lock:
            self._run = run
        self._notify_state()

        threading.Thread(target=self._segmentation_worker, args=(run,),
                         name=f"segmenter-{session_id}", daemon=True).start()
        threading.Thread(target=self._pipeline_worker, args=(run,),
                         name=f"pipeline-{session_id}", daemon=True).start()

        if failure is not None:
            self._fail(run, CaptureError(f"Invalid audio configuration: {failure}"))
            return
        # A stop that arrived before the run was published found nothing to end
        if self.state_machine.state is not RecordingState.RECORDING:
            self._end_capture(run)
            return

        source = self.audio_source_factory(settings, frame_queue, lambda e: self._fail(run, e))
        with run.lock:
            run.source = source
        try:
            source.start()
        except CaptureError as e:
            self._fail(run, e)
            return
        with run.lock:
            stopped_early = run.capture_ended
        if stopped_early:
            source.stop()

    def _end_capture(self, run):
        with run.lock:
            if run.capture_ended:
                return
            run.capture_ended = True
            source = run.source
        if source is not None:
            source.stop()
        run.frame_queue.put_drop_oldest(_END)

    def _fail(self, run, error):
        """Record a session-fatal error and wind the session down."""
        with run.lock:
            first = run.failure is None
            if first:
                run.failure = str(error)
                run.cancelled.set()
        if first:
            self.logger.error(f"Session {run.session_id} failed: {error}")
        if self.state_machine.stop() is Transition.STOP:
            self._notify_state()
        self._end_capture(run)

    def _on_backpressure(self, segment):
        self.dropped_segments += 1
        self.logger.warning(f"Backpressure: segment {segment.segment_id} dropped before transcription")

    # -- workers -------------------------------------------------------------

    def _segmentation_worker(self, run):
        while True:
            try:
                frame = run.frame_queue.get(timeout=self.END_POLL_S)
            except queue.Empty:
                # The end marker can be evicted by frames a slow source pushed after stopping
                if run.capture_ended:
                    break
                continue
            if frame is _END:
                break
            if run.cancelled.is_set() or run.segmenter is None:
                continue
            run.segmenter.feed(frame)
        if run.segmenter is not None and not run.cancelled.is_set():
            run.segmenter.flush()
        run.segment_queue.push(_END)

    def _pipeline_worker(self, run):
        try:
            while True:
                segment = run.segment_queue.get()
                if segment is _END:
                    break
                if run.cancelled.is_set():
                    continue
                self._process_segment(run, segment)
            self._finalize(run)
        except Exception as e:
            self.logger.exception(f"Session {run.session_id} aborted: {e}")
            self._emit_failure(str(e))
        finally:
            self._complete(run)

    def _process_segment(self, run, segment):
        settings = self.settings_provider().snapshot()
        profiles = self.registry.snapshot(settings.disabled_profiles)
        config = SelectorConfig.from_settings(settings)
        custom_corrections = parse_custom_corrections(settings.custom_corrections)

        previous = SelectionResult(tuple(sorted(run.selector_state.previously_selected)))
        hint_ids = effective_profile_ids(settings.enabled_profiles, previous, config)
        hint_terms = build_active_dictionary(hint_ids, profiles, settings.custom_terms, custom_corrections).terms
        prompt = build_vocabulary_prompt(hint_terms)

        self.model_manager.set_idle_timeout(settings.model_unload_timeout_s)
        self.engine.update_settings(settings)
        try:
            text = self.engine.transcribe(segment, prompt)
        except ModelLoadError as e:
            self._fail(run, e)
            return
        except TranscriptionError as e:
            self.logger.warning(f"Segment {segment.segment_id} skipped: {e}")
            return
        if not text:
            return

        selection = None
        if config.enabled:
            selection = self.selector.select(text, profiles, config, run.selector_state).value
        profile_ids = effective_profile_ids(settings.enabled_profiles, selection, config)
        dictionary = build_active_dictionary(profile_ids, profiles, settings.custom_terms, custom_corrections)
        corrected = self.corrector.apply(text, dictionary.corrections)

        run.texts.append(corrected)
        known = {term.lower() for term in run.terms}
        run.terms.extend(term for term in dictionary.terms if term.lower() not in known)
        self.logger.debug(f"Segment {segment.segment_id}: {text!r} -> {corrected!r} (profiles {profile_ids})")

    def _finalize(self, run):
        if run.failure is not None:
            self._emit_failure(run.failure)
            return

        text = join_segment_texts(run.texts)
        if not text:
            self.logger.info(f"Session {run.session_id} produced no text")
            return

        settings = self.settings_provider().snapshot()
        self.post_processor.update_settings(settings)
        prompt_id = None
        if settings.post_process_enabled and settings.post_process_auto_prompt:
            prompt_id = self.selector.select_prompt(
                text, self.post_processor.prompts, SelectorConfig.from_settings(settings), self.prompt_state,
            ).value
        processed = self.post_processor.process(
            text,
            terms=run.terms,
            preserve_at_refs=settings.at_file_enabled,
            multi_segment=len(run.texts) > 1,
            prompt_id=prompt_id,
        )
        final_text = processed.value if processed.value else text

        if settings.at_file_enabled:
            root = resolve_workspace_root(settings.workspace_root, settings.require_git)
            expansion = self.expander.expand_in_root(final_text, root)
        else:
            expansion = ExpansionResult(history_text=final_text, delivered_text=final_text)

        result = DeliveryResult(
            session_id=run.session_id,
            history_text=expansion.history_text,
            delivered_text=expansion.delivered_text,
            segment_count=len(run.texts),
        )
        self.logger.info(f"Session {run.session_id} complete: {result.history_text!r}")
        if self.on_delivery:
            try:
                self.on_delivery(result)
            except Exception as e:
                self.logger.error(f"Delivery callback failed: {e}")

    def _emit_failure(self, reason):
        if self.on_failure:
            try:
                self.on_failure(reason)
            except Exception as e:
                self.logger.error(f"Failure callback failed: {e}")

    def _complete(self, run):
        run.selector_state.reset()
        with self._lock:
            if self._run is run:
                self._run = None
        pending = self.state_machine.complete()
        self._notify_state()
        if pending:
            self.logger.info("Launching queued recording start")
            self._apply(self.state_machine.start())
        with self._lock:
            if self.state_machine.state is RecordingState.IDLE:
                self._idle.set()
