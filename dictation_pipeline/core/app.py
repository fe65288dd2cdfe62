"""
Main application class for the dictation app (PySide6 version).
Wires the pipeline together, owns global hotkeys and the tray icon, and
uses Qt Signals and Slots to hand work to the GUI thread.
"""

import queue
import signal
import threading

import keyboard

from PySide6.QtCore import QObject, Signal, Slot, QTimer, QCoreApplication
from PySide6.QtCore import Qt, QMetaObject, Q_ARG

from dictation_pipeline.core.audio_capture import AudioCapture
from dictation_pipeline.core.domain_selector import DomainSelector
from dictation_pipeline.core.event_channel import EventChannel
from dictation_pipeline.core.jargon import JargonCorrector, ProfileRegistry
from dictation_pipeline.core.model_manager import ModelLifecycleManager
from dictation_pipeline.core.orchestrator import DictationOrchestrator
from dictation_pipeline.core.post_processor import PostProcessor
from dictation_pipeline.core.recording_session import RecordingMode
from dictation_pipeline.core.token_expander import TokenExpander
from dictation_pipeline.core.transcriber import TranscriptionEngine, make_whisper_loader
from dictation_pipeline.exceptions import ModelLoadError
from dictation_pipeline.models.model_state import LifecycleEvent
from dictation_pipeline.ui.system_tray import SystemTrayIcon
from dictation_pipeline.utils.config_manager import ConfigManager
from dictation_pipeline.utils.error_handling import log_exceptions, safe_execution
from dictation_pipeline.utils.logging_setup import set_debug, setup_logging
from dictation_pipeline.utils.text_inserter import TextInserter


class DictationApp(QObject):
    """Desktop host for the dictation pipeline."""

    signal_show_notification = Signal(str, str)  # title, message
    signal_model_status = Signal(str)
    signal_recording_state = Signal(str)
    signal_request_exit = Signal()

    # Lets Python signal handlers run while the Qt loop is idle
    SIGNAL_POLL_MS = 500

    def __init__(self, config_manager=None):
        super().__init__()
        self.logger = setup_logging()
        self.logger.info("Initializing DictationApp")

        self.config_manager = config_manager or ConfigManager()
        self.settings = self.config_manager.load_settings()
        set_debug(self.settings.debug_mode)

        self.registry = ProfileRegistry()
        self.registry.replace_user_profiles(self.config_manager.user_profiles(self.settings))

        self.event_channel = EventChannel()
        self.model_manager = ModelLifecycleManager(
            make_whisper_loader(self.settings.device),
            idle_timeout_s=self.settings.model_unload_timeout_s,
            event_channel=self.event_channel,
        )
        self.engine = TranscriptionEngine(self.model_manager, language=self.settings.language,
                                          use_noise_reduction=self.settings.use_noise_reduction)
        self.post_processor = PostProcessor(
            model_name=self.settings.post_process_model,
            endpoint=self.settings.post_process_host,
            timeout_s=self.settings.post_process_timeout_s,
            enabled=self.settings.post_process_enabled,
        )
        self.text_inserter = TextInserter()

        self.orchestrator = DictationOrchestrator(
            settings_provider=lambda: self.settings,
            model_manager=self.model_manager,
            engine=self.engine,
            selector=DomainSelector(),
            corrector=JargonCorrector(),
            post_processor=self.post_processor,
            expander=TokenExpander(),
            registry=self.registry,
            audio_source_factory=AudioCapture,
            on_delivery=self._on_delivery,
            on_failure=self._on_failure,
            on_state_change=self._on_state_change,
        )

        self.system_tray = None
        self._events = self.event_channel.subscribe()
        self._bridge_stop = threading.Event()
        self._bridge_thread = None
        self._signal_timer = None

        self.signal_request_exit.connect(QCoreApplication.instance().quit)

    @log_exceptions
    def run(self):
        """Set up UI, hotkeys and background workers before the Qt loop starts."""
        self.logger.info("Setting up core application components...")
        self._init_ui()

        self._bridge_thread = threading.Thread(target=self._bridge_events, name="event-bridge", daemon=True)
        self._bridge_thread.start()

        self.model_manager.start_idle_watcher()
        threading.Thread(target=self._initial_load, name="initial-model-load", daemon=True).start()

        if not self.setup_hotkeys():
            self.logger.error("Failed to register hotkeys, tray menu still available")
        self._install_signal_toggle()

        self.logger.info("Core application setup complete.")
        return True

    def _init_ui(self):
        self.system_tray = SystemTrayIcon(
            "Dictation",
            self._on_toggle_triggered,
            self._on_toggle_debug_mode_triggered,
            self._on_exit_app_triggered,
        )
        self.system_tray.show()
        self.signal_show_notification.connect(self.system_tray.show_message_slot)
        self.signal_model_status.connect(self.system_tray.set_model_status_slot)
        self.signal_recording_state.connect(self.system_tray.set_recording_state_slot)

    def _initial_load(self):
        try:
            self.model_manager.load(self.settings.model_id)
        except ModelLoadError as e:
            self.logger.error(f"Initial model load failed: {e}")

    def _bridge_events(self):
        """Forward lifecycle events from the channel to Qt signals."""
        while not self._bridge_stop.is_set():
            try:
                event = self._events.get(timeout=0.5)
            except queue.Empty:
                continue
            model = event.model_id or "model"
            if event.kind is LifecycleEvent.LOADING_STARTED:
                self.signal_model_status.emit(f"loading {model}")
            elif event.kind is LifecycleEvent.LOADED:
                self.signal_model_status.emit(f"{model} ready")
            elif event.kind is LifecycleEvent.UNLOADED:
                self.signal_model_status.emit(f"{model} unloaded")
            elif event.kind is LifecycleEvent.LOADING_FAILED:
                self.signal_model_status.emit(f"{model} failed")
                self._notify("Model Error", f"Could not load {model}: {event.error}")

    def _notify(self, title, message):
        if self.settings.show_notifications:
            self.signal_show_notification.emit(title, message)

    def _report_error(self, message):
        self._notify("Dictation Error", message)

    # --- Tray slots ---
    @Slot()
    def _on_toggle_triggered(self):
        self.toggle_recording()

    @Slot()
    def _on_toggle_debug_mode_triggered(self):
        self.toggle_debug_mode()

    @Slot()
    def _on_exit_app_triggered(self):
        self.exit_app()

    def _trigger_toggle_recording(self):
        QMetaObject.invokeMethod(self, "toggle_recording", Qt.ConnectionType.QueuedConnection)

    def _trigger_exit_app(self):
        QMetaObject.invokeMethod(self, "exit_app", Qt.ConnectionType.QueuedConnection)

    @safe_execution(default_value=False)
    def setup_hotkeys(self):
        """Register global hotkeys with the 'keyboard' library."""
        mode = RecordingMode(self.settings.recording_mode)
        self.orchestrator.set_mode(mode)
        if mode is RecordingMode.PUSH_TO_TALK:
            keyboard.on_press_key(self.settings.push_to_talk_key,
                                  lambda _e: self.orchestrator.key_press(), suppress=False)
            keyboard.on_release_key(self.settings.push_to_talk_key,
                                    lambda _e: self.orchestrator.key_release(), suppress=False)
            self.logger.info(f"Push-to-talk key registered: {self.settings.push_to_talk_key}")
        else:
            keyboard.add_hotkey(self.settings.hotkey, self._trigger_toggle_recording)
            self.logger.info(f"Recording hotkey registered: {self.settings.hotkey}")

        keyboard.add_hotkey(self.settings.exit_hotkey, self._trigger_exit_app)
        self.logger.info(f"Exit hotkey registered: {self.settings.exit_hotkey}")
        return True

    def _install_signal_toggle(self):
        if not self.settings.enable_signal_toggle or not hasattr(signal, "SIGUSR1"):
            return
        signal.signal(signal.SIGUSR1, lambda _signum, _frame: self._trigger_toggle_recording())
        self._signal_timer = QTimer(self)
        self._signal_timer.timeout.connect(lambda: None)
        self._signal_timer.start(self.SIGNAL_POLL_MS)
        self.logger.info("SIGUSR1 toggles recording")

    @Slot()
    @safe_execution(notify="_report_error")
    def toggle_recording(self):
        self.orchestrator.toggle_recording()

    def _on_state_change(self, state):
        self.signal_recording_state.emit(state.value)

    def _on_delivery(self, result):
        self.logger.info(f"History: {result.history_text}")
        if result.delivered_text != result.history_text:
            self.logger.info(f"Delivered text includes {len(result.delivered_text) - len(result.history_text)} chars of file context")
        QMetaObject.invokeMethod(self, "_execute_insert_text", Qt.ConnectionType.QueuedConnection,
                                 Q_ARG(str, result.delivered_text))

    def _on_failure(self, reason):
        self._notify("Dictation Failed", reason)

    @Slot(str)
    @safe_execution(notify="_report_error")
    def _execute_insert_text(self, text):
        if not self.text_inserter.insert_text(text):
            self.logger.error(f"Failed to insert text: {text[:30]}{'...' if len(text) > 30 else ''}")

    @Slot()
    @safe_execution(notify="_report_error")
    def toggle_debug_mode(self):
        self.settings.debug_mode = not self.settings.debug_mode
        set_debug(self.settings.debug_mode)
        status = "enabled" if self.settings.debug_mode else "disabled"
        self.logger.info(f"Debug mode {status}")
        self._notify("Debug Mode", f"Debug logging {status}")
        self.config_manager.save_settings(self.settings)

    @Slot()
    def exit_app(self):
        """Stop recording, release the model and quit the Qt loop."""
        self.logger.info("Exit requested.")
        self.orchestrator.shutdown()
        self._bridge_stop.set()
        if self._signal_timer:
            self._signal_timer.stop()
        self.model_manager.shutdown()
        self.event_channel.unsubscribe(self._events)

        try:
            keyboard.unhook_all()
            self.logger.info("Global hotkeys unregistered.")
        except (AttributeError, KeyError) as e:
            self.logger.error(f"Error unregistering hotkeys: {e}")

        if self.system_tray:
            self.system_tray.hide()

        self.logger.info("Requesting Qt application quit.")
        self.signal_request_exit.emit()
