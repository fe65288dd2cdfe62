"""
Settings data model for the dictation pipeline.
"""
import copy
import typing as t


class Settings:
    """Stores application settings."""

    def __init__(self):
        """Initialize with default settings."""
        # Hotkeys
        self.hotkey = "ctrl+alt+z"
        self.exit_hotkey = "ctrl+alt+x"
        self.push_to_talk_key = "right ctrl"

        # Recording
        self.recording_mode = "toggle"  # "toggle" or "push_to_talk"
        self.enable_signal_toggle = True

        # Audio parameters
        self.sample_rate = 16000
        self.input_device_index: t.Optional[int] = None
        self.frame_ms = 30
        self.vad_backend = "webrtc"  # "webrtc" or "energy"
        self.vad_aggressiveness = 2
        self.silence_threshold = 500
        self.trailing_silence_ms = 700
        self.min_segment_ms = 300
        self.max_segment_ms = 30000
        self.frame_queue_size = 256
        self.segment_queue_size = 16
        self.use_noise_reduction = False

        # Model parameters
        self.model_id = "small"
        self.device = "cpu"
        self.cuda_path = "C:\\Program Files\\NVIDIA GPU Computing Toolkit\\CUDA\\v12.8\\bin"
        self.language: t.Optional[str] = "en"
        # None never unloads, 0 unloads right after each transcription
        self.model_unload_timeout_s: t.Optional[int] = 300

        # Jargon profiles
        self.enabled_profiles: t.List[str] = ["coding"]
        self.disabled_profiles: t.List[str] = []
        self.custom_terms: t.List[str] = []
        self.custom_corrections: t.List[t.Dict[str, str]] = []
        self.jargon_packs: t.List[t.Dict[str, t.Any]] = []

        # Domain selector
        self.selector_enabled = False
        self.selector_timeout_ms = 120
        self.selector_top_k = 2
        self.selector_min_score = 0.1
        self.selector_hysteresis = 0.08
        self.selector_blend_manual = True

        # Post-processing
        self.post_process_enabled = False
        self.post_process_model = "llama3.2:3b"
        self.post_process_host = "http://localhost:11434"
        self.post_process_timeout_s = 10.0
        self.post_process_prompt_id = "improve_transcription"
        self.post_process_auto_prompt = False

        # @file expansion
        self.at_file_enabled = False
        self.workspace_root: t.Optional[str] = None
        self.require_git = True

        # Debug mode
        self.debug_mode = False

        # UI settings
        self.show_notifications = True

    def update(self, settings_dict):
        """Update settings from a dictionary."""
        if not settings_dict:
            return

        if "hotkeys" in settings_dict:
            section = settings_dict["hotkeys"]
            self.hotkey = section.get("toggle_listening", self.hotkey)
            self.exit_hotkey = section.get("exit_app", self.exit_hotkey)
            self.push_to_talk_key = section.get("push_to_talk", self.push_to_talk_key)

        if "recording" in settings_dict:
            section = settings_dict["recording"]
            self.recording_mode = section.get("mode", self.recording_mode)
            self.enable_signal_toggle = section.get("signal_toggle", self.enable_signal_toggle)

        if "audio" in settings_dict:
            section = settings_dict["audio"]
            self.sample_rate = section.get("sample_rate", self.sample_rate)
            self.frame_ms = section.get("frame_ms", self.frame_ms)
            self.vad_backend = section.get("vad_backend", self.vad_backend)
            self.vad_aggressiveness = section.get("vad_aggressiveness", self.vad_aggressiveness)
            self.silence_threshold = section.get("silence_threshold", self.silence_threshold)
            self.trailing_silence_ms = section.get("trailing_silence_ms", self.trailing_silence_ms)
            self.min_segment_ms = section.get("min_segment_ms", self.min_segment_ms)
            self.max_segment_ms = section.get("max_segment_ms", self.max_segment_ms)
            self.frame_queue_size = section.get("frame_queue_size", self.frame_queue_size)
            self.segment_queue_size = section.get("segment_queue_size", self.segment_queue_size)
            self.use_noise_reduction = section.get("use_noise_reduction", self.use_noise_reduction)
            loaded_index = section.get("input_device_index", self.input_device_index)
            if isinstance(loaded_index, int) or loaded_index is None:
                self.input_device_index = loaded_index
            else:
                try:
                    self.input_device_index = int(loaded_index)
                except (ValueError, TypeError):
                    self.input_device_index = None

        if "processing" in settings_dict:
            section = settings_dict["processing"]
            self.model_id = section.get("model_id", self.model_id)
            self.device = section.get("device", self.device)
            self.cuda_path = section.get("cuda_path", self.cuda_path)
            self.language = section.get("language", self.language)
            self.model_unload_timeout_s = section.get("model_unload_timeout_s", self.model_unload_timeout_s)

        if "jargon" in settings_dict:
            section = settings_dict["jargon"]
            self.enabled_profiles = list(section.get("enabled_profiles", self.enabled_profiles))
            self.disabled_profiles = list(section.get("disabled_profiles", self.disabled_profiles))
            self.custom_terms = list(section.get("custom_terms", self.custom_terms))
            self.custom_corrections = list(section.get("custom_corrections", self.custom_corrections))
            self.jargon_packs = list(section.get("packs", self.jargon_packs))

        if "domain_selector" in settings_dict:
            section = settings_dict["domain_selector"]
            self.selector_enabled = section.get("enabled", self.selector_enabled)
            self.selector_timeout_ms = section.get("timeout_ms", self.selector_timeout_ms)
            self.selector_top_k = section.get("top_k", self.selector_top_k)
            self.selector_min_score = section.get("min_score", self.selector_min_score)
            self.selector_hysteresis = section.get("hysteresis", self.selector_hysteresis)
            self.selector_blend_manual = section.get("blend_manual", self.selector_blend_manual)

        if "post_process" in settings_dict:
            section = settings_dict["post_process"]
            self.post_process_enabled = section.get("enabled", self.post_process_enabled)
            self.post_process_model = section.get("model", self.post_process_model)
            self.post_process_host = section.get("host", self.post_process_host)
            self.post_process_timeout_s = section.get("timeout_s", self.post_process_timeout_s)
            self.post_process_prompt_id = section.get("prompt_id", self.post_process_prompt_id)
            self.post_process_auto_prompt = section.get("auto_prompt", self.post_process_auto_prompt)

        if "at_file" in settings_dict:
            section = settings_dict["at_file"]
            self.at_file_enabled = section.get("enabled", self.at_file_enabled)
            self.workspace_root = section.get("workspace_root", self.workspace_root)
            self.require_git = section.get("require_git", self.require_git)

        if "ui" in settings_dict:
            section = settings_dict["ui"]
            self.show_notifications = section.get("show_notifications", self.show_notifications)
            self.debug_mode = section.get("debug_mode", self.debug_mode)

    def snapshot(self):
        """Return an independent copy for a single pipeline pass."""
        return copy.deepcopy(self)

    def to_dict(self):
        """Convert settings to a dictionary."""
        return {
            "hotkeys": {
                "toggle_listening": self.hotkey,
                "exit_app": self.exit_hotkey,
                "push_to_talk": self.push_to_talk_key
            },
            "recording": {
                "mode": self.recording_mode,
                "signal_toggle": self.enable_signal_toggle
            },
            "audio": {
                "sample_rate": self.sample_rate,
                "input_device_index": self.input_device_index,
                "frame_ms": self.frame_ms,
                "vad_backend": self.vad_backend,
                "vad_aggressiveness": self.vad_aggressiveness,
                "silence_threshold": self.silence_threshold,
                "trailing_silence_ms": self.trailing_silence_ms,
                "min_segment_ms": self.min_segment_ms,
                "max_segment_ms": self.max_segment_ms,
                "frame_queue_size": self.frame_queue_size,
                "segment_queue_size": self.segment_queue_size,
                "use_noise_reduction": self.use_noise_reduction
            },
            "processing": {
                "model_id": self.model_id,
                "device": self.device,
                "cuda_path": self.cuda_path,
                "language": self.language,
                "model_unload_timeout_s": self.model_unload_timeout_s
            },
            "jargon": {
                "enabled_profiles": list(self.enabled_profiles),
                "disabled_profiles": list(self.disabled_profiles),
                "custom_terms": list(self.custom_terms),
                "custom_corrections": [dict(c) for c in self.custom_corrections],
                "packs": copy.deepcopy(self.jargon_packs)
            },
            "domain_selector": {
                "enabled": self.selector_enabled,
                "timeout_ms": self.selector_timeout_ms,
                "top_k": self.selector_top_k,
                "min_score": self.selector_min_score,
                "hysteresis": self.selector_hysteresis,
                "blend_manual": self.selector_blend_manual
            },
            "post_process": {
                "enabled": self.post_process_enabled,
                "model": self.post_process_model,
                "host": self.post_process_host,
                "timeout_s": self.post_process_timeout_s,
                "prompt_id": self.post_process_prompt_id,
                "auto_prompt": self.post_process_auto_prompt
            },
            "at_file": {
                "enabled": self.at_file_enabled,
                "workspace_root": self.workspace_root,
                "require_git": self.require_git
            },
            "ui": {
                "show_notifications": self.show_notifications,
                "debug_mode": self.debug_mode
            }
        }
