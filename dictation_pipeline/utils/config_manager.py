"""
Configuration management for the dictation pipeline.
"""

import os
import json
import logging

from dictation_pipeline.core.jargon import BUILTIN_PROFILE_IDS
from dictation_pipeline.core.prompts import BUILTIN_PROMPT_IDS, DEFAULT_PROMPT_ID
from dictation_pipeline.models.settings import Settings
from dictation_pipeline.utils import jargon_packs


class ConfigManager:
    """Loads, validates and saves settings and user jargon packs."""

    def __init__(self, config_dir=None):
        """Initialize the configuration manager."""
        self.logger = logging.getLogger(__name__)
        self.config_dir = config_dir or os.path.join(os.path.expanduser("~"), ".dictation_pipeline")
        os.makedirs(self.config_dir, exist_ok=True)
        self.settings_file = os.path.join(self.config_dir, "settings.json")

    def create_default_settings(self):
        return Settings()

    def load_settings(self):
        """Load settings from file, falling back to defaults for anything invalid."""
        settings = self.create_default_settings()

        if os.path.exists(self.settings_file):
            try:
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    settings.update(json.load(f))
                self.logger.info("Settings loaded from file")
            except (OSError, ValueError) as e:
                self.logger.error(f"Error loading settings, using defaults: {e}")
        else:
            self.logger.info("No settings file found, using defaults")

        return self.validate_settings(settings)

    def validate_settings(self, settings):
        """Ensure settings are within acceptable ranges."""
        settings.recording_mode = self.validate_option(settings.recording_mode, ["toggle", "push_to_talk"], "toggle")

        settings.sample_rate = self.validate_option(settings.sample_rate, [8000, 16000, 32000, 48000], 16000)
        settings.frame_ms = self.validate_option(settings.frame_ms, [10, 20, 30], 30)
        settings.vad_backend = self.validate_option(settings.vad_backend, ["webrtc", "energy"], "webrtc")
        settings.vad_aggressiveness = self.validate_option(settings.vad_aggressiveness, [0, 1, 2, 3], 2)
        settings.silence_threshold = self.validate_range(settings.silence_threshold, 50, 5000, 500)
        settings.trailing_silence_ms = self.validate_range(settings.trailing_silence_ms, 100, 5000, 700)
        settings.min_segment_ms = self.validate_range(settings.min_segment_ms, 0, 5000, 300)
        settings.max_segment_ms = self.validate_range(settings.max_segment_ms, 1000, 120000, 30000)
        if settings.min_segment_ms >= settings.max_segment_ms:
            self.logger.warning("min_segment_ms must be below max_segment_ms, resetting both")
            settings.min_segment_ms, settings.max_segment_ms = 300, 30000
        settings.frame_queue_size = int(self.validate_range(settings.frame_queue_size, 16, 10000, 256))
        settings.segment_queue_size = int(self.validate_range(settings.segment_queue_size, 1, 256, 16))
        if not (isinstance(settings.input_device_index, int) or settings.input_device_index is None):
            self.logger.warning(f"Invalid input_device_index '{settings.input_device_index}', resetting to default")
            settings.input_device_index = None

        if not isinstance(settings.model_id, str) or not settings.model_id.strip():
            settings.model_id = "small"
        settings.device = self.validate_option(settings.device, ["cpu", "cuda"], "cpu")
        timeout = settings.model_unload_timeout_s
        if timeout is not None:
            settings.model_unload_timeout_s = self.validate_range(timeout, 0, 24 * 3600, 300)

        settings.selector_top_k = int(self.validate_range(settings.selector_top_k, 1, 5, 2))
        settings.selector_timeout_ms = int(self.validate_range(settings.selector_timeout_ms, 25, 2000, 120))
        settings.selector_min_score = self.validate_range(settings.selector_min_score, 0.0, 1.0, 0.1)
        settings.selector_hysteresis = self.validate_range(settings.selector_hysteresis, 0.0, 1.0, 0.08)

        settings.post_process_timeout_s = self.validate_range(settings.post_process_timeout_s, 0.5, 120, 10.0)
        settings.post_process_prompt_id = self.validate_option(
            settings.post_process_prompt_id, sorted(BUILTIN_PROMPT_IDS), DEFAULT_PROMPT_ID)

        settings.custom_terms = [t.strip() for t in settings.custom_terms if isinstance(t, str) and t.strip()]
        settings.jargon_packs = self._valid_packs(settings.jargon_packs)
        return settings

    def _valid_packs(self, entries):
        valid = []
        seen = set()
        for entry in entries:
            try:
                profile = jargon_packs.profile_from_entry(entry)
            except ValueError as e:
                self.logger.warning(f"Dropping stored jargon pack {entry!r}: {e}")
                continue
            if profile.id in seen or profile.id in BUILTIN_PROFILE_IDS:
                self.logger.warning(f"Dropping stored jargon pack with conflicting id {profile.id}")
                continue
            seen.add(profile.id)
            valid.append(profile.to_pack_entry())
        return valid

    def validate_range(self, value, min_val, max_val, default):
        """Ensure a value is within a specified range."""
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)) \
                or value < min_val or value > max_val:
            return default
        return value

    def validate_option(self, value, options, default):
        """Ensure a value is one of the allowed options."""
        if value not in options:
            return default
        return value

    def save_settings(self, settings):
        """Save settings to file."""
        try:
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(settings.to_dict(), f, indent=2)
            self.logger.info("Settings saved to file")
            return True
        except OSError as e:
            self.logger.error(f"Error saving settings: {e}")
            return False

    def user_profiles(self, settings):
        return [jargon_packs.profile_from_entry(entry) for entry in settings.jargon_packs]

    def import_jargon_packs(self, settings, path, replace_existing=False):
        """
        Import a pack document into ``settings`` and persist it.

        Returns:
            ImportReport listing imported and skipped packs

        Raises:
            PackFormatError: The document as a whole is unreadable
            OSError: The file cannot be read
        """
        with open(path, 'r', encoding='utf-8') as f:
            profiles, report = jargon_packs.parse_pack_document(f.read())
        merged = jargon_packs.merge_packs(self.user_profiles(settings), profiles, replace_existing)
        settings.jargon_packs = [p.to_pack_entry() for p in merged]
        self.save_settings(settings)
        self.logger.info(f"Imported {len(report.imported)} jargon packs, skipped {len(report.skipped)}")
        return report

    def export_jargon_packs(self, settings, path, selected_ids=None):
        document = jargon_packs.export_pack_document(self.user_profiles(settings), selected_ids)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(document)
        self.logger.info(f"Exported jargon packs to {path}")
        return path
