import json

import pytest

from dictation_pipeline.exceptions import PackFormatError
from dictation_pipeline.utils.config_manager import ConfigManager


@pytest.fixture
def manager(tmp_path):
    return ConfigManager(config_dir=str(tmp_path))


def write_settings(manager, data):
    with open(manager.settings_file, "w", encoding="utf-8") as f:
        json.dump(data, f)


def test_defaults_without_file(manager):
    settings = manager.load_settings()
    assert settings.recording_mode == "toggle"
    assert settings.model_unload_timeout_s == 300
    assert settings.enabled_profiles == ["coding"]


def test_save_and_reload_round_trip(manager):
    settings = manager.load_settings()
    settings.recording_mode = "push_to_talk"
    settings.selector_enabled = True
    settings.custom_corrections = [{"from": "cube control", "to": "kubectl"}]
    settings.model_unload_timeout_s = None
    assert manager.save_settings(settings)

    reloaded = manager.load_settings()
    assert reloaded.recording_mode == "push_to_talk"
    assert reloaded.selector_enabled
    assert reloaded.custom_corrections == [{"from": "cube control", "to": "kubectl"}]
    assert reloaded.model_unload_timeout_s is None


def test_invalid_values_fall_back_to_defaults(manager):
    write_settings(manager, {
        "recording": {"mode": "hold"},
        "audio": {"sample_rate": 12345, "frame_ms": 25, "trailing_silence_ms": True,
                  "min_segment_ms": 5000, "max_segment_ms": 2000},
        "processing": {"device": "tpu", "model_unload_timeout_s": -1},
        "domain_selector": {"top_k": 50, "timeout_ms": "fast", "min_score": 3},
        "jargon": {"custom_terms": ["  Kafka ", "", 7]},
    })

    settings = manager.load_settings()

    assert settings.recording_mode == "toggle"
    assert settings.sample_rate == 16000
    assert settings.frame_ms == 30
    assert settings.trailing_silence_ms == 700
    assert (settings.min_segment_ms, settings.max_segment_ms) == (300, 30000)
    assert settings.device == "cpu"
    assert settings.model_unload_timeout_s == 300
    assert settings.selector_top_k == 2
    assert settings.selector_timeout_ms == 120
    assert settings.selector_min_score == 0.1
    assert settings.custom_terms == ["Kafka"]


def test_post_process_prompt_settings(manager):
    write_settings(manager, {"post_process": {"prompt_id": "haiku", "auto_prompt": True}})
    settings = manager.load_settings()
    assert settings.post_process_prompt_id == "improve_transcription"
    assert settings.post_process_auto_prompt

    settings.post_process_prompt_id = "meeting_notes"
    manager.save_settings(settings)
    assert manager.load_settings().post_process_prompt_id == "meeting_notes"


def test_corrupt_file_uses_defaults(manager):
    with open(manager.settings_file, "w", encoding="utf-8") as f:
        f.write("{not json")
    assert manager.load_settings().hotkey == "ctrl+alt+z"


def test_stored_packs_are_validated(manager):
    write_settings(manager, {"jargon": {"packs": [
        {"id": "ok", "label": "OK"},
        {"id": "ok", "label": "Dup"},
        {"id": "coding", "label": "Builtin clash"},
        {"label": "no id"},
    ]}})
    settings = manager.load_settings()
    assert [p.id for p in manager.user_profiles(settings)] == ["ok"]


def test_import_and_export_packs(manager, tmp_path):
    source = tmp_path / "packs.json"
    source.write_text(json.dumps({"version": 1, "packs": [
        {"id": "radio", "label": "Radio", "terms": ["QSL"]},
        {"id": "bad"},
    ]}), encoding="utf-8")
    settings = manager.load_settings()

    report = manager.import_jargon_packs(settings, str(source))

    assert report.imported == ["radio"]
    assert len(report.skipped) == 1
    assert [p.id for p in manager.user_profiles(manager.load_settings())] == ["radio"]

    target = tmp_path / "out.json"
    manager.export_jargon_packs(settings, str(target))
    exported = json.loads(target.read_text(encoding="utf-8"))
    assert [p["id"] for p in exported["packs"]] == ["radio"]


def test_import_rejects_unreadable_document(manager, tmp_path):
    source = tmp_path / "packs.json"
    source.write_text("[]", encoding="utf-8")
    settings = manager.load_settings()
    with pytest.raises(PackFormatError):
        manager.import_jargon_packs(settings, str(source))
    assert settings.jargon_packs == []
