"""
Tests for persisted voice settings.
"""

import pytest
import yaml
from pydantic import ValidationError

from voice_orchestrator.discovery import DEFAULT_VOICE
from voice_orchestrator.models import TTSEngineName
from voice_orchestrator.settings import VoiceSettings, load_settings, save_settings


class TestClamping:
    """Numeric settings are clamped on construction and assignment."""

    @pytest.mark.parametrize(
        "field, value, expected",
        [
            ("tts_speed", 5.0, 2.0),
            ("tts_speed", 0.1, 0.5),
            ("xtts_temperature", 0.0, 0.1),
            ("xtts_temperature", 3.0, 1.0),
            ("xtts_top_k", 0, 1),
            ("xtts_top_k", 250, 100),
            ("xtts_top_k", 7.6, 8),
            ("xtts_top_p", 2.0, 1.0),
            ("xtts_repetition_penalty", 0.5, 1.0),
            ("xtts_repetition_penalty", 42.0, 10.0),
        ],
    )
    def test_assignment_is_clamped(self, field, value, expected):
        settings = VoiceSettings()
        setattr(settings, field, value)
        assert getattr(settings, field) == expected

    def test_construction_is_clamped(self):
        settings = VoiceSettings(tts_speed=9, xtts_top_k=-3)
        assert settings.tts_speed == 2.0
        assert settings.xtts_top_k == 1

    def test_in_range_values_are_kept(self):
        settings = VoiceSettings(tts_speed=1.25, xtts_top_p=0.5)
        assert settings.tts_speed == 1.25
        assert settings.xtts_top_p == 0.5

    def test_unknown_whisper_model_rejected(self):
        settings = VoiceSettings()
        with pytest.raises(ValidationError):
            settings.whisper_model = "enormous"
        assert settings.whisper_model == "base.en"


class TestPersistence:
    def test_defaults_when_missing(self, tmp_path):
        settings = load_settings(tmp_path / "voice-settings.yaml")
        assert settings == VoiceSettings()
        assert settings.tts_voice == DEFAULT_VOICE
        assert settings.tts_engine is TTSEngineName.PIPER

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "voice-settings.yaml"
        settings = VoiceSettings(
            tts_engine=TTSEngineName.XTTS,
            xtts_voice="narrator",
            tts_speed=1.5,
            whisper_model="small.en",
        )

        save_settings(settings, path)
        loaded = load_settings(path)

        assert loaded == settings
        raw = yaml.safe_load(path.read_text())
        assert raw["tts_engine"] == "xtts"
        assert raw["xtts_voice"] == "narrator"

    def test_hand_edited_values_are_clamped_on_load(self, tmp_path):
        path = tmp_path / "voice-settings.yaml"
        path.write_text("tts_speed: 12\nxtts_top_k: 1000\nunknown_key: true\n")

        settings = load_settings(path)

        assert settings.tts_speed == 2.0
        assert settings.xtts_top_k == 100

    @pytest.mark.parametrize(
        "content",
        [
            "tts_speed: [unclosed\n",
            "- just\n- a list\n",
            "whisper_model: enormous\n",
        ],
    )
    def test_invalid_file_falls_back_to_defaults(self, tmp_path, content):
        path = tmp_path / "voice-settings.yaml"
        path.write_text(content)
        assert load_settings(path) == VoiceSettings()
