"""
Persisted voice settings.

Settings live in ``voice-settings.yaml`` at the data root. Numeric values
are clamped into their supported ranges whenever they are set or loaded,
so a hand-edited file can never push an engine out of range.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .discovery import DEFAULT_VOICE
from .engines.whisper import DEFAULT_WHISPER_MODEL, WHISPER_MODELS
from .models import TTSEngineName

logger = logging.getLogger("voice-orchestrator.settings")

SPEED_RANGE = (0.5, 2.0)
TEMPERATURE_RANGE = (0.1, 1.0)
TOP_K_RANGE = (1, 100)
TOP_P_RANGE = (0.1, 1.0)
REPETITION_PENALTY_RANGE = (1.0, 10.0)


def clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


class VoiceSettings(BaseModel):
    """User-selected engines, voices and synthesis parameters."""

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    whisper_model: str = DEFAULT_WHISPER_MODEL
    tts_engine: TTSEngineName = TTSEngineName.PIPER
    tts_voice: str = DEFAULT_VOICE
    xtts_voice: Optional[str] = None
    tts_speed: float = Field(default=1.0, description="Speech rate, 0.5-2.0")
    xtts_temperature: float = Field(default=0.65, description="Sampling temperature, 0.1-1.0")
    xtts_top_k: int = Field(default=50, description="Top-k sampling, 1-100")
    xtts_top_p: float = Field(default=0.85, description="Nucleus sampling, 0.1-1.0")
    xtts_repetition_penalty: float = Field(default=2.0, description="Repetition penalty, 1.0-10.0")

    @field_validator("whisper_model")
    @classmethod
    def _known_whisper_model(cls, v: str) -> str:
        if v not in WHISPER_MODELS:
            raise ValueError(f"Unknown Whisper model: {v}")
        return v

    @field_validator("tts_speed")
    @classmethod
    def _clamp_speed(cls, v: float) -> float:
        return clamp(v, SPEED_RANGE)

    @field_validator("xtts_temperature")
    @classmethod
    def _clamp_temperature(cls, v: float) -> float:
        return clamp(v, TEMPERATURE_RANGE)

    @field_validator("xtts_top_k", mode="before")
    @classmethod
    def _clamp_top_k(cls, v: float) -> int:
        return int(clamp(round(float(v)), TOP_K_RANGE))

    @field_validator("xtts_top_p")
    @classmethod
    def _clamp_top_p(cls, v: float) -> float:
        return clamp(v, TOP_P_RANGE)

    @field_validator("xtts_repetition_penalty")
    @classmethod
    def _clamp_repetition_penalty(cls, v: float) -> float:
        return clamp(v, REPETITION_PENALTY_RANGE)


def load_settings(path: Path) -> VoiceSettings:
    """Load settings from YAML; a missing or invalid file yields defaults."""
    if not path.exists():
        return VoiceSettings()
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Could not read voice settings %s, using defaults: %s", path, exc)
        return VoiceSettings()

    if not isinstance(data, dict):
        logger.warning("Invalid voice settings, using defaults")
        return VoiceSettings()
    try:
        return VoiceSettings.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid voice settings, using defaults: %s", exc.errors()[:1])
        return VoiceSettings()


def save_settings(settings: VoiceSettings, path: Path) -> None:
    """Persist settings back to YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(
            settings.model_dump(mode="json"),
            fh,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    logger.debug("Voice settings saved to %s", path)
