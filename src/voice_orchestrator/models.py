"""
Data models for voice assets, catalog manifests and metadata sidecars.

JSON sidecars written by earlier releases use camelCase keys; the models
keep those keys through field aliases so files stay interchangeable.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class VoiceSource(str, Enum):
    """Namespace an installed voice was discovered in."""

    BUILTIN = "builtin"
    DOWNLOADED = "downloaded"
    CUSTOM = "custom"


class TTSEngineName(str, Enum):
    """Synthesis back-ends the orchestrator can route to."""

    PIPER = "piper"
    XTTS = "xtts"


# =============================================================================
# Remote catalog manifest
# =============================================================================


class CatalogLanguage(BaseModel):
    """Language metadata of a catalog voice."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str = ""
    family: str = ""
    region: str = ""
    name_native: str = ""
    name_english: str = ""
    country_english: str = ""


class CatalogFile(BaseModel):
    """Size and checksum of one file belonging to a catalog voice."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    size_bytes: int = 0
    md5_digest: str = ""


class VoiceCatalogEntry(BaseModel):
    """One voice listed in the remote ``voices.json`` manifest."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    key: str = Field(description="Voice key, e.g. en_US-amy-medium")
    name: str = Field(default="", description="Speaker/dataset name")
    language: CatalogLanguage = Field(default_factory=CatalogLanguage)
    quality: str = Field(default="medium", description="x_low, low, medium or high")
    num_speakers: int = 1
    speaker_id_map: dict[str, int] = Field(default_factory=dict)
    files: dict[str, CatalogFile] = Field(
        default_factory=dict,
        description="Repository-relative file path to size/checksum metadata",
    )
    aliases: list[str] = Field(default_factory=list)

    def model_file(self) -> Optional[tuple[str, CatalogFile]]:
        """Return the ``(path, meta)`` pair of the ``.onnx`` model, if listed."""
        for path, meta in self.files.items():
            if path.endswith(".onnx"):
                return path, meta
        return None

    def config_file(self) -> Optional[tuple[str, CatalogFile]]:
        """Return the ``(path, meta)`` pair of the ``.onnx.json`` config, if listed."""
        for path, meta in self.files.items():
            if path.endswith(".onnx.json"):
                return path, meta
        return None


# =============================================================================
# Installed voices
# =============================================================================


class InstalledVoice(BaseModel):
    """A voice whose model and config are both present on disk."""

    key: str
    display_name: str
    source: VoiceSource
    quality: Optional[str] = None
    language: Optional[str] = None


@dataclass(frozen=True)
class VoicePaths:
    """Resolved model/config files of one voice."""

    model: Path
    config: Path


class CustomVoiceRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(alias="displayName")
    added_at: int = Field(alias="addedAt", description="Epoch milliseconds")


class CustomVoiceMetadata(BaseModel):
    """Sidecar describing user-imported voices, keyed by file base name."""

    voices: dict[str, CustomVoiceRecord] = Field(default_factory=dict)


# =============================================================================
# Voice cloning
# =============================================================================


class XTTSVoice(BaseModel):
    """A cloned voice: one reference recording plus metadata."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    language: str = "en"
    reference_path: str = Field(alias="referencePath")
    created_at: int = Field(alias="createdAt", description="Epoch milliseconds")


# =============================================================================
# Status records (computed on demand, never persisted)
# =============================================================================


class WhisperStatus(BaseModel):
    installed: bool
    models: list[str] = Field(default_factory=list)
    current_model: Optional[str] = None


class TTSStatus(BaseModel):
    installed: bool
    engine: Optional[TTSEngineName] = None
    voices: list[str] = Field(default_factory=list)
    current_voice: Optional[str] = None


class XTTSStatus(BaseModel):
    installed: bool
    python_path: Optional[str] = None
    model_downloaded: bool = False
    error: Optional[str] = None


__all__ = [
    "VoiceSource",
    "TTSEngineName",
    "CatalogLanguage",
    "CatalogFile",
    "VoiceCatalogEntry",
    "InstalledVoice",
    "VoicePaths",
    "CustomVoiceRecord",
    "CustomVoiceMetadata",
    "XTTSVoice",
    "WhisperStatus",
    "TTSStatus",
    "XTTSStatus",
]
