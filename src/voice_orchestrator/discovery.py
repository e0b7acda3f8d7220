"""
Installed voice discovery and voice-key resolution.

Voices live in three disjoint namespaces, always scanned in this order:

  1. Built-in  (known voice table, files in ``voices/``)
  2. Downloaded (any other model/config pair in ``voices/``)
  3. Custom    (user-imported, ``custom-voices/``, keys prefixed ``custom:``)

A voice counts as installed only when both its ``.onnx`` model and its
``.onnx.json`` config exist. The filesystem is the source of truth:
nothing here is cached between calls.
"""

import json
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .models import (
    CustomVoiceMetadata,
    CustomVoiceRecord,
    InstalledVoice,
    VoicePaths,
    VoiceSource,
)
from .paths import CONFIG_EXT, CUSTOM_VOICE_PREFIX, MODEL_EXT, AssetPaths, ensure_dir, is_plain_name
from .results import OperationResult

logger = logging.getLogger("voice-orchestrator.discovery")

_HF_VOICES = "https://huggingface.co/rhasspy/piper-voices/resolve/main"


@dataclass(frozen=True)
class BuiltinVoice:
    """A voice shipped in the known voice table (CC0/CC-BY only)."""

    key: str
    url: str
    license: str
    description: str

    @property
    def file(self) -> str:
        return f"{self.key}{MODEL_EXT}"

    @property
    def config(self) -> str:
        return f"{self.key}{CONFIG_EXT}"

    @property
    def config_url(self) -> str:
        return f"{self.url}.json"

    @property
    def language(self) -> str:
        return "English (US)" if self.key.startswith("en_US") else "English (UK)"


def _builtin(key: str, hf_dir: str, license: str, description: str) -> BuiltinVoice:
    return BuiltinVoice(
        key=key,
        url=f"{_HF_VOICES}/{hf_dir}/{key}{MODEL_EXT}",
        license=license,
        description=description,
    )


PIPER_VOICES: dict[str, BuiltinVoice] = {
    v.key: v
    for v in (
        _builtin("en_US-libritts_r-medium", "en/en_US/libritts_r/medium", "CC-BY-4.0", "LibriTTS-R (US English)"),
        _builtin("en_GB-jenny_dioco-medium", "en/en_GB/jenny_dioco/medium", "CC0", "Jenny DioCo (British)"),
        _builtin("en_US-ryan-medium", "en/en_US/ryan/medium", "CC-BY-4.0", "Ryan (US English male)"),
        _builtin("en_US-amy-medium", "en/en_US/amy/medium", "CC-BY-4.0", "Amy (US English female)"),
        _builtin("en_US-arctic-medium", "en/en_US/arctic/medium", "CC0", "Arctic (US English, multi-speaker)"),
        _builtin("en_GB-alan-medium", "en/en_GB/alan/medium", "CC-BY-4.0", "Alan (British male)"),
    )
}

DEFAULT_VOICE = "en_US-libritts_r-medium"


def _pair_if_complete(model: Path, config: Path) -> Optional[VoicePaths]:
    if model.is_file() and config.is_file():
        return VoicePaths(model=model, config=config)
    return None


def _model_stems(directory: Path) -> list[str]:
    """Base names of ``*.onnx`` models in ``directory``, sorted."""
    if not directory.is_dir():
        return []
    return sorted(
        p.name[: -len(MODEL_EXT)]
        for p in directory.iterdir()
        if p.name.endswith(MODEL_EXT) and p.is_file()
    )


class VoiceDiscovery:
    """Scans the asset root for installed voices and resolves voice keys.

    Args:
        paths: Asset path resolver.
    """

    def __init__(self, paths: AssetPaths) -> None:
        self.paths = paths

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def builtin_voice_paths(self, key: str) -> Optional[VoicePaths]:
        """Paths of a built-in voice, if it is in the table and installed."""
        if key not in PIPER_VOICES:
            return None
        return _pair_if_complete(self.paths.voice_model_path(key), self.paths.voice_config_path(key))

    def resolve(self, voice_key: str) -> Optional[VoicePaths]:
        """Resolve a voice key to model/config paths.

        ``custom:``-prefixed keys resolve only in the custom namespace.
        Other keys try built-in paths, then downloaded paths.

        Returns:
            VoicePaths if both files exist, else None.
        """
        if voice_key.startswith(CUSTOM_VOICE_PREFIX):
            base = voice_key[len(CUSTOM_VOICE_PREFIX):]
            if not is_plain_name(base):
                return None
            return _pair_if_complete(
                self.paths.custom_model_path(base), self.paths.custom_config_path(base)
            )

        builtin = self.builtin_voice_paths(voice_key)
        if builtin is not None:
            return builtin

        return _pair_if_complete(
            self.paths.voice_model_path(voice_key), self.paths.voice_config_path(voice_key)
        )

    def resolve_with_fallback(self, voice_key: str) -> Optional[tuple[str, VoicePaths]]:
        """Resolve ``voice_key``, or the first installed voice if it is missing.

        Returns:
            ``(key_used, paths)``, or None when no voice is installed at all.
        """
        paths = self.resolve(voice_key)
        if paths is not None:
            return voice_key, paths

        for voice in self.list_installed():
            paths = self.resolve(voice.key)
            if paths is not None:
                logger.info("Voice '%s' not installed, falling back to '%s'", voice_key, voice.key)
                return voice.key, paths
        return None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def installed_builtin_keys(self) -> list[str]:
        """Keys of built-in voices that are installed, in table order."""
        return [key for key in PIPER_VOICES if self.builtin_voice_paths(key) is not None]

    def list_installed(self) -> list[InstalledVoice]:
        """Enumerate installed voices across all three namespaces."""
        installed: list[InstalledVoice] = []

        for key in self.installed_builtin_keys():
            info = PIPER_VOICES[key]
            installed.append(
                InstalledVoice(
                    key=key,
                    display_name=info.description,
                    source=VoiceSource.BUILTIN,
                    quality="medium",
                    language=info.language,
                )
            )

        voices_dir = self.paths.piper_voices_dir
        for key in _model_stems(voices_dir):
            if key in PIPER_VOICES:
                continue
            if not self.paths.voice_config_path(key).is_file():
                continue
            parts = key.split("-")
            installed.append(
                InstalledVoice(
                    key=key,
                    display_name=key.replace("-", " ").replace("_", " "),
                    source=VoiceSource.DOWNLOADED,
                    quality=parts[-1] if len(parts) > 1 else "medium",
                    language=parts[0],
                )
            )

        metadata = self.load_custom_metadata()
        for base in _model_stems(self.paths.custom_voices_dir):
            if not self.paths.custom_config_path(base).is_file():
                continue
            record = metadata.voices.get(base)
            installed.append(
                InstalledVoice(
                    key=f"{CUSTOM_VOICE_PREFIX}{base}",
                    display_name=record.display_name if record else base,
                    source=VoiceSource.CUSTOM,
                )
            )

        return installed

    # ------------------------------------------------------------------
    # Custom voice metadata
    # ------------------------------------------------------------------

    def load_custom_metadata(self) -> CustomVoiceMetadata:
        """Read the custom-voice sidecar; missing or corrupt files read as empty."""
        path = self.paths.custom_metadata_path
        if not path.exists():
            return CustomVoiceMetadata()
        try:
            return CustomVoiceMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as exc:
            logger.warning("Ignoring unreadable custom voice metadata %s: %s", path, exc)
            return CustomVoiceMetadata()

    def save_custom_metadata(self, metadata: CustomVoiceMetadata) -> None:
        """Rewrite the custom-voice sidecar wholesale."""
        ensure_dir(self.paths.custom_voices_dir)
        self.paths.custom_metadata_path.write_text(
            json.dumps(metadata.model_dump(by_alias=True), indent=2),
            encoding="utf-8",
        )

    def import_custom_voice(
        self,
        model_path: Path,
        config_path: Path,
        display_name: Optional[str] = None,
    ) -> OperationResult:
        """Copy a user-supplied model/config pair into the custom namespace.

        Returns:
            OperationResult whose ``voice_key`` is ``custom:<base name>``.
        """
        model_path = Path(model_path)
        config_path = Path(config_path)

        if not model_path.is_file():
            return OperationResult.fail("ONNX model file not found")
        if not config_path.is_file():
            return OperationResult.fail("Config file not found")

        base = model_path.name[: -len(MODEL_EXT)] if model_path.name.endswith(MODEL_EXT) else model_path.stem
        try:
            ensure_dir(self.paths.custom_voices_dir)
            shutil.copyfile(model_path, self.paths.custom_model_path(base))
            shutil.copyfile(config_path, self.paths.custom_config_path(base))

            metadata = self.load_custom_metadata()
            metadata.voices[base] = CustomVoiceRecord(
                display_name=display_name or base,
                added_at=int(time.time() * 1000),
            )
            self.save_custom_metadata(metadata)
        except OSError as exc:
            return OperationResult.fail(f"Failed to import voice: {exc}")

        logger.info("Imported custom voice '%s'", base)
        return OperationResult.ok(voice_key=f"{CUSTOM_VOICE_PREFIX}{base}")

    def remove_custom_voice(self, voice_key: str) -> OperationResult:
        """Delete a custom voice's files and its metadata entry."""
        if not voice_key.startswith(CUSTOM_VOICE_PREFIX):
            return OperationResult.fail("Can only remove custom voices")

        base = voice_key[len(CUSTOM_VOICE_PREFIX):]
        if not is_plain_name(base):
            return OperationResult.fail(f"Invalid custom voice key: {voice_key}")

        try:
            self.paths.custom_model_path(base).unlink(missing_ok=True)
            self.paths.custom_config_path(base).unlink(missing_ok=True)

            if self.paths.custom_metadata_path.exists():
                metadata = self.load_custom_metadata()
                if metadata.voices.pop(base, None) is not None:
                    self.save_custom_metadata(metadata)
        except OSError as exc:
            return OperationResult.fail(f"Failed to remove voice: {exc}")

        logger.info("Removed custom voice '%s'", base)
        return OperationResult.ok(voice_key=voice_key)
