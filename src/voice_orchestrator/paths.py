"""
Deterministic on-disk layout of every asset class.

All locations derive from a single user-data root::

    {root}/
    ├── voice-settings.yaml
    ├── tts-debug.log
    └── deps/
        ├── piper/
        │   ├── piper/piper          # extracted engine binary
        │   ├── voices/              # built-in and catalog-downloaded voices
        │   └── custom-voices/       # user-imported voices + custom-voices.json
        ├── whisper/
        │   ├── bin/                 # optional whisper.cpp CLI
        │   └── models/
        └── xtts/
            ├── xtts_helper.py
            ├── python/              # standalone CPython, when downloaded
            ├── venv/
            └── voices/<voice-id>/   # reference.wav + metadata.json

Nothing here touches the filesystem except ``ensure_dir``.
"""

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

CUSTOM_VOICE_PREFIX = "custom:"
CUSTOM_METADATA_FILENAME = "custom-voices.json"
MODEL_EXT = ".onnx"
CONFIG_EXT = ".onnx.json"


def ensure_dir(path: Path) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_plain_name(name: str) -> bool:
    """True when ``name`` is a single path component, not ``.`` or ``..``."""
    return bool(name) and name not in (".", "..") and Path(name).name == name and "\\" not in name


# Supplies the directory for short-lived output files (synthesized WAVs, clips).
TempDirProvider = Callable[[], Path]


def system_temp_dir() -> Path:
    return Path(tempfile.gettempdir())


@dataclass(frozen=True)
class AssetPaths:
    """Path resolver rooted at one persistent user-data directory.

    Attributes:
        root: The user-data root. Created lazily by the components that
            write into it.
        windows: Whether executables carry Windows names/layouts.
    """

    root: Path
    windows: bool = False

    # ------------------------------------------------------------------
    # Top-level files
    # ------------------------------------------------------------------

    @property
    def deps_dir(self) -> Path:
        return self.root / "deps"

    @property
    def settings_path(self) -> Path:
        return self.root / "voice-settings.yaml"

    @property
    def tts_debug_log_path(self) -> Path:
        return self.root / "tts-debug.log"

    # ------------------------------------------------------------------
    # Piper
    # ------------------------------------------------------------------

    @property
    def piper_dir(self) -> Path:
        return self.deps_dir / "piper"

    @property
    def piper_voices_dir(self) -> Path:
        return self.piper_dir / "voices"

    @property
    def custom_voices_dir(self) -> Path:
        return self.piper_dir / "custom-voices"

    @property
    def custom_metadata_path(self) -> Path:
        return self.custom_voices_dir / CUSTOM_METADATA_FILENAME

    @property
    def piper_binary_name(self) -> str:
        return "piper.exe" if self.windows else "piper"

    def piper_binary_candidates(self) -> list[Path]:
        """Locations searched for the Piper binary, in priority order."""
        candidates = [
            self.piper_dir / "piper" / self.piper_binary_name,
            self.piper_dir / self.piper_binary_name,
        ]
        if not self.windows:
            candidates.extend([Path("/usr/bin/piper"), Path("/usr/local/bin/piper")])
        return candidates

    def voice_model_path(self, key: str) -> Path:
        """Model file of a built-in or downloaded voice."""
        return self.piper_voices_dir / f"{key}{MODEL_EXT}"

    def voice_config_path(self, key: str) -> Path:
        return self.piper_voices_dir / f"{key}{CONFIG_EXT}"

    def custom_model_path(self, base_name: str) -> Path:
        return self.custom_voices_dir / f"{base_name}{MODEL_EXT}"

    def custom_config_path(self, base_name: str) -> Path:
        return self.custom_voices_dir / f"{base_name}{CONFIG_EXT}"

    # ------------------------------------------------------------------
    # Whisper
    # ------------------------------------------------------------------

    @property
    def whisper_dir(self) -> Path:
        return self.deps_dir / "whisper"

    @property
    def whisper_models_dir(self) -> Path:
        return self.whisper_dir / "models"

    def whisper_model_path(self, filename: str) -> Path:
        return self.whisper_models_dir / filename

    def whisper_binary_candidates(self) -> list[Path]:
        name = "whisper-cli.exe" if self.windows else "whisper-cli"
        return [self.whisper_dir / "bin" / name, self.whisper_dir / name]

    # ------------------------------------------------------------------
    # XTTS voice cloning
    # ------------------------------------------------------------------

    @property
    def xtts_dir(self) -> Path:
        return self.deps_dir / "xtts"

    @property
    def xtts_voices_dir(self) -> Path:
        return self.xtts_dir / "voices"

    @property
    def xtts_venv_dir(self) -> Path:
        return self.xtts_dir / "venv"

    @property
    def xtts_python_dir(self) -> Path:
        return self.xtts_dir / "python"

    @property
    def xtts_helper_path(self) -> Path:
        return self.xtts_dir / "xtts_helper.py"

    def clone_voice_dir(self, voice_id: str) -> Path:
        return self.xtts_voices_dir / voice_id

    def clone_reference_path(self, voice_id: str) -> Path:
        return self.clone_voice_dir(voice_id) / "reference.wav"

    def clone_metadata_path(self, voice_id: str) -> Path:
        return self.clone_voice_dir(voice_id) / "metadata.json"

    @property
    def standalone_python(self) -> Path:
        if self.windows:
            return self.xtts_python_dir / "python" / "python.exe"
        return self.xtts_python_dir / "python" / "bin" / "python3"

    @property
    def venv_python(self) -> Path:
        if self.windows:
            return self.xtts_venv_dir / "Scripts" / "python.exe"
        return self.xtts_venv_dir / "bin" / "python"
