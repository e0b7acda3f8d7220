"""
Cloned voice storage.

Each clone is a directory under ``xtts/voices/`` holding the reference
recording (``reference.wav``) and a ``metadata.json`` sidecar. Sample
voices published with XTTS-v2 install into the same layout.
"""

import json
import logging
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..download import Downloader
from ..errors import DownloadError
from ..models import XTTSVoice
from ..paths import AssetPaths, ensure_dir, is_plain_name
from ..results import CloneResult, OperationResult, ProgressCallback, report

logger = logging.getLogger("voice-orchestrator.clone.voices")

XTTS_SAMPLES_URL = "https://huggingface.co/coqui/XTTS-v2/resolve/main/samples"

XTTS_LANGUAGES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "pl": "Polish",
    "tr": "Turkish",
    "ru": "Russian",
    "nl": "Dutch",
    "cs": "Czech",
    "ar": "Arabic",
    "zh-cn": "Chinese",
    "ja": "Japanese",
    "hu": "Hungarian",
    "ko": "Korean",
    "hi": "Hindi",
}


@dataclass(frozen=True)
class SampleVoice:
    id: str
    name: str
    language: str
    file: str

    @property
    def url(self) -> str:
        return f"{XTTS_SAMPLES_URL}/{self.file}"


XTTS_SAMPLE_VOICES: dict[str, SampleVoice] = {
    s.id: s
    for s in (
        SampleVoice("xtts-en-sample", "English Sample", "en", "en_sample.wav"),
        SampleVoice("xtts-de-sample", "German Sample", "de", "de_sample.wav"),
        SampleVoice("xtts-es-sample", "Spanish Sample", "es", "es_sample.wav"),
        SampleVoice("xtts-fr-sample", "French Sample", "fr", "fr_sample.wav"),
        SampleVoice("xtts-ja-sample", "Japanese Sample", "ja", "ja-sample.wav"),
        SampleVoice("xtts-pt-sample", "Portuguese Sample", "pt", "pt_sample.wav"),
        SampleVoice("xtts-tr-sample", "Turkish Sample", "tr", "tr_sample.wav"),
        SampleVoice("xtts-zh-sample", "Chinese Sample", "zh-cn", "zh-cn-sample.wav"),
    )
}

_UNSAFE_ID_CHARS = re.compile(r"[^a-z0-9]")


def voice_id_for(name: str) -> str:
    """Filesystem-safe id: lowercase, every other character becomes ``-``."""
    return _UNSAFE_ID_CHARS.sub("-", name.lower())


class CloneVoiceStore:
    """Create, list and delete cloned voices on disk.

    Args:
        paths: Asset path resolver.
        downloader: Downloader for sample voices.
    """

    def __init__(self, paths: AssetPaths, downloader: Downloader) -> None:
        self.paths = paths
        self.downloader = downloader

    def _write_metadata(self, voice: XTTSVoice) -> None:
        self.paths.clone_metadata_path(voice.id).write_text(
            json.dumps(voice.model_dump(by_alias=True), indent=2),
            encoding="utf-8",
        )

    def create(self, audio_path: Path, name: str, language: str = "en") -> CloneResult:
        """Copy a reference recording into a new clone directory.

        An existing clone with the same id is overwritten.
        """
        audio_path = Path(audio_path)
        if not audio_path.is_file():
            return CloneResult(success=False, error="Audio file not found")
        if not name.strip():
            return CloneResult(success=False, error="Voice name is required")
        if language not in XTTS_LANGUAGES:
            return CloneResult(success=False, error=f"Unsupported language: {language}")

        voice_id = voice_id_for(name)
        if not voice_id.strip("-"):
            return CloneResult(success=False, error="Voice name must contain letters or digits")

        try:
            ensure_dir(self.paths.clone_voice_dir(voice_id))
            reference = self.paths.clone_reference_path(voice_id)
            shutil.copyfile(audio_path, reference)
            self._write_metadata(
                XTTSVoice(
                    id=voice_id,
                    name=name,
                    language=language,
                    reference_path=str(reference),
                    created_at=int(time.time() * 1000),
                )
            )
        except OSError as exc:
            return CloneResult(success=False, error=str(exc))

        logger.info("Created cloned voice '%s' (%s)", voice_id, language)
        return CloneResult(success=True, voice_id=voice_id)

    def get(self, voice_id: str) -> Optional[XTTSVoice]:
        path = self.paths.clone_metadata_path(voice_id)
        if not path.is_file():
            return None
        try:
            return XTTSVoice.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError, OSError) as exc:
            logger.warning("Skipping unreadable voice metadata %s: %s", path, exc)
            return None

    def list_voices(self) -> list[XTTSVoice]:
        """All cloned voices, newest first."""
        voices_dir = self.paths.xtts_voices_dir
        if not voices_dir.is_dir():
            return []
        voices = [
            voice
            for voice in (self.get(d.name) for d in voices_dir.iterdir() if d.is_dir())
            if voice is not None
        ]
        return sorted(voices, key=lambda v: v.created_at, reverse=True)

    def delete(self, voice_id: str) -> OperationResult:
        """Remove a clone directory recursively. Unknown ids succeed."""
        if not is_plain_name(voice_id):
            return OperationResult.fail(f"Invalid voice id: {voice_id}")
        voice_dir = self.paths.clone_voice_dir(voice_id)
        try:
            if voice_dir.exists():
                shutil.rmtree(voice_dir)
        except OSError as exc:
            return OperationResult.fail(str(exc))
        logger.info("Deleted cloned voice '%s'", voice_id)
        return OperationResult.ok(voice_key=voice_id)

    # ------------------------------------------------------------------
    # Sample voices
    # ------------------------------------------------------------------

    def is_sample_installed(self, sample_id: str) -> bool:
        return self.paths.clone_metadata_path(sample_id).is_file()

    async def download_sample(
        self,
        sample_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CloneResult:
        """Download one of the XTTS-v2 sample recordings as a clone."""
        sample = XTTS_SAMPLE_VOICES.get(sample_id)
        if sample is None:
            return CloneResult(success=False, error=f'Sample voice "{sample_id}" not found')

        reference = self.paths.clone_reference_path(sample.id)
        try:
            ensure_dir(self.paths.clone_voice_dir(sample.id))
            report(on_progress, f"Downloading {sample.name}...", 0)
            await self.downloader.download(
                sample.url,
                reference,
                lambda pct: report(on_progress, f"Downloading {sample.name}...", pct),
            )
            self._write_metadata(
                XTTSVoice(
                    id=sample.id,
                    name=sample.name,
                    language=sample.language,
                    reference_path=str(reference),
                    created_at=int(time.time() * 1000),
                )
            )
        except (DownloadError, OSError) as exc:
            logger.error("Sample voice download failed for %s: %s", sample_id, exc)
            return CloneResult(success=False, error=str(exc))

        report(on_progress, "Voice downloaded successfully", 100)
        return CloneResult(success=True, voice_id=sample.id)
