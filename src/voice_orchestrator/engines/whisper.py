"""
Whisper speech-to-text models and transcription.

Models are whisper.cpp GGML files downloaded from Hugging Face. Inference
runs through the ``whisper-cli`` executable from whisper.cpp, one process
per transcription, fed a 16 kHz mono WAV written to a temp file.
"""

import io
import logging
import shutil
import struct
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import shortuuid

from ..download import Downloader
from ..errors import DownloadError, ToolError
from ..models import WhisperStatus
from ..paths import AssetPaths, TempDirProvider, ensure_dir, system_temp_dir
from ..process import run_tool
from ..results import OperationResult, ProgressCallback, TranscriptionResult, report

logger = logging.getLogger("voice-orchestrator.whisper")

_WHISPER_HF = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"

TRANSCRIBE_TIMEOUT = 120.0


@dataclass(frozen=True)
class WhisperModel:
    name: str
    file: str
    size_mb: int

    @property
    def url(self) -> str:
        return f"{_WHISPER_HF}/{self.file}"


WHISPER_MODELS: dict[str, WhisperModel] = {
    m.name: m
    for m in (
        WhisperModel("tiny.en", "ggml-tiny.en.bin", 75),
        WhisperModel("base.en", "ggml-base.en.bin", 147),
        WhisperModel("small.en", "ggml-small.en.bin", 488),
        WhisperModel("medium.en", "ggml-medium.en.bin", 1500),
        WhisperModel("large-v3", "ggml-large-v3.bin", 3000),
    )
}

DEFAULT_WHISPER_MODEL = "base.en"


def float_to_wav(samples: Sequence[float], sample_rate: int) -> bytes:
    """Encode float samples in [-1, 1] as a 16-bit PCM mono WAV.

    Out-of-range samples are clipped.
    """
    pcm = struct.pack(
        f"<{len(samples)}h",
        *(int(max(-1.0, min(1.0, s)) * 32767) for s in samples),
    )
    data_size = len(pcm)

    buf = io.BytesIO()
    buf.write(b"RIFF")
    buf.write(struct.pack("<I", 36 + data_size))
    buf.write(b"WAVE")
    buf.write(b"fmt ")
    buf.write(struct.pack("<I", 16))
    buf.write(struct.pack("<H", 1))  # PCM
    buf.write(struct.pack("<H", 1))  # mono
    buf.write(struct.pack("<I", sample_rate))
    buf.write(struct.pack("<I", sample_rate * 2))
    buf.write(struct.pack("<H", 2))  # block align
    buf.write(struct.pack("<H", 16))  # bits per sample
    buf.write(b"data")
    buf.write(struct.pack("<I", data_size))
    buf.write(pcm)
    return buf.getvalue()


class WhisperModels:
    """Install state and transcription for whisper.cpp models.

    Args:
        paths: Asset path resolver.
        downloader: Downloader for model files.
        temp_dir: Provider of the directory for intermediate WAV files.
    """

    def __init__(
        self,
        paths: AssetPaths,
        downloader: Downloader,
        temp_dir: TempDirProvider = system_temp_dir,
    ) -> None:
        self.paths = paths
        self.downloader = downloader
        self._temp_dir = temp_dir

    def model_path(self, model: str) -> Path:
        return self.paths.whisper_model_path(WHISPER_MODELS[model].file)

    def is_installed(self, model: str) -> bool:
        return model in WHISPER_MODELS and self.model_path(model).is_file()

    def installed_models(self) -> list[str]:
        """Installed model names, in table order."""
        if not self.paths.whisper_models_dir.is_dir():
            return []
        return [name for name in WHISPER_MODELS if self.is_installed(name)]

    def check_status(self, current_model: str) -> WhisperStatus:
        models = self.installed_models()
        if current_model in models:
            current = current_model
        else:
            current = models[0] if models else None
        return WhisperStatus(installed=bool(models), models=models, current_model=current)

    async def download(
        self,
        model: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OperationResult:
        """Download one whisper model into the models directory."""
        info = WHISPER_MODELS.get(model)
        if info is None:
            return OperationResult.fail(f'Unknown Whisper model "{model}"')

        try:
            ensure_dir(self.paths.whisper_models_dir)
            report(on_progress, f"Downloading Whisper {model} model ({info.size_mb}MB)...", 0)
            await self.downloader.download(
                info.url,
                self.model_path(model),
                lambda pct: report(on_progress, f"Downloading Whisper {model} model...", pct),
            )
        except (DownloadError, OSError) as exc:
            logger.error("Whisper model download failed for %s: %s", model, exc)
            return OperationResult.fail(str(exc))

        report(on_progress, "Whisper model installed successfully", 100)
        return OperationResult.ok()

    def binary_path(self) -> Optional[str]:
        """whisper-cli in the whisper directory, else on PATH."""
        for candidate in self.paths.whisper_binary_candidates():
            if candidate.is_file():
                return str(candidate)
        return shutil.which("whisper-cli")

    async def transcribe(
        self,
        samples: Sequence[float],
        sample_rate: int,
        current_model: str,
    ) -> TranscriptionResult:
        """Transcribe mono float samples with the current (or any installed) model."""
        model = current_model
        if not self.is_installed(model):
            installed = self.installed_models()
            if not installed:
                return TranscriptionResult(
                    success=False,
                    error="No Whisper model installed. Install one from Settings.",
                )
            model = installed[0]

        binary = self.binary_path()
        if binary is None:
            return TranscriptionResult(
                success=False,
                error=f"whisper-cli not found. Model \"{model}\" is ready, but whisper.cpp is not installed.",
                model=model,
            )

        wav_path = self._temp_dir() / f"stt_{int(time.time() * 1000)}_{shortuuid.uuid()[:8]}.wav"
        try:
            wav_path.write_bytes(float_to_wav(samples, sample_rate))
            output = await run_tool(
                [binary, "-m", str(self.model_path(model)), "-f", str(wav_path), "-nt", "-np"],
                timeout=TRANSCRIBE_TIMEOUT,
            )
        except ToolError as exc:
            logger.error("Transcription failed: %s", exc)
            return TranscriptionResult(success=False, error=str(exc), model=model)
        except OSError as exc:
            return TranscriptionResult(success=False, error=f"Failed to write audio: {exc}", model=model)
        finally:
            wav_path.unlink(missing_ok=True)

        text = " ".join(line.strip() for line in output.stdout.splitlines() if line.strip())
        logger.debug("Transcribed %d samples with %s: %r", len(samples), model, text[:200])
        return TranscriptionResult(success=True, text=text, model=model)
