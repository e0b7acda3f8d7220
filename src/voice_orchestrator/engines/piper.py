"""
Piper TTS engine wrapper.

Piper is a fast, local TTS engine distributed as a standalone binary.
Each utterance spawns one ``piper`` process: the text goes in on stdin,
the WAV comes back as a file at ``--output_file``. Only the most recent
process is tracked for cancellation.

Binary releases: https://github.com/rhasspy/piper/releases
"""

import asyncio
import base64
import logging
import time
from pathlib import Path
from typing import Optional

import shortuuid

from ..archive import extract_archive
from ..discovery import PIPER_VOICES, VoiceDiscovery
from ..download import Downloader
from ..errors import DownloadError, ExtractionError
from ..hardware import get_platform_key
from ..models import TTSEngineName, TTSStatus
from ..paths import AssetPaths, TempDirProvider, ensure_dir, system_temp_dir
from ..results import OperationResult, ProgressCallback, SpeakResult, report
from .base import SpeakOptions, TTSEngine

logger = logging.getLogger("voice-orchestrator.piper")
tts_log = logging.getLogger("voice-orchestrator.tts")

PIPER_RELEASE = "2023.11.14-2"
_PIPER_RELEASES = f"https://github.com/rhasspy/piper/releases/download/{PIPER_RELEASE}"

PIPER_BINARY_URLS: dict[str, str] = {
    "win32": f"{_PIPER_RELEASES}/piper_windows_amd64.zip",
    "darwin": f"{_PIPER_RELEASES}/piper_macos_x64.tar.gz",
    "linux": f"{_PIPER_RELEASES}/piper_linux_x86_64.tar.gz",
}


def length_scale_for(speed: float) -> str:
    """Piper's ``--length_scale`` for a speed factor (>1 means faster)."""
    return f"{1.0 / speed:.2f}"


def build_piper_args(model: Path, output: Path, speed: float) -> list[str]:
    return [
        "--model", str(model),
        "--output_file", str(output),
        "--length_scale", length_scale_for(speed),
    ]


def _preview(text: str, limit: int = 200) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class SpeechSlot:
    """Single-slot holder for the in-flight synthesis process.

    Starting a new utterance replaces the handle; the previous process is
    not stopped and simply runs to completion untracked.
    """

    def __init__(self) -> None:
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._process

    @property
    def active(self) -> bool:
        return self._process is not None

    def replace(self, process: asyncio.subprocess.Process) -> Optional[asyncio.subprocess.Process]:
        """Track ``process``, returning the handle it displaced."""
        previous, self._process = self._process, process
        return previous

    def clear(self, process: Optional[asyncio.subprocess.Process] = None) -> None:
        """Forget the tracked handle (only if it is ``process``, when given)."""
        if process is None or self._process is process:
            self._process = None

    def terminate(self) -> bool:
        """Signal the tracked process to exit and clear the slot.

        Does not wait for the process to exit.

        Returns:
            True if a running process was signalled.
        """
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return False
        try:
            process.terminate()
        except ProcessLookupError:
            return False
        return True


class PiperEngine(TTSEngine):
    """Installs and drives the Piper binary.

    Args:
        paths: Asset path resolver.
        discovery: Voice discovery used to resolve voice keys.
        downloader: Downloader for binary and voice installs.
        slot: Holder of the in-flight process (owned by the caller).
        temp_dir: Provider of the directory for output WAV files.
    """

    def __init__(
        self,
        paths: AssetPaths,
        discovery: VoiceDiscovery,
        downloader: Downloader,
        slot: Optional[SpeechSlot] = None,
        temp_dir: TempDirProvider = system_temp_dir,
    ) -> None:
        self.paths = paths
        self.discovery = discovery
        self.downloader = downloader
        self.slot = slot if slot is not None else SpeechSlot()
        self._temp_dir = temp_dir

    @property
    def name(self) -> str:
        return TTSEngineName.PIPER.value

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def binary_path(self) -> Optional[Path]:
        """First existing Piper binary: extracted, direct, then system paths."""
        for candidate in self.paths.piper_binary_candidates():
            if candidate.is_file():
                return candidate
        return None

    def is_installed(self) -> bool:
        return self.binary_path() is not None

    def check_status(self, current_voice: str) -> TTSStatus:
        """Engine/voice status; the current voice falls back to the first installed."""
        installed = self.is_installed()
        voices = self.discovery.installed_builtin_keys()
        if current_voice in voices:
            current = current_voice
        else:
            current = voices[0] if voices else None
        return TTSStatus(
            installed=installed and bool(voices),
            engine=TTSEngineName.PIPER if installed else None,
            voices=voices,
            current_voice=current,
        )

    async def install(
        self,
        on_progress: Optional[ProgressCallback] = None,
        platform_key: Optional[str] = None,
    ) -> OperationResult:
        """Download, extract and verify the Piper binary for this platform."""
        platform_key = platform_key or get_platform_key()
        url = PIPER_BINARY_URLS.get(platform_key)
        if url is None:
            return OperationResult.fail(f"Unsupported platform: {platform_key}")

        windows = platform_key == "win32"
        archive = self.paths.piper_dir / ("piper.zip" if windows else "piper.tar.gz")
        try:
            ensure_dir(self.paths.piper_dir)

            report(on_progress, "Downloading Piper TTS...", 0)
            await self.downloader.download(
                url, archive, lambda pct: report(on_progress, "Downloading Piper TTS...", pct)
            )

            report(on_progress, "Extracting Piper TTS...", None)
            try:
                await extract_archive(archive, self.paths.piper_dir, windows=windows)
            finally:
                archive.unlink(missing_ok=True)

            if not windows:
                for candidate in self.paths.piper_binary_candidates()[:2]:
                    if candidate.is_file():
                        candidate.chmod(0o755)

            if not self.is_installed():
                return OperationResult.fail("Piper extraction failed")

        except (DownloadError, ExtractionError, OSError) as exc:
            logger.error("Piper install failed: %s", exc)
            return OperationResult.fail(str(exc))

        report(on_progress, "Piper TTS installed successfully", 100)
        logger.info("Piper installed at %s", self.binary_path())
        return OperationResult.ok()

    async def download_voice(
        self,
        voice_key: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OperationResult:
        """Download one of the built-in voices (model + config)."""
        info = PIPER_VOICES.get(voice_key)
        if info is None:
            return OperationResult.fail(f'Unknown built-in voice "{voice_key}"')

        model_path = self.paths.voice_model_path(voice_key)
        config_path = self.paths.voice_config_path(voice_key)
        try:
            ensure_dir(self.paths.piper_voices_dir)
            report(on_progress, f"Downloading voice: {info.description}...", 0)

            await self.downloader.download(
                info.url,
                model_path,
                lambda pct: report(on_progress, "Downloading voice model...", round(pct * 0.9)),
            )

            report(on_progress, "Downloading voice config...", 95)
            try:
                await self.downloader.download(info.config_url, config_path)
            except DownloadError:
                model_path.unlink(missing_ok=True)
                raise

        except (DownloadError, OSError) as exc:
            logger.error("Voice download failed for %s: %s", voice_key, exc)
            return OperationResult.fail(str(exc))

        report(on_progress, "Voice installed successfully", 100)
        return OperationResult.ok(voice_key=voice_key)

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    async def speak(
        self,
        text: str,
        voice: str,
        options: Optional[SpeakOptions] = None,
    ) -> SpeakResult:
        """Synthesize ``text`` with the Piper voice ``voice``.

        Falls back to any installed voice when ``voice`` is missing.

        Returns:
            SpeakResult with base64 WAV audio on success.
        """
        speed = options.speed if options is not None else 1.0
        tts_log.info(
            "piper speak() called: length=%d voice=%s speed=%s text=%r",
            len(text), voice, speed, _preview(text),
        )

        if not text.strip():
            return SpeakResult(success=False, error="Nothing to speak")
        if speed <= 0:
            return SpeakResult(success=False, error=f"Invalid speed: {speed}")

        resolved = self.discovery.resolve_with_fallback(voice)
        if resolved is None:
            tts_log.error("No voices installed")
            return SpeakResult(success=False, error="No voices installed")
        voice_used, voice_paths = resolved

        binary = self.binary_path()
        if binary is None:
            tts_log.error("Piper not installed")
            return SpeakResult(success=False, error="Piper not installed", voice_key=voice_used)

        output = self._temp_dir() / f"tts_{int(time.time() * 1000)}_{shortuuid.uuid()[:8]}.wav"
        args = build_piper_args(voice_paths.model, output, speed)
        tts_log.info("Spawning Piper: %s %s", binary, args)

        try:
            process = await asyncio.create_subprocess_exec(
                str(binary),
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            tts_log.error("Piper spawn error: %s", exc)
            return SpeakResult(success=False, error=f"Failed to start Piper: {exc}", voice_key=voice_used)

        self.slot.replace(process)
        try:
            try:
                _, stderr = await process.communicate(text.encode("utf-8"))
            except asyncio.CancelledError:
                tts_log.info("Piper speak() cancelled, terminating process")
                if process.returncode is None:
                    try:
                        process.terminate()
                    except ProcessLookupError:
                        pass
                raise
            finally:
                self.slot.clear(process)

            code = process.returncode
            diagnostics = stderr.decode("utf-8", errors="replace")
            tts_log.info("Piper process closed: code=%s stderr=%r", code, diagnostics[:500])

            if code == 0 and output.is_file():
                audio = output.read_bytes()
                tts_log.info("Audio generated: %d bytes", len(audio))
                return SpeakResult(
                    success=True,
                    audio_data=base64.b64encode(audio).decode("ascii"),
                    voice_key=voice_used,
                    exit_code=code,
                )

            tts_log.error("Piper failed: code=%s stderr=%r", code, diagnostics)
            return SpeakResult(
                success=False,
                error=f"Piper exited with code {code}",
                voice_key=voice_used,
                exit_code=code,
                diagnostics=diagnostics,
            )
        finally:
            output.unlink(missing_ok=True)

    def stop(self) -> None:
        if self.slot.terminate():
            logger.debug("Piper synthesis stopped")
