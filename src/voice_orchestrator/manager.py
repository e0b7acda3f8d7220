"""
VoiceManager: the orchestrator facade.

One ``VoiceManager`` owns every component and all mutable state: the
in-flight speech slot, the catalog cache, the clone inference server and
the persisted settings. Callers hold a reference to the manager instead
of reaching for module-level singletons.
"""

import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from .catalog import VoiceCatalog
from .clone import (
    XTTS_LANGUAGES,
    XTTS_SAMPLE_VOICES,
    CloneEngine,
    CloneVoiceStore,
    InferenceServer,
    XTTSInstaller,
    extract_audio_clip,
    get_media_duration,
)
from .discovery import VoiceDiscovery
from .download import Downloader
from .engines import PiperEngine, SpeakOptions, SpeechSlot, WhisperModels
from .errors import CatalogError
from .hardware import get_platform_key
from .models import InstalledVoice, TTSEngineName, TTSStatus, WhisperStatus, XTTSStatus, XTTSVoice
from .paths import AssetPaths, TempDirProvider, system_temp_dir
from .results import (
    CatalogResult,
    ClipResult,
    CloneResult,
    DurationResult,
    OperationResult,
    ProgressCallback,
    SpeakResult,
    TranscriptionResult,
)
from .settings import VoiceSettings, load_settings, save_settings

logger = logging.getLogger("voice-orchestrator.manager")

# Asks the user for a file; returns an absolute path or None when cancelled.
FilePicker = Callable[[], Awaitable[Optional[str]]]


class VoiceManager:
    """Discovers, installs and invokes speech engines and their assets.

    Args:
        data_dir: The user-data root every asset lives under.
        transport: Optional httpx transport for all network I/O.
        temp_dir: Provider of the directory for short-lived audio files.
        file_picker: Collaborator used when importing a voice without a path.
        platform_key: Host platform key; detected when omitted.
        clock: Monotonic clock for the catalog TTL.
    """

    def __init__(
        self,
        data_dir: Path,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        temp_dir: TempDirProvider = system_temp_dir,
        file_picker: Optional[FilePicker] = None,
        platform_key: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.platform_key = platform_key or get_platform_key()
        self.paths = AssetPaths(root=Path(data_dir), windows=self.platform_key == "win32")
        self._temp_dir = temp_dir
        self._file_picker = file_picker

        self.downloader = Downloader(transport=transport)
        self.catalog = VoiceCatalog(self.downloader, clock=clock)
        self.discovery = VoiceDiscovery(self.paths)
        self.speech = SpeechSlot()
        self.piper = PiperEngine(self.paths, self.discovery, self.downloader, self.speech, temp_dir)
        self.whisper = WhisperModels(self.paths, self.downloader, temp_dir)

        self.clone_voices = CloneVoiceStore(self.paths, self.downloader)
        self.xtts_installer = XTTSInstaller(self.paths, self.downloader, self.platform_key)
        self.xtts_server = InferenceServer(
            self.paths, python_resolver=lambda: self.xtts_installer.python_path
        )
        self.clone = CloneEngine(self.clone_voices, self.xtts_server, self.xtts_installer, temp_dir)

        self.settings = load_settings(self.paths.settings_path)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _save_settings(self) -> None:
        try:
            save_settings(self.settings, self.paths.settings_path)
        except OSError as exc:
            logger.error("Failed to save voice settings: %s", exc)

    def get_settings(self) -> VoiceSettings:
        return self.settings.model_copy()

    def set_whisper_model(self, model: str) -> OperationResult:
        try:
            self.settings.whisper_model = model
        except ValueError as exc:
            return OperationResult.fail(str(exc))
        self._save_settings()
        return OperationResult.ok()

    def set_tts_engine(self, engine: str) -> OperationResult:
        try:
            self.settings.tts_engine = TTSEngineName(engine)
        except ValueError:
            return OperationResult.fail(f"Unknown TTS engine: {engine}")
        self._save_settings()
        return OperationResult.ok()

    def set_tts_voice(self, voice_key: str) -> OperationResult:
        """Select a Piper voice; only voices that resolve are accepted."""
        if self.discovery.resolve(voice_key) is None:
            return OperationResult.fail(f'Voice "{voice_key}" is not installed')
        self.settings.tts_voice = voice_key
        self._save_settings()
        return OperationResult.ok(voice_key=voice_key)

    def set_xtts_voice(self, voice_id: Optional[str]) -> OperationResult:
        """Select a cloned voice, or clear the selection with None."""
        if voice_id is not None and self.clone_voices.get(voice_id) is None:
            return OperationResult.fail(f'Cloned voice "{voice_id}" not found')
        self.settings.xtts_voice = voice_id
        self._save_settings()
        return OperationResult.ok(voice_key=voice_id)

    def set_tts_speed(self, speed: float) -> OperationResult:
        self.settings.tts_speed = speed
        self._save_settings()
        return OperationResult.ok()

    def set_xtts_parameters(
        self,
        temperature: Optional[float] = None,
        top_k: Optional[float] = None,
        top_p: Optional[float] = None,
        repetition_penalty: Optional[float] = None,
    ) -> OperationResult:
        """Update clone sampling parameters; omitted values are unchanged."""
        if temperature is not None:
            self.settings.xtts_temperature = temperature
        if top_k is not None:
            self.settings.xtts_top_k = top_k
        if top_p is not None:
            self.settings.xtts_top_p = top_p
        if repetition_penalty is not None:
            self.settings.xtts_repetition_penalty = repetition_penalty
        self._save_settings()
        return OperationResult.ok()

    # ------------------------------------------------------------------
    # Speech-to-text
    # ------------------------------------------------------------------

    def check_whisper(self) -> WhisperStatus:
        return self.whisper.check_status(self.settings.whisper_model)

    async def download_whisper_model(
        self, model: str, on_progress: Optional[ProgressCallback] = None
    ) -> OperationResult:
        return await self.whisper.download(model, on_progress)

    async def transcribe(self, samples: Sequence[float], sample_rate: int) -> TranscriptionResult:
        return await self.whisper.transcribe(samples, sample_rate, self.settings.whisper_model)

    # ------------------------------------------------------------------
    # Piper engine and voices
    # ------------------------------------------------------------------

    def check_tts(self) -> TTSStatus:
        return self.piper.check_status(self.settings.tts_voice)

    async def install_piper(
        self,
        on_progress: Optional[ProgressCallback] = None,
        platform_key: Optional[str] = None,
    ) -> OperationResult:
        return await self.piper.install(on_progress, platform_key or self.platform_key)

    async def download_piper_voice(
        self, voice_key: str, on_progress: Optional[ProgressCallback] = None
    ) -> OperationResult:
        return await self.piper.download_voice(voice_key, on_progress)

    async def fetch_catalog(self, force_refresh: bool = False) -> CatalogResult:
        """List downloadable voices; a stale cached copy beats an error."""
        try:
            voices = await self.catalog.fetch(force_refresh)
        except CatalogError as exc:
            return CatalogResult(success=False, error=str(exc))
        return CatalogResult(success=True, voices=voices)

    async def download_voice_from_catalog(
        self, voice_key: str, on_progress: Optional[ProgressCallback] = None
    ) -> OperationResult:
        return await self.catalog.download_voice(voice_key, self.paths, on_progress)

    def list_installed_voices(self) -> list[InstalledVoice]:
        return self.discovery.list_installed()

    async def import_custom_voice(
        self,
        model_path: Optional[str] = None,
        config_path: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> OperationResult:
        """Import a user-supplied voice.

        Without ``model_path`` the file picker is asked for one. Without
        ``config_path`` the config is expected next to the model as
        ``<model>.json``.
        """
        if model_path is None:
            if self._file_picker is None:
                return OperationResult.fail("No model file given")
            model_path = await self._file_picker()
            if not model_path:
                return OperationResult.fail("No file selected")

        model = Path(model_path)
        config = Path(config_path) if config_path else model.with_name(model.name + ".json")
        return self.discovery.import_custom_voice(model, config, display_name)

    def remove_custom_voice(self, voice_key: str) -> OperationResult:
        result = self.discovery.remove_custom_voice(voice_key)
        if result.success and self.settings.tts_voice == voice_key:
            self.settings.tts_voice = VoiceSettings().tts_voice
            self._save_settings()
        return result

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    def _clone_options(self, speed: float) -> SpeakOptions:
        s = self.settings
        return SpeakOptions(
            speed=speed,
            temperature=s.xtts_temperature,
            top_k=s.xtts_top_k,
            top_p=s.xtts_top_p,
            repetition_penalty=s.xtts_repetition_penalty,
        )

    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
    ) -> SpeakResult:
        """Speak ``text`` with the selected engine.

        Routes to the clone engine when it is selected and a cloned voice
        is set, otherwise to Piper with ``voice`` (or the selected voice).
        """
        speed = self.settings.tts_speed if speed is None else speed

        if self.settings.tts_engine is TTSEngineName.XTTS and self.settings.xtts_voice:
            return await self.clone.speak(text, voice or self.settings.xtts_voice, self._clone_options(speed))

        return await self.piper.speak(text, voice or self.settings.tts_voice, SpeakOptions(speed=speed))

    def stop_speaking(self) -> None:
        """Cancel in-flight speech on both engines without waiting."""
        self.piper.stop()
        self.clone.stop()

    # ------------------------------------------------------------------
    # Voice cloning
    # ------------------------------------------------------------------

    async def check_xtts(self) -> XTTSStatus:
        return await self.xtts_installer.check_installation()

    async def install_xtts(self, on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        return await self.xtts_installer.install(on_progress)

    def create_clone_voice(self, audio_path: str, name: str, language: str = "en") -> CloneResult:
        return self.clone_voices.create(Path(audio_path), name, language)

    def list_clone_voices(self) -> list[XTTSVoice]:
        return self.clone_voices.list_voices()

    def delete_clone_voice(self, voice_id: str) -> OperationResult:
        result = self.clone_voices.delete(voice_id)
        if result.success and self.settings.xtts_voice == voice_id:
            self.settings.xtts_voice = None
            self._save_settings()
        return result

    def list_sample_voices(self) -> list[dict]:
        return [
            {
                "id": s.id,
                "name": s.name,
                "language": s.language,
                "installed": self.clone_voices.is_sample_installed(s.id),
            }
            for s in XTTS_SAMPLE_VOICES.values()
        ]

    def is_sample_voice_installed(self, sample_id: str) -> bool:
        return self.clone_voices.is_sample_installed(sample_id)

    async def download_sample_voice(
        self, sample_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> CloneResult:
        return await self.clone_voices.download_sample(sample_id, on_progress)

    @staticmethod
    def supported_clone_languages() -> dict[str, str]:
        return dict(XTTS_LANGUAGES)

    async def get_media_duration(self, file_path: str) -> DurationResult:
        return await get_media_duration(Path(file_path))

    async def extract_audio_clip(
        self,
        input_path: str,
        start_time: float,
        end_time: float,
        output_path: Optional[str] = None,
    ) -> ClipResult:
        return await extract_audio_clip(
            Path(input_path),
            start_time,
            end_time,
            Path(output_path) if output_path else None,
            temp_dir=self._temp_dir,
        )

    def get_temp_dir(self) -> Path:
        return self._temp_dir()

    async def shutdown(self) -> None:
        """Stop speech and the clone inference server."""
        self.piper.stop()
        await self.clone.shutdown()
