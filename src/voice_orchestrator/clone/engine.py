"""
Voice-clone synthesis engine.

Speaks with a cloned voice by sending ``speak`` commands to the persistent
XTTS inference server and reading back the WAV it writes.
"""

import base64
import logging
import time
from typing import Optional

import shortuuid

from ..errors import InferenceServerError
from ..models import TTSEngineName
from ..paths import TempDirProvider, system_temp_dir
from ..results import SpeakResult
from ..engines.base import SpeakOptions, TTSEngine
from .installer import XTTSInstaller
from .server import InferenceServer
from .voices import CloneVoiceStore

logger = logging.getLogger("voice-orchestrator.clone")
tts_log = logging.getLogger("voice-orchestrator.tts")


def build_speak_command(
    text: str,
    reference_audio: str,
    language: str,
    output_path: str,
    options: Optional[SpeakOptions] = None,
) -> dict:
    """The ``speak`` command sent to the inference server."""
    options = options or SpeakOptions()
    return {
        "action": "speak",
        "text": text,
        "reference_audio": reference_audio,
        "language": language,
        "output_path": output_path,
        "temperature": options.temperature,
        "speed": options.speed,
        "top_k": options.top_k,
        "top_p": options.top_p,
        "repetition_penalty": options.repetition_penalty,
    }


class CloneEngine(TTSEngine):
    """Speaks with cloned voices through the XTTS inference server.

    Args:
        store: Cloned voice storage.
        server: The inference server (started on first use).
        installer: Installer used for the cheap installed check.
        temp_dir: Provider of the directory for output WAV files.
    """

    def __init__(
        self,
        store: CloneVoiceStore,
        server: InferenceServer,
        installer: XTTSInstaller,
        temp_dir: TempDirProvider = system_temp_dir,
    ) -> None:
        self.store = store
        self.server = server
        self.installer = installer
        self._temp_dir = temp_dir

    @property
    def name(self) -> str:
        return TTSEngineName.XTTS.value

    def is_installed(self) -> bool:
        return self.installer.is_installed()

    async def speak(
        self,
        text: str,
        voice: str,
        options: Optional[SpeakOptions] = None,
    ) -> SpeakResult:
        """Synthesize ``text`` with the cloned voice ``voice``.

        The language defaults to the clone's own language.
        """
        options = options or SpeakOptions()
        tts_log.info(
            "xtts speak() called: length=%d voice=%s speed=%s text=%r",
            len(text), voice, options.speed, text[:200],
        )

        if not text.strip():
            return SpeakResult(success=False, error="Nothing to speak")
        if options.speed <= 0:
            return SpeakResult(success=False, error=f"Invalid speed: {options.speed}")

        clone = self.store.get(voice)
        if clone is None:
            return SpeakResult(success=False, error="Voice not found")

        output = self._temp_dir() / f"xtts_{int(time.time() * 1000)}_{shortuuid.uuid()[:8]}.wav"
        command = build_speak_command(
            text,
            clone.reference_path,
            options.language or clone.language,
            str(output),
            options,
        )

        try:
            result = await self.server.send_command(command)
            if result.get("success") and output.is_file():
                audio = output.read_bytes()
                tts_log.info("XTTS audio generated: %d bytes on %s", len(audio), result.get("device"))
                return SpeakResult(
                    success=True,
                    audio_data=base64.b64encode(audio).decode("ascii"),
                    voice_key=voice,
                )
            error = result.get("error") or "TTS generation failed"
            tts_log.error("XTTS failed: %s", error)
            return SpeakResult(success=False, error=error, voice_key=voice)
        except InferenceServerError as exc:
            tts_log.error("XTTS server error: %s", exc)
            return SpeakResult(success=False, error=str(exc), voice_key=voice)
        except OSError as exc:
            return SpeakResult(success=False, error=f"Failed to read audio: {exc}", voice_key=voice)
        finally:
            output.unlink(missing_ok=True)

    def stop(self) -> None:
        self.server.stop()

    async def shutdown(self) -> None:
        await self.server.shutdown()
