"""
Abstract base class for synthesis engines.

Both the Piper subprocess engine and the voice-clone engine implement
this interface, allowing the VoiceManager to route to them uniformly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..results import SpeakResult


@dataclass
class SpeakOptions:
    """Per-request synthesis parameters.

    Attributes:
        speed: Speech rate multiplier (>1 is faster).
        temperature: Sampling temperature (clone engine only).
        top_k: Top-k sampling (clone engine only).
        top_p: Nucleus sampling (clone engine only).
        repetition_penalty: Repetition penalty (clone engine only).
        language: Language override (clone engine only).
    """

    speed: float = 1.0
    temperature: float = 0.65
    top_k: int = 50
    top_p: float = 0.85
    repetition_penalty: float = 2.0
    language: Optional[str] = None


class TTSEngine(ABC):
    """Abstract base class for Text-to-Speech engines.

    Subclasses must implement:
    - name: A short engine identifier.
    - is_installed(): Whether the engine can be invoked right now.
    - speak(): Convert text to base64 WAV audio.
    - stop(): Cancel the in-flight utterance, fire-and-forget.

    ``speak`` never raises; failures come back as ``SpeakResult``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def is_installed(self) -> bool:
        ...

    @abstractmethod
    async def speak(
        self,
        text: str,
        voice: str,
        options: Optional[SpeakOptions] = None,
    ) -> SpeakResult:
        """Synthesize ``text`` with ``voice``.

        Args:
            text: The text to convert to speech.
            voice: Engine-specific voice key or id.
            options: Optional parameters. If None, use defaults.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    async def shutdown(self) -> None:
        """Release long-lived resources. Default implementation stops speech."""
        self.stop()
