"""
Engine wrappers for the voice orchestrator.

Piper is invoked as one subprocess per utterance; whisper.cpp as one
subprocess per transcription. The clone engine lives in ``..clone``.
"""

from .base import SpeakOptions, TTSEngine
from .piper import PIPER_BINARY_URLS, PiperEngine, SpeechSlot
from .whisper import DEFAULT_WHISPER_MODEL, WHISPER_MODELS, WhisperModels

__all__ = [
    "DEFAULT_WHISPER_MODEL",
    "PIPER_BINARY_URLS",
    "PiperEngine",
    "SpeakOptions",
    "SpeechSlot",
    "TTSEngine",
    "WHISPER_MODELS",
    "WhisperModels",
]
