"""
Result objects returned by public orchestrator operations.

Public operations never raise; they report success or a human-readable
error through one of these.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

# Progress sink: (status message, percent or None for indeterminate)
ProgressCallback = Callable[[str, Optional[int]], None]


@dataclass
class OperationResult:
    """Outcome of an install/download/remove operation."""

    success: bool
    error: Optional[str] = None
    voice_key: Optional[str] = None

    @classmethod
    def ok(cls, voice_key: Optional[str] = None) -> "OperationResult":
        return cls(success=True, voice_key=voice_key)

    @classmethod
    def fail(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)


@dataclass
class SpeakResult:
    """Outcome of one synthesis request.

    Attributes:
        success: Whether audio was produced.
        audio_data: Base64-encoded WAV bytes on success.
        error: Human-readable failure message.
        voice_key: The voice actually used (may differ after fallback).
        exit_code: Engine exit code, when a subprocess ran.
        diagnostics: Captured engine stderr, for failures.
    """

    success: bool
    audio_data: Optional[str] = None
    error: Optional[str] = None
    voice_key: Optional[str] = None
    exit_code: Optional[int] = None
    diagnostics: Optional[str] = None


@dataclass
class CloneResult:
    success: bool
    voice_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DurationResult:
    success: bool
    duration: Optional[float] = None
    error: Optional[str] = None


@dataclass
class ClipResult:
    success: bool
    output_path: Optional[str] = None
    data_url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CatalogResult:
    """Voice catalog listing; possibly a stale cached copy."""

    success: bool
    voices: list = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class TranscriptionResult:
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None
    model: Optional[str] = None


def report(progress: Optional[ProgressCallback], status: str, percent: Optional[int] = None) -> None:
    """Forward a progress update if a sink was supplied."""
    if progress is not None:
        progress(status, percent)
