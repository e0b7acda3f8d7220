"""
Exception hierarchy for the voice orchestrator.

Internal layers (download, extraction, catalog, tool execution) raise
these; the public ``VoiceManager`` operations catch them and turn them
into result objects with a user-facing message.
"""

from enum import Enum
from typing import Optional


class VoiceOrchestratorError(Exception):
    """Base class for all voice orchestrator errors."""


class DownloadError(VoiceOrchestratorError):
    """A download or JSON fetch failed.

    Attributes:
        url: The URL being fetched when the failure happened.
        status_code: HTTP status code, if the failure was a bad status.
    """

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RedirectError(DownloadError):
    """A redirect response was malformed or the redirect chain was too long."""


class ExtractionError(VoiceOrchestratorError):
    """An archive could not be expanded."""


class CatalogError(VoiceOrchestratorError):
    """The voice catalog could not be fetched and no cached copy exists."""


class VoiceValidationError(VoiceOrchestratorError):
    """A request was rejected before doing any work (bad input)."""


class InferenceServerError(VoiceOrchestratorError):
    """The long-lived clone inference server failed or is unavailable."""


class ToolErrorKind(Enum):
    """Why an external tool invocation failed."""

    NOT_FOUND = "not_found"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ToolError(VoiceOrchestratorError):
    """An external executable could not be run or exited unsuccessfully.

    The ``kind`` is decided at spawn time: a missing executable is
    ``NOT_FOUND``, a non-zero exit is ``FAILED``, an expired timeout is
    ``TIMEOUT``.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ToolErrorKind,
        tool: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr

    @property
    def not_found(self) -> bool:
        return self.kind is ToolErrorKind.NOT_FOUND


__all__ = [
    "VoiceOrchestratorError",
    "DownloadError",
    "RedirectError",
    "ExtractionError",
    "CatalogError",
    "VoiceValidationError",
    "InferenceServerError",
    "ToolErrorKind",
    "ToolError",
]
