"""
Host platform detection for engine installation.

Maps the running operating system to the platform keys used by the
engine distribution tables (``win32``, ``darwin``, ``linux``).
"""

import logging
import platform

logger = logging.getLogger("voice-orchestrator.hardware")

SUPPORTED_PLATFORMS = ("win32", "darwin", "linux")


def get_platform_key() -> str:
    """Return the platform key for the current host.

    Returns:
        ``"win32"``, ``"darwin"``, ``"linux"``, or the lowercased system
        name for anything else (which engine tables will not support).
    """
    system = platform.system()
    if system == "Windows":
        return "win32"
    if system == "Darwin":
        return "darwin"
    if system == "Linux":
        return "linux"
    return system.lower()


def is_windows() -> bool:
    """Detect if running on Windows."""
    return platform.system() == "Windows"


def get_hardware_info() -> dict[str, str]:
    """Get a summary of host information relevant to engine installs.

    Returns:
        Dictionary with ``platform``, ``machine`` and ``platform_key``.
    """
    info = {
        "platform": platform.system(),
        "machine": platform.machine(),
        "platform_key": get_platform_key(),
    }
    logger.debug("Host info: %s", info)
    return info
