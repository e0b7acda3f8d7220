"""
Archive extraction via the platform's native tools.

Windows uses PowerShell ``Expand-Archive``; elsewhere ``.tar.gz`` goes
through ``tar`` and anything else through ``unzip``.
"""

import logging
from pathlib import Path
from typing import Optional

from .errors import ExtractionError, ToolError
from .hardware import is_windows
from .paths import ensure_dir
from .process import run_tool

logger = logging.getLogger("voice-orchestrator.archive")

EXTRACT_TIMEOUT = 120.0


def extraction_command(archive: Path, dest: Path, windows: bool) -> list[str]:
    """Build the native command that expands ``archive`` into ``dest``."""
    if windows:
        return [
            "powershell",
            "-Command",
            f"Expand-Archive -Path '{archive}' -DestinationPath '{dest}' -Force",
        ]
    if archive.name.endswith((".tar.gz", ".tgz")):
        return ["tar", "-xzf", str(archive), "-C", str(dest)]
    return ["unzip", "-o", str(archive), "-d", str(dest)]


async def extract_archive(
    archive: Path,
    dest: Path,
    *,
    windows: Optional[bool] = None,
    timeout: float = EXTRACT_TIMEOUT,
) -> None:
    """Expand ``archive`` into ``dest``, creating ``dest`` if needed.

    Raises:
        ExtractionError: If the tool is missing, fails, or times out.
    """
    ensure_dir(dest)
    windows = is_windows() if windows is None else windows
    cmd = extraction_command(Path(archive), Path(dest), windows)
    logger.info("Extracting %s into %s", archive, dest)

    try:
        await run_tool(cmd, timeout=timeout)
    except ToolError as exc:
        raise ExtractionError(f"Failed to extract {Path(archive).name}: {exc}") from exc
