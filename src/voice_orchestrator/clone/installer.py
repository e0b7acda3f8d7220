"""
XTTS environment installation.

XTTS-v2 (``coqui-tts``) supports Python 3.10-3.12. The installer uses a
compatible system interpreter when one exists, otherwise downloads a
standalone CPython build, then creates a dedicated virtualenv and installs
the TTS library into it. The helper script's ``check`` command is the
source of truth for whether the install worked.
"""

import json
import logging
import platform
import re
from typing import Optional

from ..archive import extract_archive
from ..download import Downloader
from ..errors import DownloadError, ExtractionError, ToolError
from ..models import XTTSStatus
from ..paths import AssetPaths, ensure_dir
from ..process import run_tool
from ..results import OperationResult, ProgressCallback, report
from .server import ensure_helper_script

logger = logging.getLogger("voice-orchestrator.clone.installer")

STANDALONE_PYTHON_VERSION = "3.12.12"
STANDALONE_PYTHON_TAG = "20251217"

VERSION_TIMEOUT = 10.0
VENV_TIMEOUT = 120.0
PIP_TIMEOUT = 120.0
TTS_INSTALL_TIMEOUT = 900.0
CHECK_TIMEOUT = 30.0

_PYTHON_VERSION_RE = re.compile(r"Python 3\.(\d+)")


def standalone_python_url(platform_key: str, machine: Optional[str] = None) -> str:
    """python-build-standalone ``install_only`` archive for this host."""
    machine = (machine or platform.machine()).lower()
    arch = "aarch64" if machine in ("arm64", "aarch64") else "x86_64"
    if platform_key == "win32":
        triple = "x86_64-pc-windows-msvc"
    elif platform_key == "darwin":
        triple = f"{arch}-apple-darwin"
    else:
        triple = f"{arch}-unknown-linux-gnu"
    return (
        "https://github.com/astral-sh/python-build-standalone/releases/download/"
        f"{STANDALONE_PYTHON_TAG}/cpython-{STANDALONE_PYTHON_VERSION}+{STANDALONE_PYTHON_TAG}"
        f"-{triple}-install_only.tar.gz"
    )


def python_candidates(windows: bool) -> list[str]:
    if windows:
        return ["python3.12", "python3.11", "python3.10", "python", "python3", "py"]
    return ["python3.12", "python3.11", "python3.10", "python3", "python"]


async def python_minor_version(command: str) -> Optional[int]:
    """Minor version of a Python 3 interpreter, or None if it is not one."""
    try:
        output = await run_tool([command, "--version"], timeout=VERSION_TIMEOUT)
    except ToolError:
        return None
    # Older interpreters print the version on stderr.
    match = _PYTHON_VERSION_RE.search(output.stdout + output.stderr)
    return int(match.group(1)) if match else None


async def find_system_python(windows: bool) -> tuple[Optional[str], bool]:
    """Locate a system Python 3.

    Returns:
        ``(command, compatible)``: the first 3.10-3.12 interpreter found,
        else any Python 3 with ``compatible=False``, else ``(None, False)``.
    """
    any_python3: Optional[str] = None
    for command in python_candidates(windows):
        minor = await python_minor_version(command)
        if minor is None:
            continue
        if 10 <= minor <= 12:
            return command, True
        if any_python3 is None and command in ("python3", "python"):
            any_python3 = command
    return any_python3, False


class XTTSInstaller:
    """Installs and verifies the XTTS virtualenv.

    Args:
        paths: Asset path resolver.
        downloader: Downloader for the standalone Python build.
        platform_key: Host platform key (``win32``, ``darwin``, ``linux``).
    """

    def __init__(self, paths: AssetPaths, downloader: Downloader, platform_key: str) -> None:
        self.paths = paths
        self.downloader = downloader
        self.platform_key = platform_key
        self.python_path: Optional[str] = None
        self._python_compatible = False

    async def locate_python(self) -> Optional[str]:
        """Find (once) the interpreter used before the venv exists."""
        if self.python_path is None:
            self.python_path, self._python_compatible = await find_system_python(self.paths.windows)
            logger.debug("System Python: %s (compatible=%s)", self.python_path, self._python_compatible)
        return self.python_path

    def is_installed(self) -> bool:
        """Cheap check: the venv interpreter exists."""
        return self.paths.venv_python.is_file()

    async def check_installation(self) -> XTTSStatus:
        """Ask the helper running in the venv whether the TTS library imports."""
        venv_python = self.paths.venv_python
        if venv_python.is_file():
            try:
                script = ensure_helper_script(self.paths)
                output = await run_tool([str(venv_python), str(script), "check"], timeout=CHECK_TIMEOUT)
                result = json.loads(output.stdout.strip().splitlines()[-1])
            except (ToolError, OSError, ValueError, IndexError) as exc:
                return XTTSStatus(installed=False, python_path=str(venv_python), error=str(exc))
            return XTTSStatus(
                installed=bool(result.get("installed")),
                python_path=str(venv_python),
                error=result.get("error"),
            )

        python = await self.locate_python()
        if python is None:
            return XTTSStatus(
                installed=False,
                error="Python 3 not found. Please install Python 3.10+ to use XTTS.",
            )
        return XTTSStatus(installed=False, python_path=python, error="No module named 'TTS'")

    async def _download_standalone_python(self, on_progress: Optional[ProgressCallback]) -> None:
        if self.paths.standalone_python.is_file():
            return

        ensure_dir(self.paths.xtts_python_dir)
        archive = self.paths.xtts_python_dir / "python.tar.gz"
        url = standalone_python_url(self.platform_key)

        report(on_progress, f"Downloading Python {STANDALONE_PYTHON_VERSION}...", 0)
        try:
            await self.downloader.download(
                url,
                archive,
                lambda pct: report(on_progress, f"Downloading Python {STANDALONE_PYTHON_VERSION}...", round(pct * 0.3)),
            )
            report(on_progress, f"Extracting Python {STANDALONE_PYTHON_VERSION}...", 35)
            # python-build-standalone ships tar.gz on every platform
            await extract_archive(archive, self.paths.xtts_python_dir, windows=False)
        finally:
            archive.unlink(missing_ok=True)

        if not self.paths.standalone_python.is_file():
            raise ExtractionError("Python extraction failed")

    async def _base_python(self, on_progress: Optional[ProgressCallback]) -> str:
        standalone = self.paths.standalone_python
        if standalone.is_file():
            return str(standalone)

        python = await self.locate_python()
        if python is not None and self._python_compatible:
            return python

        await self._download_standalone_python(on_progress)
        return str(standalone)

    async def install(self, on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        """Create the venv and install ``coqui-tts`` and ``torchcodec`` into it."""
        try:
            ensure_dir(self.paths.xtts_dir)
            base_python = await self._base_python(on_progress)

            report(on_progress, "Creating virtual environment...", 40)
            venv_python = self.paths.venv_python
            if not venv_python.is_file():
                await run_tool([base_python, "-m", "venv", str(self.paths.xtts_venv_dir)], timeout=VENV_TIMEOUT)
            if not venv_python.is_file():
                return OperationResult.fail("Failed to create virtual environment")

            pip = [str(venv_python), "-m", "pip", "install"]

            report(on_progress, "Upgrading pip...", 50)
            await run_tool([*pip, "--upgrade", "pip"], timeout=PIP_TIMEOUT)

            report(on_progress, "Installing TTS library (this may take several minutes)...", 55)
            await run_tool([*pip, "coqui-tts"], timeout=TTS_INSTALL_TIMEOUT)

            report(on_progress, "Installing audio codec...", 90)
            await run_tool([*pip, "torchcodec"], timeout=PIP_TIMEOUT)
            report(on_progress, "TTS library installed", 95)

        except (DownloadError, ExtractionError, ToolError, OSError) as exc:
            logger.error("XTTS install failed: %s", exc)
            return OperationResult.fail(str(exc))

        status = await self.check_installation()
        if not status.installed:
            return OperationResult.fail(status.error or "Installation verification failed")

        report(on_progress, "Installation complete", 100)
        logger.info("XTTS installed into %s", self.paths.xtts_venv_dir)
        return OperationResult.ok()
