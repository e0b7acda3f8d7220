"""
Bounded invocation of external command-line tools.

Used for archive extraction, ffmpeg/ffprobe, Python/venv setup and the
whisper.cpp CLI. Failures are classified when the process is spawned
(missing executable) or reaped (non-zero exit, timeout) and raised as
``ToolError``.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import ToolError, ToolErrorKind

logger = logging.getLogger("voice-orchestrator.process")


@dataclass
class ToolOutput:
    """Captured output of a successful tool run."""

    returncode: int
    stdout: str
    stderr: str


async def run_tool(
    args: Sequence[str],
    *,
    timeout: float,
    input_data: Optional[bytes] = None,
    env: Optional[dict[str, str]] = None,
) -> ToolOutput:
    """Run an external tool to completion and capture its output.

    Args:
        args: Executable followed by its arguments.
        timeout: Seconds to wait before killing the process.
        input_data: Bytes written to stdin, which is then closed.
        env: Extra environment variables layered over the current ones.

    Returns:
        ToolOutput for a zero exit status.

    Raises:
        ToolError: ``NOT_FOUND`` if the executable cannot be spawned,
            ``TIMEOUT`` if it outlives ``timeout``, ``FAILED`` on a
            non-zero exit.
    """
    tool = os.path.basename(str(args[0]))
    merged_env = {**os.environ, **env} if env else None

    try:
        proc = await asyncio.create_subprocess_exec(
            *[str(a) for a in args],
            stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merged_env,
        )
    except FileNotFoundError:
        raise ToolError(
            f"{tool} not found", kind=ToolErrorKind.NOT_FOUND, tool=tool
        ) from None
    except PermissionError as exc:
        raise ToolError(
            f"{tool} is not executable: {exc}", kind=ToolErrorKind.FAILED, tool=tool
        ) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(input_data), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolError(
            f"{tool} timed out after {timeout:.0f}s",
            kind=ToolErrorKind.TIMEOUT,
            tool=tool,
        ) from None

    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        logger.debug("%s exited with %s: %s", tool, proc.returncode, err[:500])
        raise ToolError(
            f"{tool} exited with code {proc.returncode}: {err.strip()[:500]}",
            kind=ToolErrorKind.FAILED,
            tool=tool,
            returncode=proc.returncode,
            stderr=err,
        )

    return ToolOutput(returncode=proc.returncode, stdout=out, stderr=err)
