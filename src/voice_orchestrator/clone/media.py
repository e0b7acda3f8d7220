"""
Reference-audio preparation with ffprobe/ffmpeg.

A clone's reference recording can be cropped out of any media file ffmpeg
understands: the duration probe drives the crop UI, then the chosen range
is extracted as mono 22.05 kHz 16-bit PCM.
"""

import base64
import logging
import time
from pathlib import Path
from typing import Optional

from ..errors import ToolError, VoiceValidationError
from ..paths import TempDirProvider, system_temp_dir
from ..process import run_tool
from ..results import ClipResult, DurationResult

logger = logging.getLogger("voice-orchestrator.clone.media")

PROBE_TIMEOUT = 30.0
EXTRACT_TIMEOUT = 60.0

MIN_CLIP_SECONDS = 3.0
MAX_CLIP_SECONDS = 30.0
CLIP_SAMPLE_RATE = 22050

FFMPEG_NOT_FOUND = "ffmpeg not found. Please install ffmpeg to use this feature."


def _tool_error_message(exc: ToolError) -> str:
    if exc.not_found:
        return FFMPEG_NOT_FOUND
    return str(exc)


def validate_clip_range(start: float, end: float) -> float:
    """Check a crop range and return its duration in seconds.

    Raises:
        VoiceValidationError: If the range is empty, shorter than 3 s or
            longer than 30 s. Exactly 3 s and exactly 30 s are accepted.
    """
    duration = round(end - start, 6)
    if duration <= 0:
        raise VoiceValidationError("End time must be greater than start time")
    if duration < MIN_CLIP_SECONDS:
        raise VoiceValidationError("Clip must be at least 3 seconds long")
    if duration > MAX_CLIP_SECONDS:
        raise VoiceValidationError("Clip should be 30 seconds or less for best results")
    return duration


async def get_media_duration(file_path: Path) -> DurationResult:
    """Probe the duration of a media file in seconds."""
    try:
        output = await run_tool(
            [
                "ffprobe", "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(file_path),
            ],
            timeout=PROBE_TIMEOUT,
        )
    except ToolError as exc:
        return DurationResult(success=False, error=_tool_error_message(exc))

    try:
        duration = float(output.stdout.strip())
    except ValueError:
        return DurationResult(success=False, error="Could not determine duration")
    return DurationResult(success=True, duration=duration)


async def extract_audio_clip(
    input_path: Path,
    start_time: float,
    end_time: float,
    output_path: Optional[Path] = None,
    temp_dir: TempDirProvider = system_temp_dir,
) -> ClipResult:
    """Extract ``[start_time, end_time)`` of a media file as a WAV clip.

    Returns:
        ClipResult with the clip path and a ``data:audio/wav;base64,...`` URL.
        The clip file is left in place for the caller to use as a reference.
    """
    try:
        duration = validate_clip_range(start_time, end_time)
    except VoiceValidationError as exc:
        return ClipResult(success=False, error=str(exc))

    out = Path(output_path) if output_path else temp_dir() / f"xtts_clip_{int(time.time() * 1000)}.wav"

    try:
        await run_tool(
            [
                "ffmpeg", "-y",
                "-ss", str(start_time),
                "-t", str(duration),
                "-i", str(input_path),
                "-vn",
                "-acodec", "pcm_s16le",
                "-ar", str(CLIP_SAMPLE_RATE),
                "-ac", "1",
                str(out),
            ],
            timeout=EXTRACT_TIMEOUT,
        )
    except ToolError as exc:
        logger.error("Clip extraction failed: %s", exc)
        return ClipResult(success=False, error=_tool_error_message(exc))

    if not out.is_file():
        return ClipResult(success=False, error="Failed to extract audio")

    try:
        audio = out.read_bytes()
    except OSError as exc:
        return ClipResult(success=False, error=str(exc))

    data_url = "data:audio/wav;base64," + base64.b64encode(audio).decode("ascii")
    return ClipResult(success=True, output_path=str(out), data_url=data_url)
