"""
Voice Orchestrator MCP Server
Exposes local speech engine management (Piper TTS, Whisper STT, XTTS voice
cloning) as FastMCP tools.
"""

import base64
import json
import logging
from pathlib import Path
from typing import Annotated, Literal

from fastmcp import FastMCP
from pydantic import Field

from .config import configure_logging, default_data_dir, load_environment
from .hardware import get_hardware_info
from .manager import VoiceManager
from .paths import AssetPaths

logger = logging.getLogger("voice-orchestrator")

load_environment()

data_path = default_data_dir()
configure_logging(AssetPaths(root=data_path))
logger.debug("Data path: %s", data_path)

manager = VoiceManager(data_path)

mcp = FastMCP(
    name="voice-orchestrator"
)


def _progress(status: str, percent: int | None) -> None:
    if percent is None:
        logger.info("%s", status)
    else:
        logger.info("%s (%d%%)", status, percent)


def _fail(error: str | None) -> str:
    return f"Error: {error or 'unknown error'}"


# ----------------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------------

@mcp.tool
async def get_voice_status() -> str:
    """Report installation status of the speech engines and selected voices."""
    xtts = await manager.check_xtts()
    status = {
        "tts": manager.check_tts().model_dump(mode="json"),
        "whisper": manager.check_whisper().model_dump(mode="json"),
        "xtts": xtts.model_dump(mode="json"),
        "settings": manager.get_settings().model_dump(mode="json"),
        "host": get_hardware_info(),
    }
    return json.dumps(status, indent=2)


# ----------------------------------------------------------------------------
# Installation
# ----------------------------------------------------------------------------

@mcp.tool
async def install_engine(
    engine: Annotated[Literal["piper", "xtts"], Field(description="Engine to install")],
) -> str:
    """Download and install a speech synthesis engine."""
    if engine == "piper":
        result = await manager.install_piper(_progress)
    else:
        result = await manager.install_xtts(_progress)
    return f"Installed {engine}" if result.success else _fail(result.error)


@mcp.tool
async def download_voice(
    voice_key: Annotated[str, Field(description="Built-in or catalog voice key, e.g. en_US-amy-medium")],
) -> str:
    """Download a Piper voice (built-in table first, then the online catalog)."""
    if voice_key in manager.piper.discovery.installed_builtin_keys():
        return f"Voice {voice_key} is already installed"
    result = await manager.download_piper_voice(voice_key, _progress)
    if not result.success and result.error and result.error.startswith("Unknown built-in voice"):
        result = await manager.download_voice_from_catalog(voice_key, _progress)
    return f"Installed voice {voice_key}" if result.success else _fail(result.error)


@mcp.tool
async def download_whisper_model(
    model: Annotated[str, Field(description="Whisper model: tiny.en, base.en, small.en, medium.en or large-v3")],
) -> str:
    """Download a Whisper speech recognition model."""
    result = await manager.download_whisper_model(model, _progress)
    return f"Installed Whisper model {model}" if result.success else _fail(result.error)


# ----------------------------------------------------------------------------
# Voices
# ----------------------------------------------------------------------------

@mcp.tool
def list_voices() -> str:
    """List installed Piper voices (built-in, downloaded and custom)."""
    voices = manager.list_installed_voices()
    if not voices:
        return "No voices installed."
    current = manager.get_settings().tts_voice
    lines = []
    for v in voices:
        marker = " (current)" if v.key == current else ""
        lines.append(f"• {v.key} [{v.source.value}] {v.display_name}{marker}")
    return "**Installed Voices:**\n" + "\n".join(lines)


@mcp.tool
async def search_voice_catalog(
    query: Annotated[str | None, Field(description="Filter by key, name or language")] = None,
    refresh: Annotated[bool, Field(description="Bypass the cache")] = False,
    limit: Annotated[int, Field(description="Maximum results", ge=1, le=200)] = 25,
) -> str:
    """Search the online Piper voice catalog."""
    result = await manager.fetch_catalog(force_refresh=refresh)
    if not result.success:
        return _fail(result.error)

    needle = (query or "").lower()
    matches = [
        v for v in result.voices
        if not needle
        or needle in v.key.lower()
        or needle in v.name.lower()
        or needle in v.language.name_english.lower()
    ]
    if not matches:
        return "No matching voices."
    lines = [
        f"• {v.key} ({v.language.name_english or v.language.code}, {v.quality}, {v.num_speakers} speaker(s))"
        for v in matches[:limit]
    ]
    return f"**Catalog voices ({len(matches)} matches):**\n" + "\n".join(lines)


@mcp.tool
async def import_custom_voice(
    model_path: Annotated[str, Field(description="Path to the .onnx model")],
    config_path: Annotated[str | None, Field(description="Path to the .onnx.json config (defaults to <model>.json)")] = None,
    display_name: Annotated[str | None, Field(description="Name shown in voice lists")] = None,
) -> str:
    """Import a user-supplied Piper voice."""
    result = await manager.import_custom_voice(model_path, config_path, display_name)
    return f"Imported voice {result.voice_key}" if result.success else _fail(result.error)


@mcp.tool
def remove_custom_voice(
    voice_key: Annotated[str, Field(description="Custom voice key (custom:<name>)")],
) -> str:
    """Remove an imported custom voice."""
    result = manager.remove_custom_voice(voice_key)
    return f"Removed voice {voice_key}" if result.success else _fail(result.error)


# ----------------------------------------------------------------------------
# Speech
# ----------------------------------------------------------------------------

@mcp.tool
async def speak_to_file(
    text: Annotated[str, Field(description="Text to speak")],
    output_path: Annotated[str, Field(description="Where to write the WAV file")],
    voice: Annotated[str | None, Field(description="Voice key or cloned voice id (defaults to the selected voice)")] = None,
    speed: Annotated[float | None, Field(description="Speech rate, >1 is faster")] = None,
) -> str:
    """Synthesize speech and save it as a WAV file."""
    result = await manager.speak(text, voice, speed)
    if not result.success:
        detail = f" ({result.diagnostics.strip()[:500]})" if result.diagnostics else ""
        return _fail(result.error) + detail

    out = Path(output_path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(base64.b64decode(result.audio_data))
    return f"Saved speech to {out} using voice {result.voice_key}"


@mcp.tool
def stop_speaking() -> str:
    """Cancel the speech currently being synthesized."""
    manager.stop_speaking()
    return "Stopped"


# ----------------------------------------------------------------------------
# Voice cloning
# ----------------------------------------------------------------------------

@mcp.tool
def list_cloned_voices() -> str:
    """List cloned voices and downloadable sample voices."""
    voices = manager.list_clone_voices()
    samples = manager.list_sample_voices()
    lines = [f"• {v.id}: {v.name} [{v.language}]" for v in voices] or ["(none)"]
    sample_lines = [
        f"• {s['id']}: {s['name']}{' (installed)' if s['installed'] else ''}" for s in samples
    ]
    return "**Cloned Voices:**\n" + "\n".join(lines) + "\n\n**Sample Voices:**\n" + "\n".join(sample_lines)


@mcp.tool
async def create_cloned_voice(
    name: Annotated[str, Field(description="Voice name")],
    audio_path: Annotated[str, Field(description="Reference recording or any media file")],
    language: Annotated[str, Field(description="XTTS language code, e.g. en, de, zh-cn")] = "en",
    start_time: Annotated[float | None, Field(description="Crop start in seconds")] = None,
    end_time: Annotated[float | None, Field(description="Crop end in seconds (3-30 s after start)")] = None,
) -> str:
    """Create a cloned voice, optionally cropping the reference from a longer recording."""
    source = audio_path
    clip_path: Path | None = None
    if start_time is not None or end_time is not None:
        if start_time is None or end_time is None:
            return _fail("Both start_time and end_time are required to crop")
        clip = await manager.extract_audio_clip(audio_path, start_time, end_time)
        if not clip.success:
            return _fail(clip.error)
        source = clip.output_path
        clip_path = Path(clip.output_path)

    try:
        result = manager.create_clone_voice(source, name, language)
    finally:
        if clip_path is not None:
            clip_path.unlink(missing_ok=True)
    return f"Created cloned voice {result.voice_id}" if result.success else _fail(result.error)


@mcp.tool
async def download_sample_voice(
    sample_id: Annotated[str, Field(description="Sample voice id, e.g. xtts-en-sample")],
) -> str:
    """Download an XTTS-v2 sample voice."""
    result = await manager.download_sample_voice(sample_id, _progress)
    return f"Installed sample voice {result.voice_id}" if result.success else _fail(result.error)


@mcp.tool
def delete_cloned_voice(
    voice_id: Annotated[str, Field(description="Cloned voice id")],
) -> str:
    """Delete a cloned voice."""
    result = manager.delete_clone_voice(voice_id)
    return f"Deleted cloned voice {voice_id}" if result.success else _fail(result.error)


@mcp.tool
async def get_media_duration(
    file_path: Annotated[str, Field(description="Media file to probe")],
) -> str:
    """Get the duration of an audio/video file in seconds."""
    result = await manager.get_media_duration(file_path)
    return f"{result.duration:.2f}" if result.success else _fail(result.error)


# ----------------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------------

@mcp.tool
def configure_voice(
    engine: Annotated[Literal["piper", "xtts"] | None, Field(description="Synthesis engine")] = None,
    voice: Annotated[str | None, Field(description="Piper voice key")] = None,
    cloned_voice: Annotated[str | None, Field(description="Cloned voice id for the xtts engine")] = None,
    whisper_model: Annotated[str | None, Field(description="Whisper model name")] = None,
    speed: Annotated[float | None, Field(description="Speech rate 0.5-2.0")] = None,
    temperature: Annotated[float | None, Field(description="XTTS temperature 0.1-1.0")] = None,
    top_k: Annotated[int | None, Field(description="XTTS top-k 1-100")] = None,
    top_p: Annotated[float | None, Field(description="XTTS top-p 0.1-1.0")] = None,
    repetition_penalty: Annotated[float | None, Field(description="XTTS repetition penalty 1.0-10.0")] = None,
) -> str:
    """Change voice settings. Out-of-range values are clamped."""
    errors = []
    if engine is not None:
        errors.append(manager.set_tts_engine(engine).error)
    if voice is not None:
        errors.append(manager.set_tts_voice(voice).error)
    if cloned_voice is not None:
        errors.append(manager.set_xtts_voice(cloned_voice).error)
    if whisper_model is not None:
        errors.append(manager.set_whisper_model(whisper_model).error)
    if speed is not None:
        manager.set_tts_speed(speed)
    manager.set_xtts_parameters(temperature, top_k, top_p, repetition_penalty)

    errors = [e for e in errors if e]
    settings = json.dumps(manager.get_settings().model_dump(mode="json"), indent=2)
    if errors:
        return "Errors:\n" + "\n".join(f"• {e}" for e in errors) + f"\n\nSettings:\n{settings}"
    return f"Settings updated:\n{settings}"


def main() -> None:
    """Main entry point for the Voice Orchestrator MCP Server."""
    mcp.run()


if __name__ == "__main__":
    main()
