"""
Voice Orchestrator - local speech engine management built with FastMCP.

Discovers, installs and invokes Piper (text-to-speech), whisper.cpp
(speech-to-text) and XTTS-v2 (voice cloning) together with their voice
and model assets.
"""

from .manager import VoiceManager
from .paths import AssetPaths

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("voice-orchestrator")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = ["VoiceManager", "AssetPaths"]
