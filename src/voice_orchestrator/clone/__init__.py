"""
Voice-clone pipeline.

Reference recordings are stored per voice (``voices``), optionally cropped
from arbitrary media (``media``), and spoken through a persistent XTTS-v2
inference server (``server``) installed into its own virtualenv
(``installer``).
"""

from .engine import CloneEngine, build_speak_command
from .installer import XTTSInstaller
from .media import extract_audio_clip, get_media_duration, validate_clip_range
from .server import InferenceServer, ensure_helper_script
from .voices import XTTS_LANGUAGES, XTTS_SAMPLE_VOICES, CloneVoiceStore, voice_id_for

__all__ = [
    "CloneEngine",
    "CloneVoiceStore",
    "InferenceServer",
    "XTTSInstaller",
    "XTTS_LANGUAGES",
    "XTTS_SAMPLE_VOICES",
    "build_speak_command",
    "ensure_helper_script",
    "extract_audio_clip",
    "get_media_duration",
    "validate_clip_range",
    "voice_id_for",
]
