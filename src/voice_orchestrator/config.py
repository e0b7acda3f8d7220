"""
Environment configuration and logging setup.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .paths import AssetPaths, ensure_dir

logger = logging.getLogger("voice-orchestrator")

APP_NAME = "voice-orchestrator"
DATA_DIR_ENV = "VOICE_ORCHESTRATOR_DATA_DIR"
LOG_LEVEL_ENV = "VOICE_ORCHESTRATOR_LOG_LEVEL"

TTS_LOG_FORMAT = "[%(asctime)s] %(message)s"


def load_environment() -> None:
    """Load ``.env`` into the process environment, if one exists."""
    if not load_dotenv():
        logger.warning(".env file not found, using environment and defaults")


def default_data_dir() -> Path:
    """Per-OS application data directory for the orchestrator."""
    override = os.getenv(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser().resolve()

    if sys.platform == "win32":
        base = Path(os.getenv("APPDATA") or Path.home() / "AppData" / "Roaming")
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share")
    return base / APP_NAME


def configure_logging(paths: AssetPaths, level: Optional[str] = None) -> None:
    """Configure root logging and the synthesis debug log.

    Synthesis diagnostics (``voice-orchestrator.tts``) are additionally
    appended to ``tts-debug.log`` under the data root.
    """
    level_name = (level or os.getenv(LOG_LEVEL_ENV, "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    tts_logger = logging.getLogger("voice-orchestrator.tts")
    log_path = paths.tts_debug_log_path
    if any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_path)
        for h in tts_logger.handlers
    ):
        return
    try:
        ensure_dir(log_path.parent)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as exc:
        logger.warning("TTS debug log unavailable at %s: %s", log_path, exc)
        return
    handler.setFormatter(logging.Formatter(TTS_LOG_FORMAT))
    handler.setLevel(logging.DEBUG)
    tts_logger.addHandler(handler)
    tts_logger.setLevel(logging.DEBUG)
