"""
Pytest configuration and fixtures for voice-orchestrator tests.
"""

import sys
from pathlib import Path
import pytest

# Add src directory to Python path to allow importing voice_orchestrator
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from voice_orchestrator.paths import AssetPaths  # noqa: E402


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def asset_paths(tmp_path: Path) -> AssetPaths:
    """Asset layout rooted in a throwaway directory."""
    return AssetPaths(root=tmp_path / "data")


@pytest.fixture
def temp_dir(tmp_path: Path):
    """Temp-directory provider for synthesized audio files."""
    out = tmp_path / "tmp"
    out.mkdir()
    return lambda: out


def _install_voice(directory: Path, key: str, model: bool = True, config: bool = True) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    if model:
        (directory / f"{key}.onnx").write_bytes(b"onnx")
    if config:
        (directory / f"{key}.onnx.json").write_text("{}")


@pytest.fixture
def install_voice():
    """Write placeholder model/config files for a voice."""
    return _install_voice

