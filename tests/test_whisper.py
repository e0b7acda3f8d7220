"""Tests for whisper model management and transcription."""

import struct
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from voice_orchestrator.download import Downloader
from voice_orchestrator.engines.whisper import (
    DEFAULT_WHISPER_MODEL,
    WHISPER_MODELS,
    WhisperModels,
    float_to_wav,
)
from voice_orchestrator.errors import ToolError, ToolErrorKind
from voice_orchestrator.process import ToolOutput


def _models(asset_paths, temp_dir, handler=None) -> WhisperModels:
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(404)))
    return WhisperModels(asset_paths, Downloader(transport=transport), temp_dir)


def _install_model(asset_paths, name: str) -> None:
    path = asset_paths.whisper_model_path(WHISPER_MODELS[name].file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"ggml")


class TestFloatToWav:
    def test_header_fields(self):
        wav = float_to_wav([0.0, 0.5, -0.5, 1.0], 16000)

        assert wav[:4] == b"RIFF"
        assert wav[8:16] == b"WAVEfmt "
        channels, rate = struct.unpack("<HI", wav[22:28])
        assert (channels, rate) == (1, 16000)
        assert wav[36:40] == b"data"
        assert struct.unpack("<I", wav[40:44])[0] == 8
        assert len(wav) == 44 + 8

    def test_samples_are_clipped(self):
        wav = float_to_wav([2.0, -3.0], 16000)
        assert struct.unpack("<2h", wav[44:]) == (32767, -32767)


class TestStatus:
    def test_model_table(self):
        assert DEFAULT_WHISPER_MODEL in WHISPER_MODELS
        assert WHISPER_MODELS["tiny.en"].url.endswith("ggml-tiny.en.bin")

    def test_nothing_installed(self, asset_paths, temp_dir):
        status = _models(asset_paths, temp_dir).check_status("base.en")
        assert not status.installed
        assert status.current_model is None

    def test_current_model_falls_back_to_first_installed(self, asset_paths, temp_dir):
        _install_model(asset_paths, "small.en")
        _install_model(asset_paths, "tiny.en")

        status = _models(asset_paths, temp_dir).check_status("base.en")

        assert status.models == ["tiny.en", "small.en"]
        assert status.current_model == "tiny.en"


class TestDownload:
    @pytest.mark.asyncio
    async def test_download_model(self, asset_paths, temp_dir):
        models = _models(asset_paths, temp_dir, lambda request: httpx.Response(200, content=b"ggml"))
        progress = []

        result = await models.download("tiny.en", lambda s, p: progress.append((s, p)))

        assert result.success
        assert models.is_installed("tiny.en")
        assert progress[0] == ("Downloading Whisper tiny.en model (75MB)...", 0)
        assert progress[-1] == ("Whisper model installed successfully", 100)

    @pytest.mark.asyncio
    async def test_unknown_model(self, asset_paths, temp_dir):
        result = await _models(asset_paths, temp_dir).download("huge.xx")
        assert not result.success


class TestTranscribe:
    """Test transcription through the whisper-cli tool."""

    @pytest.mark.asyncio
    async def test_no_model_installed(self, asset_paths, temp_dir):
        result = await _models(asset_paths, temp_dir).transcribe([0.0] * 10, 16000, "base.en")
        assert not result.success
        assert result.error == "No Whisper model installed. Install one from Settings."

    @pytest.mark.asyncio
    async def test_missing_cli(self, asset_paths, temp_dir):
        _install_model(asset_paths, "base.en")
        models = _models(asset_paths, temp_dir)
        with patch.object(WhisperModels, "binary_path", return_value=None):
            result = await models.transcribe([0.0] * 10, 16000, "base.en")
        assert not result.success
        assert "whisper-cli" in result.error

    @pytest.mark.asyncio
    async def test_transcribes_with_fallback_model(self, asset_paths, temp_dir):
        _install_model(asset_paths, "tiny.en")
        models = _models(asset_paths, temp_dir)
        run = AsyncMock(return_value=ToolOutput(0, " Hello there.\n\n General Kenobi.\n", ""))

        with patch.object(WhisperModels, "binary_path", return_value="/opt/whisper-cli"), \
             patch("voice_orchestrator.engines.whisper.run_tool", new=run):
            result = await models.transcribe([0.1] * 1600, 16000, "base.en")

        assert result.success
        assert result.text == "Hello there. General Kenobi."
        assert result.model == "tiny.en"
        args = run.await_args.args[0]
        assert args[0] == "/opt/whisper-cli"
        assert args[args.index("-m") + 1].endswith("ggml-tiny.en.bin")
        assert list(temp_dir().iterdir()) == []

    @pytest.mark.asyncio
    async def test_tool_failure(self, asset_paths, temp_dir):
        _install_model(asset_paths, "base.en")
        models = _models(asset_paths, temp_dir)
        failure = ToolError("whisper-cli timed out after 120s", kind=ToolErrorKind.TIMEOUT, tool="whisper-cli")

        with patch.object(WhisperModels, "binary_path", return_value="/opt/whisper-cli"), \
             patch("voice_orchestrator.engines.whisper.run_tool", new=AsyncMock(side_effect=failure)):
            result = await models.transcribe([0.0], 16000, "base.en")

        assert not result.success
        assert "timed out" in result.error
        assert list(temp_dir().iterdir()) == []
