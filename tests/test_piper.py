"""
Tests for the Piper engine: installation, voice downloads and synthesis.

Subprocesses are replaced by mocks; no Piper binary is required.
"""

import asyncio
import base64
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from voice_orchestrator.discovery import VoiceDiscovery
from voice_orchestrator.download import Downloader
from voice_orchestrator.engines.base import SpeakOptions
from voice_orchestrator.engines.piper import (
    PIPER_BINARY_URLS,
    PiperEngine,
    SpeechSlot,
    build_piper_args,
    length_scale_for,
)

WAV_BYTES = b"RIFF----WAVEfmt fake"


def _engine(asset_paths, temp_dir, handler=None) -> PiperEngine:
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(404)))
    return PiperEngine(
        asset_paths,
        VoiceDiscovery(asset_paths),
        Downloader(transport=transport),
        SpeechSlot(),
        temp_dir,
    )


def _install_binary(asset_paths) -> Path:
    binary = asset_paths.piper_dir / "piper" / "piper"
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_bytes(b"#!/bin/sh\n")
    return binary


def _fake_process(returncode: int = 0, stderr: bytes = b"", write_output: bool = True):
    """Build a create_subprocess_exec mock that behaves like Piper."""
    spawned = {}

    async def create(*args, **kwargs):
        spawned["args"] = list(args)
        spawned["kwargs"] = kwargs
        output = Path(args[args.index("--output_file") + 1])
        proc = MagicMock()
        proc.returncode = None

        async def communicate(data):
            spawned["stdin"] = data
            if write_output:
                output.write_bytes(WAV_BYTES)
            proc.returncode = returncode
            return b"", stderr

        proc.communicate = communicate
        spawned["process"] = proc
        return proc

    return create, spawned


class TestArguments:
    def test_length_scale_is_reciprocal_of_speed(self):
        assert length_scale_for(2.0) == "0.50"
        assert length_scale_for(1.0) == "1.00"
        assert length_scale_for(0.5) == "2.00"
        assert length_scale_for(1.5) == "0.67"

    def test_argument_shape(self):
        args = build_piper_args(Path("/v/amy.onnx"), Path("/tmp/out.wav"), 1.0)
        assert args == ["--model", "/v/amy.onnx", "--output_file", "/tmp/out.wav", "--length_scale", "1.00"]


class TestSpeak:
    """Test one-process-per-utterance synthesis."""

    @pytest.mark.asyncio
    async def test_no_voices_installed(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir)
        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec") as spawn:
            result = await engine.speak("hello", "missing-voice", SpeakOptions(speed=1.0))

        assert result.success is False
        assert result.error == "No voices installed"
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_speed_two_gives_length_scale_half(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        create, spawned = _fake_process()

        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec", new=create):
            result = await engine.speak("Roll for initiative.", "en_US-amy-medium", SpeakOptions(speed=2.0))

        assert result.success
        args = spawned["args"]
        assert args[args.index("--length_scale") + 1] == "0.50"
        assert args[args.index("--model") + 1] == str(asset_paths.voice_model_path("en_US-amy-medium"))
        assert spawned["stdin"] == b"Roll for initiative."

    @pytest.mark.asyncio
    async def test_success_returns_base64_and_deletes_output(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        create, spawned = _fake_process()

        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec", new=create):
            result = await engine.speak("hello", "en_US-amy-medium")

        assert base64.b64decode(result.audio_data) == WAV_BYTES
        assert result.voice_key == "en_US-amy-medium"
        assert result.exit_code == 0
        assert list(temp_dir().iterdir()) == []

    @pytest.mark.asyncio
    async def test_output_file_is_unique_and_timestamped(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        create, spawned = _fake_process()

        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec", new=create):
            await engine.speak("one", "en_US-amy-medium")
            first = spawned["args"][spawned["args"].index("--output_file") + 1]
            await engine.speak("two", "en_US-amy-medium")
            second = spawned["args"][spawned["args"].index("--output_file") + 1]

        assert first != second
        assert Path(first).name.startswith("tts_")
        assert Path(first).parent == temp_dir()

    @pytest.mark.asyncio
    async def test_falls_back_to_installed_voice(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_GB-alan-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        create, spawned = _fake_process()

        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec", new=create):
            result = await engine.speak("hello", "en_US-amy-medium")

        assert result.success
        assert result.voice_key == "en_GB-alan-medium"

    @pytest.mark.asyncio
    async def test_nonzero_exit_reports_code_and_stderr(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        create, _ = _fake_process(returncode=1, stderr=b"Failed to load voice")

        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec", new=create):
            result = await engine.speak("hello", "en_US-amy-medium")

        assert not result.success
        assert result.error == "Piper exited with code 1"
        assert result.exit_code == 1
        assert "Failed to load voice" in result.diagnostics
        assert list(temp_dir().iterdir()) == []

    @pytest.mark.asyncio
    async def test_zero_exit_without_output_is_failure(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        create, _ = _fake_process(write_output=False)

        with patch("voice_orchestrator.engines.piper.asyncio.create_subprocess_exec", new=create):
            result = await engine.speak("hello", "en_US-amy-medium")

        assert not result.success
        assert result.error == "Piper exited with code 0"

    @pytest.mark.asyncio
    async def test_spawn_failure_is_reported(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)

        with patch(
            "voice_orchestrator.engines.piper.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=PermissionError("not executable")),
        ):
            result = await engine.speak("hello", "en_US-amy-medium")

        assert not result.success
        assert "Failed to start Piper" in result.error

    @pytest.mark.asyncio
    async def test_missing_binary(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        engine = _engine(asset_paths, temp_dir)

        with patch.object(PiperEngine, "binary_path", return_value=None):
            result = await engine.speak("hello", "en_US-amy-medium")

        assert not result.success
        assert result.error == "Piper not installed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n"])
    async def test_empty_text_is_rejected(self, asset_paths, temp_dir, text):
        engine = _engine(asset_paths, temp_dir)
        result = await engine.speak(text, "en_US-amy-medium")
        assert not result.success
        assert result.error == "Nothing to speak"

    @pytest.mark.asyncio
    async def test_non_positive_speed_is_rejected(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir)
        result = await engine.speak("hello", "en_US-amy-medium", SpeakOptions(speed=0))
        assert not result.success
        assert "Invalid speed" in result.error

    @pytest.mark.asyncio
    async def test_cancelled_speak_terminates_process(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-amy-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)
        started = asyncio.Event()
        proc = MagicMock(returncode=None)

        async def communicate(data):
            started.set()
            await asyncio.Event().wait()

        proc.communicate = communicate

        with patch(
            "voice_orchestrator.engines.piper.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=proc),
        ):
            task = asyncio.ensure_future(engine.speak("hello", "en_US-amy-medium"))
            await started.wait()
            assert engine.slot.process is proc
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        proc.terminate.assert_called_once()
        assert not engine.slot.active
        assert list(temp_dir().iterdir()) == []


class TestSpeechSlot:
    """Test single-slot cancellation tracking."""

    def test_new_process_replaces_handle(self):
        slot = SpeechSlot()
        first, second = MagicMock(returncode=None), MagicMock(returncode=None)
        slot.replace(first)
        assert slot.replace(second) is first
        assert slot.process is second

    def test_terminate_signals_and_clears(self):
        slot = SpeechSlot()
        proc = MagicMock(returncode=None)
        slot.replace(proc)

        assert slot.terminate() is True
        proc.terminate.assert_called_once()
        assert not slot.active

    def test_terminate_only_reaches_newest(self):
        slot = SpeechSlot()
        old, new = MagicMock(returncode=None), MagicMock(returncode=None)
        slot.replace(old)
        slot.replace(new)
        slot.terminate()
        old.terminate.assert_not_called()
        new.terminate.assert_called_once()

    def test_clear_ignores_other_process(self):
        slot = SpeechSlot()
        old, new = MagicMock(returncode=None), MagicMock(returncode=None)
        slot.replace(old)
        slot.replace(new)
        slot.clear(old)
        assert slot.process is new

    def test_terminate_empty_slot(self):
        assert SpeechSlot().terminate() is False

    def test_stop_terminates_tracked_process(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir)
        proc = MagicMock(returncode=None)
        engine.slot.replace(proc)
        engine.stop()
        proc.terminate.assert_called_once()
        assert engine.slot.process is None


class TestInstall:
    """Test the Piper binary install workflow."""

    @pytest.mark.asyncio
    async def test_unsupported_platform_makes_no_network_call(self, asset_paths, temp_dir):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        engine = _engine(asset_paths, temp_dir, handler)
        result = await engine.install(platform_key="aix")

        assert not result.success
        assert result.error == "Unsupported platform: aix"
        assert requests == []

    def test_binary_urls(self):
        assert set(PIPER_BINARY_URLS) == {"win32", "darwin", "linux"}
        assert PIPER_BINARY_URLS["linux"].endswith("piper_linux_x86_64.tar.gz")
        assert PIPER_BINARY_URLS["win32"].endswith("piper_windows_amd64.zip")

    @pytest.mark.asyncio
    async def test_install_downloads_extracts_and_marks_executable(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir, lambda request: httpx.Response(200, content=b"archive"))
        progress = []

        async def fake_extract(archive, dest, windows=None):
            _install_binary(asset_paths)

        with patch("voice_orchestrator.engines.piper.extract_archive", new=fake_extract):
            result = await engine.install(lambda s, p: progress.append((s, p)), platform_key="linux")

        assert result.success
        binary = asset_paths.piper_dir / "piper" / "piper"
        assert binary.stat().st_mode & 0o111
        assert not (asset_paths.piper_dir / "piper.tar.gz").exists()
        assert progress[-1] == ("Piper TTS installed successfully", 100)

    @pytest.mark.asyncio
    async def test_install_fails_when_binary_missing_after_extract(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir, lambda request: httpx.Response(200, content=b"archive"))

        with patch("voice_orchestrator.engines.piper.extract_archive", new=AsyncMock()), \
             patch.object(PiperEngine, "is_installed", return_value=False):
            result = await engine.install(platform_key="linux")

        assert not result.success
        assert result.error == "Piper extraction failed"

    @pytest.mark.asyncio
    async def test_install_download_failure(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir, lambda request: httpx.Response(404))
        result = await engine.install(platform_key="darwin")
        assert not result.success
        assert "404" in result.error

    @pytest.mark.asyncio
    async def test_install_with_malformed_redirect_returns_failure(self, asset_paths, temp_dir):
        engine = _engine(
            asset_paths, temp_dir, lambda request: httpx.Response(302, headers={"location": "http://[bad/"})
        )

        result = await engine.install(platform_key="linux")

        assert not result.success
        assert "Malformed redirect" in result.error
        assert not (asset_paths.piper_dir / "piper.tar.gz").exists()


class TestBuiltinVoiceDownload:
    @pytest.mark.asyncio
    async def test_downloads_model_then_config(self, asset_paths, temp_dir):
        requested = []

        def handler(request):
            requested.append(request.url.path)
            return httpx.Response(200, content=b"data")

        engine = _engine(asset_paths, temp_dir, handler)
        progress = []
        result = await engine.download_voice("en_US-amy-medium", lambda s, p: progress.append(p))

        assert result.success
        assert requested[0].endswith("en_US-amy-medium.onnx")
        assert requested[1].endswith("en_US-amy-medium.onnx.json")
        assert engine.discovery.resolve("en_US-amy-medium") is not None
        assert progress[-2:] == [95, 100]

    @pytest.mark.asyncio
    async def test_config_failure_removes_model(self, asset_paths, temp_dir):
        def handler(request):
            if request.url.path.endswith(".json"):
                return httpx.Response(500)
            return httpx.Response(200, content=b"model")

        engine = _engine(asset_paths, temp_dir, handler)
        result = await engine.download_voice("en_US-amy-medium")

        assert not result.success
        assert not asset_paths.voice_model_path("en_US-amy-medium").exists()

    @pytest.mark.asyncio
    async def test_unknown_builtin_voice(self, asset_paths, temp_dir):
        engine = _engine(asset_paths, temp_dir)
        result = await engine.download_voice("xx-unknown")
        assert not result.success


class TestStatus:
    def test_status_falls_back_to_first_installed(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-ryan-medium")
        _install_binary(asset_paths)
        engine = _engine(asset_paths, temp_dir)

        status = engine.check_status("en_US-amy-medium")

        assert status.installed
        assert status.voices == ["en_US-ryan-medium"]
        assert status.current_voice == "en_US-ryan-medium"

    def test_status_without_binary(self, asset_paths, temp_dir, install_voice):
        install_voice(asset_paths.piper_voices_dir, "en_US-ryan-medium")
        engine = _engine(asset_paths, temp_dir)
        with patch.object(PiperEngine, "binary_path", return_value=None):
            status = engine.check_status("en_US-ryan-medium")
        assert not status.installed
        assert status.engine is None
