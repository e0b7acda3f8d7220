"""Tests for platform-dispatched archive extraction."""

import shutil
import tarfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from voice_orchestrator.archive import extract_archive, extraction_command
from voice_orchestrator.errors import ExtractionError, ToolError, ToolErrorKind


class TestExtractionCommand:
    """Test the native tool chosen per platform and extension."""

    def test_windows_uses_expand_archive(self):
        cmd = extraction_command(Path("C:/deps/piper.zip"), Path("C:/deps"), windows=True)
        assert cmd[0] == "powershell"
        assert "Expand-Archive" in cmd[-1]
        assert "-Force" in cmd[-1]

    def test_tar_gz_uses_tar(self):
        cmd = extraction_command(Path("/deps/piper.tar.gz"), Path("/deps"), windows=False)
        assert cmd == ["tar", "-xzf", "/deps/piper.tar.gz", "-C", "/deps"]

    def test_tgz_uses_tar(self):
        cmd = extraction_command(Path("/deps/piper.tgz"), Path("/deps"), windows=False)
        assert cmd[0] == "tar"

    def test_zip_uses_unzip_off_windows(self):
        cmd = extraction_command(Path("/deps/piper.zip"), Path("/deps"), windows=False)
        assert cmd == ["unzip", "-o", "/deps/piper.zip", "-d", "/deps"]


class TestExtractArchive:
    """Test extraction error handling."""

    @pytest.mark.asyncio
    async def test_creates_destination(self, tmp_path):
        dest = tmp_path / "nested" / "dest"
        with patch("voice_orchestrator.archive.run_tool", new=AsyncMock()) as run:
            await extract_archive(tmp_path / "a.tar.gz", dest, windows=False)
        assert dest.is_dir()
        run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_is_extraction_error(self, tmp_path):
        failure = ToolError("tar timed out after 120s", kind=ToolErrorKind.TIMEOUT, tool="tar")
        with patch("voice_orchestrator.archive.run_tool", new=AsyncMock(side_effect=failure)):
            with pytest.raises(ExtractionError) as exc_info:
                await extract_archive(tmp_path / "a.tar.gz", tmp_path / "out", windows=False)
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_tool_is_extraction_error(self, tmp_path):
        failure = ToolError("unzip not found", kind=ToolErrorKind.NOT_FOUND, tool="unzip")
        with patch("voice_orchestrator.archive.run_tool", new=AsyncMock(side_effect=failure)):
            with pytest.raises(ExtractionError):
                await extract_archive(tmp_path / "a.zip", tmp_path / "out", windows=False)

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("tar") is None, reason="tar not available")
    async def test_extracts_real_tarball(self, tmp_path):
        payload = tmp_path / "piper"
        payload.mkdir()
        (payload / "piper").write_bytes(b"#!/bin/sh\n")
        archive = tmp_path / "piper.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(payload, arcname="piper")

        dest = tmp_path / "deps"
        await extract_archive(archive, dest, windows=False)

        assert (dest / "piper" / "piper").read_bytes() == b"#!/bin/sh\n"
