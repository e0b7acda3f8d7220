"""Tests for bounded external tool execution."""

import shutil
import sys

import pytest

from voice_orchestrator.errors import ToolError, ToolErrorKind
from voice_orchestrator.process import run_tool


class TestRunTool:
    @pytest.mark.asyncio
    async def test_missing_executable_is_not_found(self, tmp_path):
        with pytest.raises(ToolError) as exc_info:
            await run_tool([str(tmp_path / "no-such-tool")], timeout=5)

        assert exc_info.value.kind is ToolErrorKind.NOT_FOUND
        assert exc_info.value.not_found
        assert str(exc_info.value) == "no-such-tool not found"

    @pytest.mark.asyncio
    async def test_captures_stdout(self):
        output = await run_tool([sys.executable, "-c", "print('hello')"], timeout=30)
        assert output.returncode == 0
        assert output.stdout.strip() == "hello"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failed(self):
        script = "import sys; sys.stderr.write('bad input'); sys.exit(3)"
        with pytest.raises(ToolError) as exc_info:
            await run_tool([sys.executable, "-c", script], timeout=30)

        err = exc_info.value
        assert err.kind is ToolErrorKind.FAILED
        assert err.returncode == 3
        assert "bad input" in err.stderr

    @pytest.mark.asyncio
    async def test_stdin_is_forwarded(self):
        script = "import sys; print(sys.stdin.read().upper())"
        output = await run_tool([sys.executable, "-c", script], timeout=30, input_data=b"piper")
        assert output.stdout.strip() == "PIPER"

    @pytest.mark.asyncio
    async def test_extra_env_is_layered(self):
        script = "import os; print(os.environ['VOICE_TEST_FLAG'])"
        output = await run_tool(
            [sys.executable, "-c", script], timeout=30, env={"VOICE_TEST_FLAG": "on"}
        )
        assert output.stdout.strip() == "on"

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("sleep") is None, reason="sleep not available")
    async def test_timeout_kills_process(self):
        with pytest.raises(ToolError) as exc_info:
            await run_tool(["sleep", "10"], timeout=0.2)
        assert exc_info.value.kind is ToolErrorKind.TIMEOUT
        assert "timed out" in str(exc_info.value)
