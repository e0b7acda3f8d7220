"""
Long-lived XTTS inference server.

Loading the XTTS-v2 model takes tens of seconds, so the helper script runs
as one persistent process that answers line-delimited JSON commands on
stdin/stdout. Responses carry no request id: they are matched to requests
in the order the requests were sent.
"""

import asyncio
import json
import logging
from collections import deque
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Optional

from ..errors import InferenceServerError
from ..paths import AssetPaths, ensure_dir

logger = logging.getLogger("voice-orchestrator.clone.server")

STARTUP_TIMEOUT = 120.0
REQUEST_TIMEOUT = 300.0
STOP_GRACE_PERIOD = 1.0


def ensure_helper_script(paths: AssetPaths) -> Path:
    """(Re)write the packaged helper script into the XTTS directory."""
    ensure_dir(paths.xtts_dir)
    source = resources.files("voice_orchestrator.clone").joinpath("xtts_helper.py")
    target = paths.xtts_helper_path
    target.write_text(source.read_text(encoding="utf-8"), encoding="utf-8")
    if not paths.windows:
        target.chmod(0o755)
    return target


class _Session:
    """State belonging to one server process."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        self.ready: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self.pending: deque[asyncio.Future[dict[str, Any]]] = deque()
        self.tasks: list[asyncio.Task] = []


class InferenceServer:
    """Manages the persistent helper process and its command protocol.

    Usage:
        server = InferenceServer(paths, python_resolver=lambda: "/usr/bin/python3")
        result = await server.send_command({"action": "ping"})
        server.stop()

    Args:
        paths: Asset path resolver (helper script and venv locations).
        python_resolver: Returns the fallback interpreter when the XTTS venv
            does not exist yet.
        startup_timeout: Seconds to wait for the ready line.
        request_timeout: Seconds to wait for each response.
    """

    def __init__(
        self,
        paths: AssetPaths,
        python_resolver: Callable[[], Optional[str]] = lambda: None,
        startup_timeout: float = STARTUP_TIMEOUT,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.paths = paths
        self._python_resolver = python_resolver
        self.startup_timeout = startup_timeout
        self.request_timeout = request_timeout
        self._session: Optional[_Session] = None
        self._starting: Optional[asyncio.Task[bool]] = None

    def is_running(self) -> bool:
        session = self._session
        return (
            session is not None
            and session.process.returncode is None
            and session.ready.done()
            and not session.ready.cancelled()
            and session.ready.result()
        )

    def _interpreter(self) -> Optional[str]:
        venv_python = self.paths.venv_python
        if venv_python.is_file():
            return str(venv_python)
        return self._python_resolver()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start the server if needed. Concurrent callers share one start."""
        if self.is_running():
            return True
        if self._starting is None or self._starting.done():
            self._starting = asyncio.ensure_future(self._start())
        task = self._starting
        try:
            return await asyncio.shield(task)
        finally:
            if self._starting is task and task.done():
                self._starting = None

    async def _start(self) -> bool:
        python = self._interpreter()
        if not python:
            logger.error("No Python interpreter available for the XTTS server")
            return False

        try:
            script = ensure_helper_script(self.paths)
            process = await asyncio.create_subprocess_exec(
                python,
                str(script),
                "server",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Failed to spawn XTTS server: %s", exc)
            return False

        session = _Session(process)
        self._session = session
        session.tasks = [
            asyncio.ensure_future(self._read_responses(session)),
            asyncio.ensure_future(self._drain_stderr(session)),
        ]

        try:
            ready = await asyncio.wait_for(asyncio.shield(session.ready), self.startup_timeout)
        except asyncio.TimeoutError:
            logger.error("XTTS server startup timeout")
            self.stop()
            return False

        if ready:
            logger.info("XTTS server ready (pid %s)", process.pid)
        return ready

    def stop(self) -> None:
        """Ask the server to quit, then kill it after a short grace period.

        Returns immediately without waiting for the process to exit.
        """
        session, self._session = self._session, None
        if session is None:
            return

        process = session.process
        if process.returncode is not None:
            return

        try:
            if process.stdin is not None:
                process.stdin.write(b'{"action": "quit"}\n')
        except (OSError, RuntimeError):
            pass

        def _kill() -> None:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass

        try:
            asyncio.get_running_loop().call_later(STOP_GRACE_PERIOD, _kill)
        except RuntimeError:
            _kill()

    async def shutdown(self) -> None:
        """Stop the server and wait for its process to exit."""
        session = self._session
        self.stop()
        if session is not None:
            await session.process.wait()
            await asyncio.gather(*session.tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    async def _read_responses(self, session: _Session) -> None:
        stdout = session.process.stdout
        assert stdout is not None
        while True:
            line = await stdout.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                response = json.loads(text)
            except ValueError:
                logger.warning("XTTS server sent unparseable line: %r", text[:200])
                continue

            if isinstance(response, dict) and response.get("status") == "ready" and not session.ready.done():
                session.ready.set_result(True)
                continue

            # One response per queued request; a timed-out request still owns its slot.
            if not session.pending:
                logger.warning("XTTS server sent an unsolicited response: %r", text[:200])
                continue
            waiter = session.pending.popleft()
            if waiter.done():
                logger.debug("Discarding late XTTS response: %r", text[:200])
            else:
                waiter.set_result(response)

        code = await session.process.wait()
        logger.info("XTTS server exited with code %s", code)
        if self._session is session:
            self._session = None
        if not session.ready.done():
            session.ready.set_result(False)
        while session.pending:
            waiter = session.pending.popleft()
            if not waiter.done():
                waiter.set_exception(InferenceServerError(f"Server exited with code {code}"))

    async def _drain_stderr(self, session: _Session) -> None:
        stderr = session.process.stderr
        assert stderr is not None
        while True:
            line = await stderr.readline()
            if not line:
                break
            logger.debug("XTTS server: %s", line.decode("utf-8", errors="replace").rstrip())

    async def send_command(self, command: dict[str, Any]) -> dict[str, Any]:
        """Send one command and wait for its response.

        Raises:
            InferenceServerError: If the server cannot start, exits while
                the request is pending, or does not answer in time.
        """
        if not self.is_running():
            if not await self.start():
                raise InferenceServerError("Failed to start XTTS server")

        session = self._session
        if session is None or session.process.stdin is None:
            raise InferenceServerError("XTTS server is not running")

        waiter: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        session.pending.append(waiter)
        try:
            session.process.stdin.write((json.dumps(command) + "\n").encode("utf-8"))
            await session.process.stdin.drain()
        except (OSError, RuntimeError) as exc:
            if waiter in session.pending:
                session.pending.remove(waiter)
            raise InferenceServerError(f"Failed to send command: {exc}") from exc

        try:
            return await asyncio.wait_for(waiter, self.request_timeout)
        except asyncio.TimeoutError:
            raise InferenceServerError("Request timeout") from None
