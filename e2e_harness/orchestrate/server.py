"""Local web server that hosts the built app during a run."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Protocol
import asyncio
import logging

from e2e_harness.orchestrate.ports import PortError, find_free_port
from e2e_harness.orchestrate.process import (
    ManagedProcess,
    ProcessError,
    render_command,
    start_process,
    terminate_process,
)
from e2e_harness.orchestrate.readiness import responding, wait_for_readiness_async

logger = logging.getLogger(__name__)


class ServerStartError(RuntimeError):
    """Raised when the local server cannot bind or initialize."""


def local_url(port: int) -> str:
    return f"https://localhost:{port}"


class ServerAdapter(Protocol):
    async def start(self, options: Mapping[str, Any]) -> int: ...

    async def stop(self) -> None: ...


class CommandServerAdapter:
    """Serves the build output by spawning the configured server command."""

    def __init__(
        self,
        command_template: str,
        *,
        root: Path,
        project_root: Path,
        log_dir: Path,
        port_range: tuple[int, int],
        readiness_timeout_s: float = 60.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._command_template = command_template
        self._root = root
        self._project_root = project_root
        self._log_dir = log_dir
        self._port_range = port_range
        self._readiness_timeout_s = readiness_timeout_s
        self._env = dict(env or {})
        self._proc: ManagedProcess | None = None

    async def start(self, options: Mapping[str, Any]) -> int:
        if self._proc is not None and self._proc.running:
            raise ServerStartError("Server is already running.")
        try:
            port = find_free_port(self._port_range)
        except PortError as exc:
            raise ServerStartError(str(exc)) from exc
        command = render_command(self._command_template, {"port": port, "root": self._root})
        try:
            self._proc = await start_process(
                command,
                cwd=self._project_root,
                env=self._env,
                stdout_path=self._log_dir / "server.stdout.txt",
                stderr_path=self._log_dir / "server.stderr.txt",
            )
        except ProcessError as exc:
            raise ServerStartError(str(exc)) from exc
        proc = self._proc
        try:
            readiness = await wait_for_readiness_async(
                f"{local_url(port)}/",
                check=responding,
                timeout_s=self._readiness_timeout_s,
                verify=False,
                alive=lambda: proc.running,
            )
        except asyncio.CancelledError:
            await self.stop()
            raise
        if not readiness.ready:
            await self.stop()
            raise ServerStartError(
                f"Server on port {port} did not become ready after {readiness.attempts} attempt(s): "
                f"{readiness.last_error}"
            )
        logger.debug("Server ready port=%s attempts=%d", port, readiness.attempts)
        return port

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        await terminate_process(proc)


__all__ = ["CommandServerAdapter", "ServerAdapter", "ServerStartError", "local_url"]
