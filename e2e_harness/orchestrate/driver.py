"""Browser-automation driver provisioning.

The provisioning mode is chosen once per run from the runner configuration and
the CLI options:

* ``RemoteGrid``: the runner talks to a selenium address, so a standalone grid
  is installed and started here and stopped on shutdown.
* ``ExternalBinary``: a driver binary was supplied; nothing to provision.
* ``ManagedBinary``: the managed driver binary is updated to match the
  installed browser (a one-shot step, nothing to stop).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol, Union
import asyncio
import logging

from e2e_harness.orchestrate.config import selenium_address
from e2e_harness.orchestrate.process import (
    ManagedProcess,
    ProcessError,
    read_tail,
    render_command,
    run_to_completion,
    start_process,
    terminate_process,
)
from e2e_harness.orchestrate.readiness import grid_ready, wait_for_readiness_async
from e2e_harness.orchestrate.state import DriverHandle

logger = logging.getLogger(__name__)


class DriverProvisionError(RuntimeError):
    """Raised when the grid cannot be installed/started or the driver update fails."""


@dataclass(frozen=True)
class RemoteGrid:
    address: str


@dataclass(frozen=True)
class ExternalBinary:
    path: str


@dataclass(frozen=True)
class ManagedBinary:
    pass


DriverMode = Union[RemoteGrid, ExternalBinary, ManagedBinary]


def select_driver_mode(runner_config: Mapping[str, Any], chrome_driver: str | None) -> DriverMode:
    address = selenium_address(runner_config)
    if address:
        return RemoteGrid(address=address)
    if chrome_driver:
        return ExternalBinary(path=chrome_driver)
    return ManagedBinary()


class DriverAdapter(Protocol):
    async def install_grid(self) -> None: ...

    async def start_grid(self, address: str) -> DriverHandle: ...

    async def update_managed_driver(self) -> None: ...


async def provision_driver(mode: DriverMode, adapter: DriverAdapter) -> DriverHandle | None:
    logger.info("Spawning selenium...")
    if isinstance(mode, RemoteGrid):
        logger.info("Installing Selenium...")
        await adapter.install_grid()
        logger.info("Selenium installed. Starting...")
        handle = await adapter.start_grid(mode.address)
        logger.info("Selenium server is ready.")
        return handle
    if isinstance(mode, ExternalBinary):
        logger.info("Skipping webdriver-manager update.")
        return None
    if isinstance(mode, ManagedBinary):
        logger.info("Updating webdriver-manager...")
        await adapter.update_managed_driver()
        return None
    raise TypeError(f"Unknown driver mode: {mode!r}")


class CommandDriverAdapter:
    """Provisions drivers by running the configured selenium/webdriver commands."""

    def __init__(
        self,
        *,
        install_command: str,
        start_command: str,
        update_command: str,
        project_root: Path,
        log_dir: Path,
        readiness_timeout_s: float = 120.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._install_command = install_command
        self._start_command = start_command
        self._update_command = update_command
        self._project_root = project_root
        self._log_dir = log_dir
        self._readiness_timeout_s = readiness_timeout_s
        self._env = dict(env or {})

    async def install_grid(self) -> None:
        await self._run_step(self._install_command, name="selenium-install")

    async def start_grid(self, address: str) -> DriverHandle:
        command = render_command(self._start_command, {"address": address})
        proc: ManagedProcess | None = None
        try:
            proc = await start_process(
                command,
                cwd=self._project_root,
                env=self._env,
                stdout_path=self._log_dir / "selenium.stdout.txt",
                stderr_path=self._log_dir / "selenium.stderr.txt",
            )
            readiness = await wait_for_readiness_async(
                f"{address.rstrip('/')}/status",
                check=grid_ready,
                timeout_s=self._readiness_timeout_s,
                alive=lambda: proc.running,
            )
        except ProcessError as exc:
            raise DriverProvisionError(str(exc)) from exc
        except asyncio.CancelledError:
            if proc is not None:
                await terminate_process(proc)
            raise
        if not readiness.ready:
            await terminate_process(proc)
            raise DriverProvisionError(
                f"Selenium grid at {address} did not become ready: {readiness.last_error}"
            )

        async def stop() -> None:
            await terminate_process(proc)

        return DriverHandle(stop=stop)

    async def update_managed_driver(self) -> None:
        await self._run_step(self._update_command, name="webdriver-update")

    async def _run_step(self, template: str, *, name: str) -> None:
        command = render_command(template, {})
        try:
            result = await run_to_completion(
                command, cwd=self._project_root, env=self._env, log_dir=self._log_dir, name=name
            )
        except ProcessError as exc:
            raise DriverProvisionError(str(exc)) from exc
        if result.exit_code != 0:
            tail = read_tail(self._log_dir / f"{name}.stderr.txt")
            detail = f": {tail}" if tail else ""
            raise DriverProvisionError(f"{name} failed with exit code {result.exit_code}{detail}")


__all__ = [
    "CommandDriverAdapter",
    "DriverAdapter",
    "DriverMode",
    "DriverProvisionError",
    "ExternalBinary",
    "ManagedBinary",
    "RemoteGrid",
    "provision_driver",
    "select_driver_mode",
]
