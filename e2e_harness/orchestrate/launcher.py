"""Test-runner launch with the fully resolved run parameters."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol
import asyncio
import logging
import shlex

from e2e_harness.orchestrate.process import (
    ManagedProcess,
    ProcessError,
    render_command,
    start_process,
    terminate_process,
    wait_process,
)
from e2e_harness.orchestrate.state import write_json_atomic

logger = logging.getLogger(__name__)

PARAMS_FILENAME = "runner-params.json"


class LaunchError(RuntimeError):
    """Raised when the test-runner process fails to initiate."""


@dataclass(frozen=True)
class RunnerParams:
    local_url: str
    chunks: Any
    app_config: Mapping[str, Any] = field(default_factory=dict)
    chrome_driver: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "params": {
                "localUrl": self.local_url,
                "chunks": self.chunks,
                "appConfig": dict(self.app_config),
            },
            "options": dict(self.options),
        }
        if self.chrome_driver:
            payload["chromeDriver"] = self.chrome_driver
        return payload


class RunnerProcess(Protocol):
    async def wait(self) -> int: ...


class RunnerLauncher(Protocol):
    async def launch(self, runner_config_path: Path, params: RunnerParams) -> RunnerProcess: ...


class CommandRunnerProcess:
    def __init__(self, proc: ManagedProcess) -> None:
        self._proc = proc

    @property
    def pid(self) -> int:
        return self._proc.process.pid

    async def wait(self) -> int:
        try:
            result = await wait_process(self._proc)
        except asyncio.CancelledError:
            await terminate_process(self._proc)
            raise
        return result.exit_code


class CommandRunnerLauncher:
    """Spawns the configured test-runner command with a params file."""

    def __init__(
        self,
        command_template: str,
        *,
        project_root: Path,
        output_dir: Path,
        chrome_driver_flag: str | None = "--chromeDriver",
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._command_template = command_template
        self._project_root = project_root
        self._output_dir = output_dir
        self._chrome_driver_flag = chrome_driver_flag
        self._env = dict(env or {})

    @property
    def params_path(self) -> Path:
        return self._output_dir / PARAMS_FILENAME

    async def launch(self, runner_config_path: Path, params: RunnerParams) -> CommandRunnerProcess:
        params_path = self.params_path
        try:
            write_json_atomic(params_path, params.to_payload())
        except (OSError, TypeError, ValueError) as exc:
            raise LaunchError(f"Failed to write runner params {params_path}: {exc}") from exc
        command = render_command(
            self._command_template,
            {
                "runner_config_path": runner_config_path,
                "params_path": params_path,
                "local_url": params.local_url,
            },
        )
        if params.chrome_driver and self._chrome_driver_flag:
            command.extend([self._chrome_driver_flag, params.chrome_driver])
        env = {**self._env, "E2E_LOCAL_URL": params.local_url, "E2E_PARAMS_PATH": str(params_path)}
        try:
            proc = await start_process(
                command,
                cwd=self._project_root,
                env=env,
                stdout_path=None,
                stderr_path=None,
            )
        except ProcessError as exc:
            raise LaunchError(str(exc)) from exc
        logger.info("RUNNER started pid=%s cmd=%s", proc.process.pid, shlex.join(command))
        return CommandRunnerProcess(proc)


__all__ = [
    "CommandRunnerLauncher",
    "CommandRunnerProcess",
    "LaunchError",
    "RunnerLauncher",
    "RunnerParams",
    "RunnerProcess",
]
