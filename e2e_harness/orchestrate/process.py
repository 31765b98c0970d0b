"""Subprocess command rendering, spawning and termination."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import IO, Mapping, Sequence
import asyncio
import logging
import os
import shlex
import signal
import subprocess
import time

logger = logging.getLogger(__name__)


class ProcessError(RuntimeError):
    """Raised when a helper process cannot be spawned or exits unsuccessfully."""


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    duration_s: float
    terminated: bool = False


@dataclass
class ManagedProcess:
    command: list[str]
    process: asyncio.subprocess.Process
    start_time: float
    stdout_handle: IO[str] | None
    stderr_handle: IO[str] | None
    terminated: bool = False

    @property
    def running(self) -> bool:
        return self.process.returncode is None


def render_command(template: str, context: Mapping[str, object]) -> list[str]:
    """Split ``template`` into arguments, then fill placeholders per argument.

    A substituted value always stays inside the argument it was written in, so
    paths containing whitespace are never split.
    """
    values = {key: str(value) for key, value in context.items()}
    return [token.format(**values) for token in shlex.split(template)]


def merge_env(extra: Mapping[str, str] | None) -> dict[str, str] | None:
    if not extra:
        return None
    env = dict(os.environ)
    env.update(extra)
    return env


async def start_process(
    command: Sequence[str] | str,
    *,
    cwd: Path,
    env: Mapping[str, str] | None,
    stdout_path: Path | None,
    stderr_path: Path | None,
) -> ManagedProcess:
    """Spawn ``command`` in its own process group.

    Output goes to the given files; a ``None`` path inherits the parent's stream.
    """
    if isinstance(command, str):
        command = shlex.split(command)
    if not command:
        raise ProcessError("Cannot start an empty command.")
    stdout_handle = _open_sink(stdout_path)
    stderr_handle = _open_sink(stderr_path)
    try:
        kwargs: dict[str, object] = {}
        if os.name == "posix":
            kwargs["start_new_session"] = True
        elif os.name == "nt":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        spawn = asyncio.ensure_future(
            asyncio.create_subprocess_exec(
                *list(command),
                cwd=str(cwd),
                env=merge_env(env),
                stdout=stdout_handle,
                stderr=stderr_handle,
                **kwargs,
            )
        )
        try:
            process = await asyncio.shield(spawn)
        except asyncio.CancelledError:
            await _discard_spawn(spawn)
            raise
    except OSError as exc:
        _close_sinks(stdout_handle, stderr_handle)
        raise ProcessError(f"Failed to start {shlex.join(command)}: {exc}") from exc
    except BaseException:
        _close_sinks(stdout_handle, stderr_handle)
        raise
    logger.debug("Started pid=%s cmd=%s", process.pid, shlex.join(command))
    return ManagedProcess(
        command=list(command),
        process=process,
        start_time=time.monotonic(),
        stdout_handle=stdout_handle,
        stderr_handle=stderr_handle,
    )


async def wait_process(proc: ManagedProcess) -> ProcessResult:
    try:
        await proc.process.wait()
    finally:
        _close_handles(proc)
    duration = time.monotonic() - proc.start_time
    exit_code = proc.process.returncode if proc.process.returncode is not None else 0
    return ProcessResult(exit_code=exit_code, duration_s=duration, terminated=proc.terminated)


async def terminate_process(proc: ManagedProcess, *, term_timeout_s: float = 5.0) -> None:
    """Stop the process group; a process that already exited is left alone."""
    if proc.process.returncode is not None:
        _close_handles(proc)
        return
    proc.terminated = True
    pid = proc.process.pid
    if os.name == "posix":
        try:
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            _close_handles(proc)
            return
        except OSError:
            proc.process.terminate()
    else:
        try:
            proc.process.terminate()
        except ProcessLookupError:
            _close_handles(proc)
            return
    try:
        await asyncio.wait_for(proc.process.wait(), timeout=term_timeout_s)
        _close_handles(proc)
        return
    except asyncio.TimeoutError:
        logger.debug("pid=%s ignored SIGTERM for %.1fs; killing", pid, term_timeout_s)
    if os.name == "posix":
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            _close_handles(proc)
            return
        except OSError:
            proc.process.kill()
    else:
        try:
            proc.process.kill()
        except ProcessLookupError:
            _close_handles(proc)
            return
    await proc.process.wait()
    _close_handles(proc)


async def run_to_completion(
    command: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None,
    log_dir: Path,
    name: str,
) -> ProcessResult:
    proc = await start_process(
        command,
        cwd=cwd,
        env=env,
        stdout_path=log_dir / f"{name}.stdout.txt",
        stderr_path=log_dir / f"{name}.stderr.txt",
    )
    try:
        return await wait_process(proc)
    except asyncio.CancelledError:
        await terminate_process(proc)
        raise


def read_tail(path: Path, *, max_chars: int = 2000) -> str:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return text[-max_chars:].strip()


async def _discard_spawn(spawn: asyncio.Future) -> None:
    # The child may already exist when the caller is cancelled mid-spawn.
    try:
        process = await spawn
    except OSError:
        return
    if process.returncode is not None:
        return
    if os.name == "posix":
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError:
            process.kill()
    else:
        process.kill()
    await process.wait()


def _open_sink(path: Path | None) -> IO[str] | None:
    if path is None:
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "w", encoding="utf-8")


def _close_sinks(*handles: IO[str] | None) -> None:
    for handle in handles:
        if handle is not None:
            handle.close()


def _close_handles(proc: ManagedProcess) -> None:
    _close_sinks(proc.stdout_handle, proc.stderr_handle)


__all__ = [
    "ManagedProcess",
    "ProcessError",
    "ProcessResult",
    "merge_env",
    "read_tail",
    "render_command",
    "run_to_completion",
    "start_process",
    "terminate_process",
    "wait_process",
]
