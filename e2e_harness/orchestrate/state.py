"""Session state and artifact persistence for a single e2e run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping
import json
import os
import time
import uuid


StopCallable = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class ServerHandle:
    port: int
    stop: StopCallable


@dataclass(frozen=True)
class DriverHandle:
    stop: StopCallable


@dataclass(frozen=True)
class ShutdownOutcome:
    exit_code: int
    elapsed_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunState:
    """Mutable state owned by one orchestrator instance for one run."""

    started_at: float = field(default_factory=time.monotonic)
    server_handle: ServerHandle | None = None
    driver_handle: DriverHandle | None = None
    shutdown_invoked: bool = False
    outcome: ShutdownOutcome | None = None

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def claim_shutdown(self) -> bool:
        """Flip ``shutdown_invoked`` and report whether this caller won it."""
        if self.shutdown_invoked:
            return False
        self.shutdown_invoked = True
        return True

    def take_driver_handle(self) -> DriverHandle | None:
        handle = self.driver_handle
        self.driver_handle = None
        return handle


def write_json_atomic(path: Path, payload: Mapping[str, Any] | list[Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp-{uuid.uuid4().hex}")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


__all__ = [
    "DriverHandle",
    "RunState",
    "ServerHandle",
    "ShutdownOutcome",
    "StopCallable",
    "write_json_atomic",
]
