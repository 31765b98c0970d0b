"""HTTP readiness polling for spawned servers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping
import asyncio
import time

import httpx


@dataclass(frozen=True)
class ReadinessResult:
    ready: bool
    elapsed_s: float
    attempts: int
    last_error: str | None = None


ResponseCheck = Callable[[httpx.Response], bool]


def responding(resp: httpx.Response) -> bool:
    return resp.status_code < 500


def grid_ready(resp: httpx.Response) -> bool:
    if resp.status_code != 200:
        return False
    try:
        payload = resp.json()
    except ValueError:
        return False
    if not isinstance(payload, Mapping):
        return False
    value = payload.get("value")
    if isinstance(value, Mapping) and "ready" in value:
        return value.get("ready") is True
    # Selenium 3 hubs answer with a bare status code.
    return payload.get("status") == 0


async def wait_for_readiness_async(
    url: str,
    *,
    check: ResponseCheck = responding,
    timeout_s: float = 60.0,
    poll_interval_s: float = 0.5,
    verify: bool = True,
    alive: Callable[[], bool] | None = None,
) -> ReadinessResult:
    start = time.monotonic()
    attempts = 0
    last_error: str | None = None
    timeout = httpx.Timeout(10.0, connect=5.0)
    async with httpx.AsyncClient(timeout=timeout, verify=verify) as client:
        while True:
            if alive is not None and not alive():
                return ReadinessResult(
                    ready=False,
                    elapsed_s=time.monotonic() - start,
                    attempts=attempts,
                    last_error="process exited before becoming ready",
                )
            attempts += 1
            try:
                resp = await client.get(url)
                if check(resp):
                    return ReadinessResult(ready=True, elapsed_s=time.monotonic() - start, attempts=attempts)
                last_error = f"GET {url} {resp.status_code}"
            except httpx.HTTPError as exc:
                last_error = str(exc) or type(exc).__name__
            if time.monotonic() - start > timeout_s:
                return ReadinessResult(
                    ready=False,
                    elapsed_s=time.monotonic() - start,
                    attempts=attempts,
                    last_error=last_error,
                )
            await asyncio.sleep(poll_interval_s)


__all__ = ["ReadinessResult", "grid_ready", "responding", "wait_for_readiness_async"]
