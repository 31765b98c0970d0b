"""Run-lifecycle orchestrator wiring server, build, driver and test runner."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

from e2e_harness.orchestrate.build import BuildAdapter, ChunkManifest, resolve_chunks
from e2e_harness.orchestrate.config import RunConfig, load_runner_config, resolve_runner_config
from e2e_harness.orchestrate.driver import DriverAdapter, DriverMode, provision_driver, select_driver_mode
from e2e_harness.orchestrate.launcher import RunnerLauncher, RunnerParams
from e2e_harness.orchestrate.locator import locate_specs
from e2e_harness.orchestrate.server import ServerAdapter, local_url
from e2e_harness.orchestrate.state import DriverHandle, RunState, ServerHandle, ShutdownOutcome

logger = logging.getLogger(__name__)

INTERRUPT_EXIT_CODES = {signal.SIGINT: 130, signal.SIGTERM: 143}

SpecLocator = Callable[..., Sequence[Path]]


class E2EOrchestrator:
    def __init__(
        self,
        run_config: RunConfig,
        *,
        server: ServerAdapter,
        build: BuildAdapter,
        driver: DriverAdapter,
        launcher: RunnerLauncher,
        runner_config: Mapping[str, Any] | None = None,
        locate: SpecLocator = locate_specs,
        handle_signals: bool = True,
    ) -> None:
        self._config = run_config
        self._server = server
        self._build = build
        self._driver = driver
        self._launcher = launcher
        self._runner_config = runner_config
        self._runner_config_path: Path | None = None
        self._locate = locate
        self._handle_signals = handle_signals
        self._state = RunState()
        self._interrupt_code: int | None = None

    @property
    def state(self) -> RunState:
        return self._state

    def run_sync(self) -> ShutdownOutcome:
        return asyncio.run(self.run())

    async def run(self) -> ShutdownOutcome:
        self._state = RunState()
        self._interrupt_code = None
        self._runner_config_path = None
        loop = asyncio.get_running_loop()
        flow = asyncio.create_task(self._lifecycle())
        registered = self._register_signal_handlers(loop, flow) if self._handle_signals else []
        # Handlers stay installed until shutdown returns; repeated signals are ignored.
        try:
            try:
                exit_code = await flow
            except asyncio.CancelledError:
                if self._interrupt_code is None:
                    await self.shutdown(1)
                    raise
                exit_code = self._interrupt_code
            outcome = await self.shutdown(exit_code)
        finally:
            for sig in registered:
                loop.remove_signal_handler(sig)
        return outcome if outcome is not None else self._state.outcome

    async def shutdown(self, exit_code: int = 0) -> ShutdownOutcome | None:
        """Stop owned processes once; later calls return the recorded outcome."""
        state = self._state
        if not state.claim_shutdown():
            return state.outcome
        logger.info("Cleaning up running servers")
        handle = state.take_driver_handle()
        if handle is not None:
            logger.info("Closing selenium server")
            await _stop_quietly(handle.stop, "selenium server")
        await _stop_quietly(self._server.stop, "server")
        state.server_handle = None
        elapsed = state.elapsed_seconds()
        logger.info("Execution Time: %s seconds", round(elapsed, 3))
        logger.info("Exiting process with %s", exit_code)
        state.outcome = ShutdownOutcome(exit_code=exit_code, elapsed_seconds=elapsed)
        return state.outcome

    async def _lifecycle(self) -> int:
        config = self._config
        specs = self._locate(config.spec_glob, root=config.project_root)
        logger.info("RUN started command=%s specs=%d", config.command, len(specs))
        if not specs:
            logger.info("No spec files located. Skipping e2e command.")
            return 0
        try:
            runner_config_path = self._resolve_runner_config_path()
            port = await self._server.start(config.options)
            self._state.server_handle = ServerHandle(port=port, stop=self._server.stop)
            logger.info("Server started on port %s.", port)
            url = local_url(port)

            mode = select_driver_mode(self._load_runner_config(), config.chrome_driver)
            logger.info("DRIVER mode=%s", type(mode).__name__)
            manifest, _ = await gather_fail_fast(
                resolve_chunks(config, self._build, assets_url=url),
                self._provision(mode),
            )
            runner = await self._launch(runner_config_path, url, manifest)
            exit_code = await runner.wait()
        except Exception as exc:  # noqa: BLE001
            logger.error(exc)
            logger.debug("Run aborted", exc_info=exc)
            return 1
        logger.info("RUNNER exited with %s", exit_code)
        return exit_code

    async def _provision(self, mode: DriverMode) -> DriverHandle | None:
        handle = await provision_driver(mode, self._driver)
        self._state.driver_handle = handle
        return handle

    async def _launch(self, runner_config_path: Path, url: str, manifest: ChunkManifest):
        config = self._config
        logger.info("Running test runner")
        if config.chrome_driver:
            logger.info("Using provided chromeDriver %s", config.chrome_driver)
        params = RunnerParams(
            local_url=url,
            chunks=manifest.as_runner_payload(),
            app_config=config.app_config,
            chrome_driver=config.chrome_driver,
            options=config.options,
        )
        return await self._launcher.launch(runner_config_path, params)

    def _resolve_runner_config_path(self) -> Path:
        config = self._config
        if self._runner_config_path is None:
            self._runner_config_path = config.runner_config_path or resolve_runner_config(
                config.command, project_root=config.project_root
            )
        return self._runner_config_path

    def _load_runner_config(self) -> Mapping[str, Any]:
        if self._runner_config is None:
            self._runner_config = load_runner_config(self._resolve_runner_config_path())
        return self._runner_config

    def _handle_interrupt(self, sig: int, flow: asyncio.Task) -> None:
        if self._interrupt_code is not None or self._state.shutdown_invoked:
            logger.debug("Ignoring %s; shutdown already in progress", signal.Signals(sig).name)
            return
        self._interrupt_code = INTERRUPT_EXIT_CODES.get(sig, 1)
        logger.warning("SHUTDOWN requested by %s", signal.Signals(sig).name)
        flow.cancel()

    def _register_signal_handlers(self, loop: asyncio.AbstractEventLoop, flow: asyncio.Task) -> list[int]:
        registered: list[int] = []
        for sig in INTERRUPT_EXIT_CODES:
            try:
                loop.add_signal_handler(sig, self._handle_interrupt, sig, flow)
            except (NotImplementedError, RuntimeError):
                continue
            registered.append(sig)
        return registered


async def gather_fail_fast(*aws: Awaitable[Any]) -> list[Any]:
    """Await all of ``aws`` together; the first failure cancels the rest and is raised."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        await _cancel_all(tasks)
        raise
    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            await _cancel_all(pending)
            raise task.exception()
    return [task.result() for task in tasks]


async def _cancel_all(tasks) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def _stop_quietly(stop: Callable[[], Awaitable[None]], label: str) -> None:
    try:
        await stop()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to stop %s: %s", label, exc)


__all__ = ["E2EOrchestrator", "INTERRUPT_EXIT_CODES", "gather_fail_fast"]
