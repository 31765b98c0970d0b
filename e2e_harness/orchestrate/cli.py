"""CLI entrypoint for e2e runs."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from e2e_harness.orchestrate.build import CommandBuildAdapter
from e2e_harness.orchestrate.config import (
    DEFAULT_COMMAND,
    ConfigurationError,
    HarnessConfig,
    RunConfig,
    build_run_config,
    load_env_file,
    load_harness_config,
    resolve_runner_config,
)
from e2e_harness.orchestrate.console import setup_logging
from e2e_harness.orchestrate.driver import CommandDriverAdapter
from e2e_harness.orchestrate.launcher import CommandRunnerLauncher
from e2e_harness.orchestrate.overrides import load_run_options
from e2e_harness.orchestrate.run import E2EOrchestrator
from e2e_harness.orchestrate.server import CommandServerAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandAdapters:
    server: CommandServerAdapter
    build: CommandBuildAdapter
    driver: CommandDriverAdapter
    launcher: CommandRunnerLauncher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="e2e-harness",
        description="Build the app, serve it, provision a browser driver and run the e2e specs.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default=DEFAULT_COMMAND,
        help="Command name used to locate the runner config (default: %(default)s).",
    )
    parser.add_argument("-c", "--config", type=Path, help="Harness config YAML/JSON (toolchain commands and paths).")
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project directory containing the app and e2e specs (default: current directory).",
    )
    parser.add_argument(
        "--runner-config",
        type=Path,
        help="Explicit test-runner config file (default: COMMAND.conf.yaml/.yml/.json in the project root).",
    )
    parser.add_argument(
        "--build",
        dest="build",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Build the app before running (default: enabled). --no-build reuses the persisted manifest.",
    )
    parser.add_argument("--chrome-driver", help="Use this driver binary instead of provisioning one.")
    parser.add_argument(
        "--options", type=Path, help="YAML/JSON file of pass-through options for the build and runner."
    )
    parser.add_argument(
        "--option",
        action="append",
        help="Pass-through option override as dotted KEY=VALUE, applied over --options (repeatable).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging.")
    return parser


def build_command_adapters(
    harness: HarnessConfig, run_config: RunConfig, *, env: Mapping[str, str] | None = None
) -> CommandAdapters:
    root = run_config.project_root
    server_root = harness.server_root if harness.server_root.is_absolute() else root / harness.server_root
    return CommandAdapters(
        server=CommandServerAdapter(
            harness.server_command,
            root=server_root,
            project_root=root,
            log_dir=run_config.log_dir,
            port_range=harness.ports(),
            readiness_timeout_s=harness.server_readiness_timeout_s,
            env=env,
        ),
        build=CommandBuildAdapter(
            harness.build_command,
            project_root=root,
            output_dir=run_config.output_dir,
            env=env,
        ),
        driver=CommandDriverAdapter(
            install_command=harness.selenium_install_command,
            start_command=harness.selenium_start_command,
            update_command=harness.driver_update_command,
            project_root=root,
            log_dir=run_config.log_dir,
            readiness_timeout_s=harness.selenium_readiness_timeout_s,
            env=env,
        ),
        launcher=CommandRunnerLauncher(
            harness.runner_command,
            project_root=root,
            output_dir=run_config.output_dir,
            chrome_driver_flag=harness.runner_chrome_driver_flag,
            env=env,
        ),
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        options = load_run_options(options_file=args.options, overrides=args.option)
    except ValueError as exc:
        parser.error(str(exc))

    project_root = args.project_root.expanduser().resolve()
    try:
        harness = load_harness_config(args.config)
        runner_config_path = None
        if args.runner_config is not None:
            runner_config_path = resolve_runner_config(
                args.command, project_root=project_root, explicit=args.runner_config
            )
        env = load_env_file(harness.env_file)
    except ConfigurationError as exc:
        parser.error(str(exc))

    run_config = build_run_config(
        harness,
        command=args.command,
        project_root=project_root,
        runner_config_path=runner_config_path,
        skip_build=not args.build,
        chrome_driver=args.chrome_driver,
        options=options,
    )
    adapters = build_command_adapters(harness, run_config, env=env)
    orchestrator = E2EOrchestrator(
        run_config,
        server=adapters.server,
        build=adapters.build,
        driver=adapters.driver,
        launcher=adapters.launcher,
    )
    try:
        outcome = orchestrator.run_sync()
    except KeyboardInterrupt:
        logger.warning("Run interrupted by user.")
        return 130
    return outcome.exit_code


__all__ = ["CommandAdapters", "build_command_adapters", "build_parser", "main"]


if __name__ == "__main__":
    raise SystemExit(main())
