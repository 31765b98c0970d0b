"""Configuration loading and resolution for e2e runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from dotenv import dotenv_values
from omegaconf import OmegaConf
from pydantic import BaseModel, Field, ValidationError, field_validator

from e2e_harness.orchestrate.ports import parse_port_range


DEFAULT_COMMAND = "e2e"
RUNNER_CONFIG_SUFFIXES = (".conf.yaml", ".conf.yml", ".conf.json")


class ConfigurationError(RuntimeError):
    """Raised when a configuration file is missing or cannot be interpreted."""


class HarnessConfig(BaseModel):
    """Toolchain settings: which commands build, serve, drive and run the tests."""

    spec_glob: str = "e2e/**/*.e2e-spec.ts"
    manifest_path: Path = Path("dist/metadata.json")
    output_dir: Path = Path(".e2e")
    env_file: Path | None = None
    port_range: str = "31337-31437"
    server_command: str = "npx http-server {root} --ssl --port {port} --silent"
    server_root: Path = Path("dist")
    server_readiness_timeout_s: float = Field(default=60.0, gt=0)
    build_command: str = "npx webpack --json={stats_path}"
    selenium_install_command: str = "npx selenium-standalone install"
    selenium_start_command: str = "npx selenium-standalone start"
    selenium_readiness_timeout_s: float = Field(default=120.0, gt=0)
    driver_update_command: str = "npx webdriver-manager update --gecko false --standalone false"
    runner_command: str = "npx protractor {runner_config_path} --params.paramsFile={params_path}"
    runner_chrome_driver_flag: str | None = "--chromeDriver"
    app_config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("port_range")
    @classmethod
    def _check_port_range(cls, value: str) -> str:
        parse_port_range(value)
        return value

    def ports(self) -> tuple[int, int]:
        return parse_port_range(self.port_range)


@dataclass(frozen=True)
class RunConfig:
    """Immutable description of one e2e invocation."""

    command: str
    project_root: Path
    spec_glob: str
    manifest_path: Path
    output_dir: Path
    # None: looked up as <project_root>/<command>.conf.* once specs are found.
    runner_config_path: Path | None = None
    skip_build: bool = False
    chrome_driver: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)
    app_config: Mapping[str, Any] = field(default_factory=dict)

    @property
    def log_dir(self) -> Path:
        return self.output_dir / "logs"


def load_harness_config(path: Path | None) -> HarnessConfig:
    if path is None:
        return HarnessConfig()
    resolved = path.expanduser().resolve()
    payload = _load_mapping(resolved)
    try:
        config = HarnessConfig(**payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid harness config: {resolved}\n{exc}") from exc
    if config.env_file is not None:
        env_file = Path(config.env_file).expanduser()
        if not env_file.is_absolute():
            env_file = resolved.parent / env_file
        config.env_file = env_file.resolve()
    return config


def resolve_runner_config(command: str, *, project_root: Path, explicit: Path | None = None) -> Path:
    """Locate the test runner's configuration file for ``command``."""
    if explicit is not None:
        candidate = explicit.expanduser()
        if not candidate.is_absolute():
            candidate = project_root / candidate
        if not candidate.exists():
            raise ConfigurationError(f"Runner config not found: {candidate}")
        return candidate.resolve()
    for suffix in RUNNER_CONFIG_SUFFIXES:
        candidate = project_root / f"{command}{suffix}"
        if candidate.exists():
            return candidate.resolve()
    expected = ", ".join(f"{command}{suffix}" for suffix in RUNNER_CONFIG_SUFFIXES)
    raise ConfigurationError(f"No runner config found in {project_root} (expected one of: {expected}).")


def load_runner_config(path: Path) -> Mapping[str, Any]:
    return _load_mapping(path.expanduser().resolve())


def selenium_address(runner_config: Mapping[str, Any]) -> str | None:
    config = runner_config.get("config")
    if not isinstance(config, Mapping):
        return None
    address = config.get("seleniumAddress")
    if address is None:
        return None
    address = str(address).strip()
    return address or None


def build_run_config(
    harness: HarnessConfig,
    *,
    command: str = DEFAULT_COMMAND,
    project_root: Path,
    runner_config_path: Path | None = None,
    skip_build: bool = False,
    chrome_driver: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> RunConfig:
    root = project_root.expanduser().resolve()
    return RunConfig(
        command=command,
        project_root=root,
        spec_glob=harness.spec_glob,
        manifest_path=_under(root, harness.manifest_path),
        runner_config_path=runner_config_path,
        output_dir=_under(root, harness.output_dir),
        skip_build=skip_build,
        chrome_driver=chrome_driver or None,
        options=dict(options or {}),
        app_config=dict(harness.app_config),
    )


def load_env_file(path: Path | None) -> dict[str, str]:
    if path is None:
        return {}
    if not path.exists():
        raise ConfigurationError(f"env_file not found: {path}")
    values = dotenv_values(path)
    return {key: value for key, value in values.items() if value is not None}


def _under(root: Path, path: Path) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return candidate


def _load_mapping(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config not found: {path}")
    if path.suffix not in {".yaml", ".yml", ".json"}:
        raise ConfigurationError(f"Unsupported config format: {path} (expected .yaml/.yml/.json)")
    try:
        data = OmegaConf.to_container(OmegaConf.load(path), resolve=True)
    except Exception as exc:  # pragma: no cover - OmegaConf error types vary
        raise ConfigurationError(f"Failed to load config: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config must be a mapping at top level: {path}")
    return data


__all__ = [
    "ConfigurationError",
    "DEFAULT_COMMAND",
    "HarnessConfig",
    "RunConfig",
    "build_run_config",
    "load_env_file",
    "load_harness_config",
    "load_runner_config",
    "resolve_runner_config",
    "selenium_address",
]
