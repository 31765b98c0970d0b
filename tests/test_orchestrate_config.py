from pathlib import Path

import pytest

from e2e_harness.orchestrate.config import (
    ConfigurationError,
    HarnessConfig,
    build_run_config,
    load_env_file,
    load_harness_config,
    load_runner_config,
    resolve_runner_config,
    selenium_address,
)


def test_harness_config_defaults() -> None:
    config = load_harness_config(None)

    assert config.spec_glob == "e2e/**/*.e2e-spec.ts"
    assert config.manifest_path == Path("dist/metadata.json")
    assert config.ports() == (31337, 31437)
    assert "{port}" in config.server_command


def test_harness_config_env_file_resolves_relative_to_config(tmp_path: Path) -> None:
    configs_dir = tmp_path / "configs"
    configs_dir.mkdir()
    config_path = configs_dir / "harness.yaml"
    config_path.write_text(
        """
spec_glob: "tests/**/*.spec.ts"
port_range: "9000-9010"
env_file: ci.env
server_readiness_timeout_s: 5
app_config:
  apiUrl: https://api.example.test
""".lstrip(),
        encoding="utf-8",
    )

    config = load_harness_config(config_path)

    assert config.spec_glob == "tests/**/*.spec.ts"
    assert config.ports() == (9000, 9010)
    assert config.env_file == (configs_dir / "ci.env").resolve()
    assert config.server_readiness_timeout_s == 5
    assert config.app_config == {"apiUrl": "https://api.example.test"}


@pytest.mark.parametrize(
    "body",
    [
        "port_range: \"abc\"\n",
        "port_range: \"0-10\"\n",
        "server_readiness_timeout_s: 0\n",
        "- not\n- a mapping\n",
    ],
)
def test_harness_config_rejects_invalid_values(tmp_path: Path, body: str) -> None:
    config_path = tmp_path / "harness.yaml"
    config_path.write_text(body, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_harness_config(config_path)


def test_harness_config_rejects_unknown_format(tmp_path: Path) -> None:
    config_path = tmp_path / "harness.toml"
    config_path.write_text("spec_glob = 'x'\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Unsupported config format"):
        load_harness_config(config_path)


def test_resolve_runner_config_by_command(tmp_path: Path) -> None:
    (tmp_path / "smoke.conf.json").write_text("{}", encoding="utf-8")

    assert resolve_runner_config("smoke", project_root=tmp_path) == (tmp_path / "smoke.conf.json").resolve()


def test_resolve_runner_config_explicit_relative(tmp_path: Path) -> None:
    (tmp_path / "cfg").mkdir()
    (tmp_path / "cfg" / "runner.yaml").write_text("config: {}\n", encoding="utf-8")

    resolved = resolve_runner_config("e2e", project_root=tmp_path, explicit=Path("cfg/runner.yaml"))

    assert resolved == (tmp_path / "cfg" / "runner.yaml").resolve()


def test_resolve_runner_config_missing(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="e2e.conf.yaml"):
        resolve_runner_config("e2e", project_root=tmp_path)
    with pytest.raises(ConfigurationError, match="Runner config not found"):
        resolve_runner_config("e2e", project_root=tmp_path, explicit=Path("nope.yaml"))


def test_runner_config_selenium_address(tmp_path: Path) -> None:
    path = tmp_path / "e2e.conf.yaml"
    path.write_text("config:\n  seleniumAddress: http://localhost:4444/wd/hub\n", encoding="utf-8")

    runner_config = load_runner_config(path)

    assert selenium_address(runner_config) == "http://localhost:4444/wd/hub"
    assert selenium_address({"config": {}}) is None
    assert selenium_address({}) is None


def test_empty_runner_config_is_empty_mapping(tmp_path: Path) -> None:
    path = tmp_path / "e2e.conf.yaml"
    path.write_text("", encoding="utf-8")

    assert load_runner_config(path) == {}


def test_build_run_config_resolves_paths_under_project_root(tmp_path: Path) -> None:
    harness = HarnessConfig(output_dir=Path("/abs/out"), app_config={"a": 1})

    run_config = build_run_config(
        harness,
        command="e2e",
        project_root=tmp_path,
        runner_config_path=tmp_path / "e2e.conf.yaml",
        skip_build=True,
        chrome_driver="",
        options={"x": 1},
    )

    assert run_config.project_root == tmp_path.resolve()
    assert run_config.manifest_path == tmp_path.resolve() / "dist" / "metadata.json"
    assert run_config.output_dir == Path("/abs/out")
    assert run_config.log_dir == Path("/abs/out/logs")
    assert run_config.skip_build is True
    assert run_config.chrome_driver is None
    assert run_config.options == {"x": 1}
    assert run_config.app_config == {"a": 1}


def test_load_env_file(tmp_path: Path) -> None:
    env_path = tmp_path / "ci.env"
    env_path.write_text("API_TOKEN=abc\n# comment\nEMPTY\nQUOTED=\"x y\"\n", encoding="utf-8")

    assert load_env_file(None) == {}
    assert load_env_file(env_path) == {"API_TOKEN": "abc", "QUOTED": "x y"}
    with pytest.raises(ConfigurationError, match="env_file not found"):
        load_env_file(tmp_path / "missing.env")
