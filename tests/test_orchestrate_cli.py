import logging
from pathlib import Path

import pytest
from rich.console import Console

from e2e_harness.orchestrate import cli
from e2e_harness.orchestrate.console import RunLogHandler, format_log_message, setup_logging
from e2e_harness.orchestrate.overrides import load_run_options
from e2e_harness.orchestrate.state import ShutdownOutcome


class StubOrchestrator:
    instances: list["StubOrchestrator"] = []
    exit_code = 0

    def __init__(self, run_config, *, server, build, driver, launcher) -> None:
        self.run_config = run_config
        self.server = server
        self.build = build
        self.driver = driver
        self.launcher = launcher
        StubOrchestrator.instances.append(self)

    def run_sync(self) -> ShutdownOutcome:
        return ShutdownOutcome(exit_code=self.exit_code, elapsed_seconds=0.1)


@pytest.fixture
def stub_orchestrator(monkeypatch):
    StubOrchestrator.instances = []
    StubOrchestrator.exit_code = 0
    monkeypatch.setattr(cli, "E2EOrchestrator", StubOrchestrator)
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    return StubOrchestrator


def _project(tmp_path: Path) -> Path:
    (tmp_path / "e2e.conf.yaml").write_text("config: {}\n", encoding="utf-8")
    return tmp_path


def test_load_run_options_overrides_file_values(tmp_path: Path) -> None:
    options_file = tmp_path / "options.yaml"
    options_file.write_text("browser:\n  name: chrome\n  headless: false\nretries: 1\n", encoding="utf-8")

    options = load_run_options(
        options_file=options_file,
        overrides=["retries=2", "browser.headless=true", "suite.tags=[smoke, login]"],
    )

    assert options == {
        "browser": {"name": "chrome", "headless": True},
        "retries": 2,
        "suite": {"tags": ["smoke", "login"]},
    }


def test_load_run_options_without_inputs() -> None:
    assert load_run_options(options_file=None, overrides=None) == {}


def test_load_run_options_types_values() -> None:
    options = load_run_options(options_file=None, overrides=["env=ci", "timeout=0.5", "proxy=null", "debug=False"])

    assert options == {"env": "ci", "timeout": 0.5, "proxy": None, "debug": False}


@pytest.mark.parametrize(
    ("body", "name", "message"),
    [
        (None, "missing.yaml", "not found"),
        ("- a\n- b\n", "list.yaml", "must contain a mapping"),
        ("a = 1\n", "options.toml", "must be .yaml/.yml/.json"),
    ],
)
def test_load_run_options_rejects_bad_files(tmp_path: Path, body, name, message) -> None:
    path = tmp_path / name
    if body is not None:
        path.write_text(body, encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        load_run_options(options_file=path, overrides=None)


@pytest.mark.parametrize(("override", "message"), [("novalue", "KEY=VALUE"), ("=x", "empty key"), ("a..b=1", "empty key")])
def test_load_run_options_rejects_bad_overrides(override, message) -> None:
    with pytest.raises(ValueError, match=message):
        load_run_options(options_file=None, overrides=[override])


def test_main_wires_run_config(tmp_path: Path, stub_orchestrator) -> None:
    project = _project(tmp_path)
    stub_orchestrator.exit_code = 3

    exit_code = cli.main(
        [
            "--project-root",
            str(project),
            "--no-build",
            "--chrome-driver",
            "/usr/bin/chromedriver",
            "--option",
            "env=ci",
        ]
    )

    assert exit_code == 3
    (instance,) = stub_orchestrator.instances
    run_config = instance.run_config
    assert run_config.command == "e2e"
    assert run_config.skip_build is True
    assert run_config.chrome_driver == "/usr/bin/chromedriver"
    assert run_config.options == {"env": "ci"}
    assert run_config.runner_config_path is None
    assert run_config.output_dir == project.resolve() / ".e2e"


def test_main_resolves_explicit_runner_config(tmp_path: Path, stub_orchestrator) -> None:
    (tmp_path / "cfg").mkdir()
    (tmp_path / "cfg" / "smoke.yaml").write_text("config: {}\n", encoding="utf-8")

    cli.main(["smoke", "--project-root", str(tmp_path), "--runner-config", "cfg/smoke.yaml"])

    run_config = stub_orchestrator.instances[0].run_config
    assert run_config.command == "smoke"
    assert run_config.runner_config_path == (tmp_path / "cfg" / "smoke.yaml").resolve()


def test_main_applies_harness_config(tmp_path: Path, stub_orchestrator) -> None:
    project = _project(tmp_path)
    config_path = tmp_path / "harness.yaml"
    config_path.write_text('spec_glob: "specs/*.ts"\nenv_file: ci.env\n', encoding="utf-8")
    (tmp_path / "ci.env").write_text("TOKEN=abc\n", encoding="utf-8")

    exit_code = cli.main(["--project-root", str(project), "--config", str(config_path)])

    assert exit_code == 0
    instance = stub_orchestrator.instances[0]
    assert instance.run_config.spec_glob == "specs/*.ts"
    assert instance.run_config.skip_build is False


def test_main_missing_explicit_runner_config_exits_2(tmp_path: Path, stub_orchestrator, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--project-root", str(tmp_path), "--runner-config", "nope.conf.yaml"])

    assert excinfo.value.code == 2
    assert "Runner config not found" in capsys.readouterr().err
    assert stub_orchestrator.instances == []


def test_main_without_specs_or_runner_config_exits_0(tmp_path: Path, monkeypatch, caplog) -> None:
    caplog.set_level(logging.INFO)
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)

    exit_code = cli.main(["--project-root", str(tmp_path)])

    assert exit_code == 0
    messages = [r.getMessage() for r in caplog.records]
    assert "No spec files located. Skipping e2e command." in messages
    assert "Exiting process with 0" in messages
    assert not (tmp_path / ".e2e").exists()


@pytest.mark.parametrize("extra", [["--options", "missing.yaml"], ["--option", "novalue"]])
def test_main_invalid_options_exits_2(tmp_path: Path, stub_orchestrator, extra) -> None:
    project = _project(tmp_path)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--project-root", str(project), *extra])

    assert excinfo.value.code == 2


def test_command_adapters_use_harness_settings(tmp_path: Path) -> None:
    harness = cli.HarnessConfig(server_root=Path("build/www"))
    run_config = cli.build_run_config(
        harness, project_root=tmp_path, runner_config_path=tmp_path / "e2e.conf.yaml"
    )

    adapters = cli.build_command_adapters(harness, run_config, env={"TOKEN": "abc"})

    assert adapters.build.stats_path == run_config.output_dir / "build-stats.json"
    assert adapters.launcher.params_path == run_config.output_dir / "runner-params.json"


def test_format_log_message_styles_prefix() -> None:
    text = format_log_message("BUILD complete chunks=3 duration=1.0s")

    styles = {(span.start, span.end, str(span.style)) for span in text.spans}
    assert (0, 5, "bold magenta") in styles
    assert (6, 14, "bold green") in styles
    assert format_log_message("Selenium server is ready.").spans == []


def test_setup_logging_replaces_previous_handler() -> None:
    root = logging.getLogger()
    previous_level = root.level
    console = Console(file=None, force_terminal=False)
    try:
        first = setup_logging(console=console)
        second = setup_logging(verbose=True, console=console)

        handlers = [h for h in root.handlers if isinstance(h, RunLogHandler)]
        assert handlers == [second]
        assert first not in root.handlers
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            if isinstance(handler, RunLogHandler):
                root.removeHandler(handler)
        root.setLevel(previous_level)


def test_setup_logging_default_console_writes_to_stderr() -> None:
    root = logging.getLogger()
    previous_level = root.level
    try:
        handler = setup_logging()

        assert handler.console.stderr is True
        assert handler._log_render.show_path is False
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)
