from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

from typer.testing import CliRunner

from fe_pilot.cli import app
from fe_pilot.config import PilotConfig
from fe_pilot.errors import FormNotFound
from fe_pilot.forms.discovery import FormSchema
from fe_pilot.forms.models import FormReportSummary, FormTestMode, FormTestReport
from fe_pilot.orchestrator.models import ReportStatus, SessionState

SCENARIO = """
name: Login
url: https://app.test/login
steps:
  - action: navigate
    url: "{{ url }}"
  - action: type
    selector: "#user"
    value: "{{ credentials.username }}"
"""


def _base_config(tmp_path: Path) -> PilotConfig:
    return PilotConfig.model_validate(
        {
            "output_dir": str(tmp_path / "results"),
            "exploration": {"sessions_dir": str(tmp_path / "sessions")},
        }
    )


def _capture_builder(name: str, calls: dict[str, list[object]]):
    def _factory(*args: object) -> str:
        calls.setdefault(name, []).append(args)
        return f"{name}-stub"

    return _factory


def _make_runner(state: dict[str, object], status: ReportStatus):
    class DummyRunner:
        def __init__(self, config, driver, notifier, **kwargs):
            state.update(config=config, driver=driver, notifier=notifier, **kwargs)

        def run(self, scenario):
            state["scenario"] = scenario
            return SimpleNamespace(status=status, report_path=Path("report-1.json"))

    return DummyRunner


def _make_explorer(state: dict[str, object], outcome: SessionState):
    class DummyExplorer:
        def __init__(self, config, driver, channel, notifier, **kwargs):
            state.update(config=config, driver=driver, channel=channel, notifier=notifier, **kwargs)

        def explore(self, url, goal):
            state["url"] = url
            state["goal"] = goal
            return SimpleNamespace(state=outcome, failure_reason="Decision-maker reported stuck")

    return DummyExplorer


def _patch_builders(monkeypatch, calls: dict[str, list[object]]) -> None:
    for name in ("build_driver", "build_notifier", "build_channel", "build_advisor"):
        monkeypatch.setattr(f"fe_pilot.cli.{name}", _capture_builder(name, calls))


def test_run_command_success(monkeypatch, tmp_path):
    runner = CliRunner()
    scenario_path = tmp_path / "login.yaml"
    scenario_path.write_text(SCENARIO)
    config_path = tmp_path / "pilot.yaml"
    config_path.write_text("executor: {}\n")
    env_file = tmp_path / "vars.env"
    env_file.write_text("FE_PILOT_OUTPUT_DIR=elsewhere\n")

    config = _base_config(tmp_path)
    load_args: dict[str, object] = {}

    def fake_load_config(path, *, env_file=None, **overrides):  # type: ignore[no-untyped-def]
        load_args["path"] = path
        load_args["env_file"] = env_file
        load_args["overrides"] = overrides
        return config

    monkeypatch.setattr("fe_pilot.cli.load_config", fake_load_config)
    calls: dict[str, list[object]] = {}
    _patch_builders(monkeypatch, calls)
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.ScenarioRunner", _make_runner(state, ReportStatus.PASSED))

    result = runner.invoke(
        app,
        [
            "run",
            str(scenario_path),
            "--config",
            str(config_path),
            "--env-file",
            str(env_file),
            "--output",
            str(tmp_path / "out"),
            "--credentials",
            "qa:secret",
            "--headed",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Loaded scenario: Login (2 steps)" in result.stdout
    assert "Report saved: report-1.json" in result.stdout

    assert load_args["path"] == config_path
    assert load_args["env_file"] == env_file
    assert load_args["overrides"] == {"output_dir": str(tmp_path / "out")}

    scenario = state["scenario"]
    assert scenario.steps[1].value == "qa"
    assert state["config"].browser.headless is False
    assert calls["build_driver"][0][0].headless is False
    assert state["driver"] == "build_driver-stub"
    assert state["notifier"] == "build_notifier-stub"
    assert state["output_dir"] == config.output_dir


def test_run_command_failure(monkeypatch, tmp_path):
    runner = CliRunner()
    scenario_path = tmp_path / "login.yaml"
    scenario_path.write_text(SCENARIO)

    monkeypatch.setattr("fe_pilot.cli.load_config", lambda *_, **__: _base_config(tmp_path))
    _patch_builders(monkeypatch, {})
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.ScenarioRunner", _make_runner(state, ReportStatus.FAILED))

    result = runner.invoke(app, ["run", str(scenario_path)])

    assert result.exit_code == 1
    assert "scenario" in state


def test_run_command_reports_invalid_scenario(monkeypatch, tmp_path):
    runner = CliRunner()
    scenario_path = tmp_path / "broken.yaml"
    scenario_path.write_text("name: Broken\nurl: https://app.test/\nsteps:\n  - action: navigate\n")
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.ScenarioRunner", _make_runner(state, ReportStatus.PASSED))

    result = runner.invoke(app, ["run", str(scenario_path)])

    assert result.exit_code == 1
    assert "Scenario validation failed" in result.output
    assert "Step 1: navigate needs url" in result.output
    assert state == {}


def test_run_command_rejects_malformed_credentials(tmp_path):
    scenario_path = tmp_path / "login.yaml"
    scenario_path.write_text(SCENARIO)

    result = CliRunner().invoke(app, ["run", str(scenario_path), "--credentials", "nopassword"])

    assert result.exit_code == 2


def test_quick_test_command_builds_scenario(monkeypatch, tmp_path):
    monkeypatch.setattr("fe_pilot.cli.load_config", lambda *_, **__: _base_config(tmp_path))
    _patch_builders(monkeypatch, {})
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.ScenarioRunner", _make_runner(state, ReportStatus.WARNING))

    result = CliRunner().invoke(app, ["test", "https://app.test/", "--headless"])

    assert result.exit_code == 0
    scenario = state["scenario"]
    assert scenario.name == "Quick Test"
    assert [step.action.value for step in scenario.steps] == ["navigate", "screenshot", "wait"]
    assert scenario.steps[0].observe is True
    assert state["config"].browser.headless is True


def test_explore_command_success(monkeypatch, tmp_path):
    config = _base_config(tmp_path)
    load_args: dict[str, object] = {}

    def fake_load_config(path, *, env_file=None, **overrides):  # type: ignore[no-untyped-def]
        load_args["overrides"] = overrides
        return config

    monkeypatch.setattr("fe_pilot.cli.load_config", fake_load_config)
    calls: dict[str, list[object]] = {}
    _patch_builders(monkeypatch, calls)
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.Explorer", _make_explorer(state, SessionState.COMPLETED))

    result = CliRunner().invoke(
        app,
        [
            "explore",
            "https://app.test/",
            "--goal",
            "reach URL containing /dashboard",
            "--max-steps",
            "20",
            "--decision-timeout",
            "60",
            "--credentials",
            "qa:secret",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Goal achieved." in result.stdout
    assert "action.json" in result.stdout
    assert load_args["overrides"] == {
        "exploration": {"max_steps": 20},
        "exchange": {"decision_timeout": 60.0},
    }
    session_dir = state["session_dir"]
    assert session_dir.parent == config.exploration.sessions_dir
    assert session_dir.name.startswith("exploration-")
    assert calls["build_channel"] == [(config.exchange, session_dir)]
    assert state["advisor"] == "build_advisor-stub"
    assert state["url"] == "https://app.test/"
    assert state["goal"].objective == "reach URL containing /dashboard"
    assert state["goal"].credentials.username == "qa"


def test_explore_command_failure(monkeypatch, tmp_path):
    monkeypatch.setattr("fe_pilot.cli.load_config", lambda *_, **__: _base_config(tmp_path))
    _patch_builders(monkeypatch, {})
    monkeypatch.setattr("fe_pilot.cli.Explorer", _make_explorer({}, SessionState.FAILED))

    result = CliRunner().invoke(app, ["explore", "https://app.test/", "--goal", "checkout"])

    assert result.exit_code == 1
    assert "Exploration failed: Decision-maker reported stuck" in result.output


def _make_form_tester(state: dict[str, object], outcome):
    class DummyFormTester:
        def __init__(self, config, driver, notifier, **kwargs):
            state.update(config=config, driver=driver, notifier=notifier, **kwargs)

        def analyze(self, url, credentials=None):
            state.update(url=url, credentials=credentials)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        def test(self, url, mode=None, credentials=None):
            state.update(url=url, mode=mode, credentials=credentials)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    return DummyFormTester


def test_form_analyze_prints_and_saves_schema(monkeypatch, tmp_path):
    schema = FormSchema.model_validate(
        {
            "url": "https://app.test/signup",
            "forms": [
                {
                    "id": "signup",
                    "selector": "#signup",
                    "fields": [
                        {
                            "id": "email",
                            "type": "email",
                            "selector": "#email",
                            "label": "Email",
                            "required": True,
                            "validation_rules": [{"type": "required"}, {"type": "email"}],
                        }
                    ],
                    "submit_button": {"text": "Sign up", "selector": "#go"},
                }
            ],
        }
    )
    monkeypatch.setattr("fe_pilot.cli.load_config", lambda *_, **__: _base_config(tmp_path))
    _patch_builders(monkeypatch, {})
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.FormTester", _make_form_tester(state, schema))
    target = tmp_path / "schemas" / "signup.json"

    result = CliRunner().invoke(
        app,
        [
            "form",
            "analyze",
            "https://app.test/signup",
            "--output",
            str(target),
            "--credentials",
            "qa:secret",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Found 1 form(s) on https://app.test/signup" in result.stdout
    assert "Email [email required] #email rules: required, email" in result.stdout
    assert state["credentials"].username == "qa"
    assert state["advisor"] == "build_advisor-stub"
    assert json.loads(target.read_text())["forms"][0]["id"] == "signup"


def test_form_analyze_without_forms_exits_with_error(monkeypatch, tmp_path):
    monkeypatch.setattr("fe_pilot.cli.load_config", lambda *_, **__: _base_config(tmp_path))
    _patch_builders(monkeypatch, {})
    monkeypatch.setattr(
        "fe_pilot.cli.FormTester",
        _make_form_tester({}, FormNotFound("No forms found on https://app.test/")),
    )

    result = CliRunner().invoke(app, ["form", "analyze", "https://app.test/"])

    assert result.exit_code == 1
    assert "Form analysis failed: No forms found" in result.output


def test_form_test_passes_mode_and_ai_mode(monkeypatch, tmp_path):
    load_args: dict[str, object] = {}

    def fake_load_config(path, *, env_file=None, **overrides):  # type: ignore[no-untyped-def]
        load_args["overrides"] = overrides
        return _base_config(tmp_path)

    monkeypatch.setattr("fe_pilot.cli.load_config", fake_load_config)
    _patch_builders(monkeypatch, {})
    report = FormTestReport(
        url="https://app.test/signup",
        mode=FormTestMode.FULL,
        report_path=Path("form-report-1.json"),
    )
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.FormTester", _make_form_tester(state, report))

    result = CliRunner().invoke(
        app,
        [
            "form",
            "test",
            "https://app.test/signup",
            "--mode",
            "full",
            "--ai-mode",
            "always",
            "--output",
            str(tmp_path / "out"),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Report saved: form-report-1.json" in result.stdout
    assert state["mode"] == FormTestMode.FULL
    assert load_args["overrides"] == {
        "output_dir": str(tmp_path / "out"),
        "obstacles": {"ai_mode": "always"},
    }


def test_form_test_exits_with_error_on_critical_issues(monkeypatch, tmp_path):
    monkeypatch.setattr("fe_pilot.cli.load_config", lambda *_, **__: _base_config(tmp_path))
    _patch_builders(monkeypatch, {})
    report = FormTestReport(
        url="https://app.test/signup",
        mode=FormTestMode.STANDARD,
        summary=FormReportSummary(critical_issues=1),
    )
    state: dict[str, object] = {}
    monkeypatch.setattr("fe_pilot.cli.FormTester", _make_form_tester(state, report))

    result = CliRunner().invoke(app, ["form", "test", "https://app.test/signup"])

    assert result.exit_code == 1
    assert state["mode"] is None


def test_form_test_rejects_unknown_mode():
    result = CliRunner().invoke(app, ["form", "test", "https://app.test/", "--mode", "thorough"])

    assert result.exit_code == 2
