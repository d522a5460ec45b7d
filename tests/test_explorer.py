import json
from pathlib import Path

from fakes import CollectingNotifier, FakeDriver

from fe_pilot.config import PilotConfig
from fe_pilot.exchange.files import FileExchange
from fe_pilot.exchange.mock import ScriptedDecisionChannel
from fe_pilot.obstacles.detection import OBSTACLE_DETECTION_SCRIPT
from fe_pilot.orchestrator.explorer import Explorer, new_session_dir
from fe_pilot.orchestrator.models import (
    ExplorationGoal,
    SessionState,
    SessionStatus,
    TerminalReason,
)

START = "https://app.test/"


def build_config(**exploration) -> PilotConfig:
    return PilotConfig.model_validate(
        {
            "exploration": {"max_steps": 10, **exploration},
            "obstacles": {"settle_delay": 0},
            "notifications": {"channel": "console"},
        }
    )


def login_page() -> FakeDriver:
    driver = FakeDriver(title="App")
    driver.add("#login-link", tag="a")
    driver.add("#email")
    driver.add("#password", input_type="password")
    driver.add("#submit", tag="button", on_click=lambda d: d.set_url("https://app.test/dashboard"))
    return driver


def explore(driver, decisions, tmp_path: Path, goal: str = "reach URL containing /dashboard", **config):
    channel = decisions if not isinstance(decisions, list) else ScriptedDecisionChannel(decisions)
    notifier = CollectingNotifier()
    explorer = Explorer(
        build_config(**config),
        driver,
        channel,
        notifier,
        session_dir=tmp_path / "session",
    )
    max_steps = config.get("max_steps", 10)
    session = explorer.explore(
        START,
        ExplorationGoal(
            objective=goal,
            max_steps=max_steps,
            max_checkpoints=config.get("max_checkpoints"),
        ),
    )
    return session, channel, notifier


def test_dashboard_login_flow_completes(tmp_path: Path):
    driver = login_page()
    decisions = [
        {
            "decision": "continue",
            "reasoning": "Log in with the test account",
            "actions": [
                {"action": "click", "selector": "#login-link"},
                {"action": "type", "selector": "#email", "value": "qa@app.test"},
                {"action": "type", "selector": "#password", "value": "hunter2"},
                {"action": "click", "selector": "#submit"},
            ],
            "stopOnError": True,
        },
        {"decision": "goal_achieved", "reasoning": "Dashboard reached"},
    ]

    session, channel, notifier = explore(driver, decisions, tmp_path)

    assert session.state == SessionState.COMPLETED
    assert session.status == SessionStatus.COMPLETED
    assert session.terminal_reason == TerminalReason.GOAL_ACHIEVED
    assert session.steps_taken == 4
    assert len(channel.published) == 2
    after_batch = channel.published[1].observation
    assert after_batch.url_changed is True
    assert "/dashboard" in after_batch.current_url
    assert len(session.observations) == 2
    assert driver.navigations == [START]
    assert driver.started and driver.stopped
    types = notifier.types()
    assert types[0] == "session_started"
    assert types[-1] == "session_finished"
    assert types.count("checkpoint") == 2
    assert channel.saved_sessions[-1].state == SessionState.COMPLETED


def test_stop_on_error_skips_rest_of_batch(tmp_path: Path):
    driver = login_page()
    decisions = [
        {
            "decision": "continue",
            "actions": [
                {"action": "click", "selector": "#does-not-exist"},
                {"action": "click", "selector": "#login-link"},
            ],
        },
        {"decision": "abort", "reasoning": "Login link is broken"},
    ]

    session, channel, _ = explore(driver, decisions, tmp_path)

    assert session.steps_taken == 1
    assert ("click", "#login-link") not in driver.calls
    failures = channel.published[1].observation.failures
    assert [failure.error_type for failure in failures] == ["ElementNotFound"]
    assert session.state == SessionState.FAILED
    assert session.terminal_reason == TerminalReason.DECISION_ABORT
    assert session.failure_reason == "Login link is broken"


def test_batch_continues_after_failure_when_not_stopping(tmp_path: Path):
    driver = login_page()
    decisions = [
        {
            "decision": "continue",
            "stopOnError": False,
            "actions": [
                {"action": "click", "selector": "#does-not-exist"},
                {"action": "click", "selector": "#login-link"},
            ],
        },
        {"decision": "stuck", "reasoning": "Nothing else to try"},
    ]

    session, channel, _ = explore(driver, decisions, tmp_path)

    assert session.steps_taken == 2
    assert ("click", "#login-link") in driver.calls
    assert len(channel.published[1].observation.failures) == 1
    assert session.terminal_reason == TerminalReason.DECISION_STUCK


def test_step_budget_truncates_batch_and_exhausts(tmp_path: Path):
    driver = login_page()
    decisions = [
        {
            "decision": "continue",
            "actions": [
                {"action": "click", "selector": "#login-link"},
                {"action": "type", "selector": "#email", "value": "a"},
                {"action": "type", "selector": "#password", "value": "b"},
            ],
        },
        {"decision": "continue", "action": {"action": "click", "selector": "#submit"}},
    ]

    session, channel, _ = explore(driver, decisions, tmp_path, max_steps=2)

    assert session.steps_taken == 2
    assert session.skipped_actions == 1
    assert channel.published[1].errors
    assert ("click", "#submit") not in driver.calls
    assert session.state == SessionState.FAILED
    assert session.terminal_reason == TerminalReason.BUDGET_EXHAUSTED


def test_checkpoint_budget(tmp_path: Path):
    decisions = [{"decision": "continue"}] * 5

    session, channel, _ = explore(login_page(), decisions, tmp_path, max_checkpoints=2)

    assert len(channel.published) == 2
    assert session.terminal_reason == TerminalReason.BUDGET_EXHAUSTED


def test_empty_batch_republishes_fresh_checkpoint(tmp_path: Path):
    decisions = [{"decision": "continue"}, {"decision": "goal_achieved"}]

    session, channel, _ = explore(login_page(), decisions, tmp_path)

    assert [checkpoint.checkpoint for checkpoint in channel.published] == [1, 2]
    assert len(session.observations) == 2
    assert session.steps_taken == 0


def test_missing_decision_aborts_with_exchange_timeout(tmp_path: Path):
    driver = login_page()

    session, _, notifier = explore(driver, [], tmp_path)

    assert session.state == SessionState.ABORTED
    assert session.status == SessionStatus.FAILED
    assert session.terminal_reason == TerminalReason.EXCHANGE_TIMEOUT
    assert driver.stopped
    assert notifier.events[-1].type == "session_aborted"


def test_terminal_reasons_are_distinct(tmp_path: Path):
    reasons = {
        explore(login_page(), [], tmp_path / "a")[0].terminal_reason,
        explore(login_page(), [{"decision": "stuck"}], tmp_path / "b")[0].terminal_reason,
        explore(login_page(), [{"decision": "continue"}], tmp_path / "c", max_checkpoints=1)[0].terminal_reason,
    }
    assert len(reasons) == 3


def test_invalid_decisions_are_reported_back_then_fail(tmp_path: Path):
    decisions = [{"decision": "continue", "action": {"action": "teleport"}}] * 3

    session, channel, _ = explore(login_page(), decisions, tmp_path)

    assert len(channel.published) == 3
    assert channel.published[0].errors == []
    assert channel.published[1].errors
    assert session.state == SessionState.FAILED
    assert session.terminal_reason == TerminalReason.ERROR


def test_bug_report_is_forwarded(tmp_path: Path):
    decisions = [
        {
            "decision": "goal_achieved",
            "bugReport": {"severity": "high", "type": "network_error", "description": "500 on /api/items"},
        }
    ]

    session, channel, notifier = explore(login_page(), decisions, tmp_path)

    assert session.bugs_found == 1
    assert channel.bug_reports[0].description == "500 on /api/items"
    assert "bug_reported" in notifier.types()


def test_captcha_on_start_page_aborts_as_blocker(tmp_path: Path):
    driver = login_page()
    driver.scripts[OBSTACLE_DETECTION_SCRIPT] = {
        "type": "captcha",
        "description": "reCAPTCHA",
        "element": ".g-recaptcha",
    }

    session, channel, _ = explore(driver, [{"decision": "goal_achieved"}], tmp_path)

    assert session.state == SessionState.ABORTED
    assert session.terminal_reason == TerminalReason.BLOCKER
    assert channel.published == []


def test_repeated_action_is_reported_as_failure(tmp_path: Path):
    click = {"action": "click", "selector": "#login-link"}
    decisions = [
        {"decision": "continue", "actions": [click, click, click]},
        {"decision": "abort"},
    ]

    _, channel, _ = explore(login_page(), decisions, tmp_path)

    failures = channel.published[1].observation.failures
    assert [failure.error_type for failure in failures] == ["RepeatedActionLimit"]


def test_file_exchange_end_to_end(tmp_path: Path):
    session_dir = new_session_dir(tmp_path)
    replies = iter(
        [
            {"decision": "continue", "action": {"action": "click", "selector": "#login-link"}},
            {"decision": "goal_achieved", "reasoning": "done"},
        ]
    )

    def decision_maker(_seconds: float) -> None:
        if not (session_dir / "action.json").exists():
            (session_dir / "action.json").write_text(json.dumps(next(replies)))

    channel = FileExchange(session_dir, poll_interval=0.01, timeout=5, sleep=decision_maker)
    explorer = Explorer(build_config(), login_page(), channel, CollectingNotifier(), session_dir=session_dir)

    session = explorer.explore(START, ExplorationGoal(objective="click login"))

    assert session.state == SessionState.COMPLETED
    saved = json.loads((session_dir / "session.json").read_text())
    assert saved["state"] == "completed"
    assert saved["steps_taken"] == 1
    assert (session_dir / "status.txt").read_text() == "RUNNING"


def test_invalid_pattern_in_decision_is_reported_back(tmp_path: Path):
    decisions = [
        {
            "decision": "continue",
            "actions": [{"action": "assert", "assert_type": "url_matches", "expected": "("}],
        },
        {"decision": "goal_achieved", "reasoning": "Corrected"},
    ]

    session, channel, _ = explore(login_page(), decisions, tmp_path)

    assert session.state == SessionState.COMPLETED
    assert len(channel.published) == 2
    assert any("regular expression" in error for error in channel.published[1].errors)
    assert session.steps_taken == 0


def test_session_dirs_are_unique(tmp_path: Path):
    first = new_session_dir(tmp_path)
    second = new_session_dir(tmp_path)

    assert first != second
    assert first.is_dir() and second.is_dir()
    assert first.name.startswith("exploration-")


def test_reused_explorer_starts_each_session_with_fresh_history(tmp_path: Path):
    channel = ScriptedDecisionChannel(
        [
            {"decision": "continue", "action": {"action": "click", "selector": "#login-link"}},
            {"decision": "goal_achieved"},
            {"decision": "goal_achieved"},
        ]
    )
    explorer = Explorer(
        build_config(), login_page(), channel, CollectingNotifier(), session_dir=tmp_path / "session"
    )
    goal = ExplorationGoal(objective="click login")

    explorer.explore(START, goal)
    second = explorer.explore(START, goal)

    assert second.state == SessionState.COMPLETED
    assert len(channel.published) == 3
    assert [action.action.value for action in channel.published[1].previous_actions] == ["navigate", "click"]
    assert [action.action.value for action in channel.published[2].previous_actions] == ["navigate"]
