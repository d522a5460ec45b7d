import io
import logging
from pathlib import Path

import pytest
from rich.console import Console

from fe_pilot.config import ExchangeConfig, LLMConfig, NotificationConfig, ObstacleConfig
from fe_pilot.exchange.files import FileExchange
from fe_pilot.exchange.mock import ScriptedDecisionChannel
from fe_pilot.factory import build_advisor, build_channel, build_notifier
from fe_pilot.models import DecisionTag, NotificationEvent, NotificationLevel
from fe_pilot.notifications.base import CompositeNotifier, ConsoleNotifier, LoggingNotifier
from fe_pilot.obstacles.advisor import OpenAIObstacleAdvisor


def test_build_channel(tmp_path: Path):
    files = build_channel(ExchangeConfig(format="yaml"), tmp_path)
    assert isinstance(files, FileExchange)
    assert files.action_file == tmp_path / "action.yaml"

    scripted = build_channel(
        ExchangeConfig(channel="scripted", decisions=[{"decision": "goal_achieved"}]), tmp_path
    )
    assert isinstance(scripted, ScriptedDecisionChannel)
    assert scripted.await_decision().decision == DecisionTag.GOAL_ACHIEVED


def test_build_advisor_only_when_enabled_and_configured():
    assert build_advisor(ObstacleConfig()) is None
    assert build_advisor(ObstacleConfig(ai_mode="hybrid")) is None

    advisor = build_advisor(
        ObstacleConfig(ai_mode="hybrid", advisor=LLMConfig(model="vision-model", api_key="key"))
    )
    assert isinstance(advisor, OpenAIObstacleAdvisor)

    with pytest.raises(ValueError):
        build_advisor(ObstacleConfig(ai_mode="always", advisor=LLMConfig(provider="other", model="m")))


def test_build_notifier_channels():
    assert isinstance(build_notifier(NotificationConfig(channel="console")), ConsoleNotifier)
    assert isinstance(build_notifier(NotificationConfig(channel="log")), LoggingNotifier)
    assert isinstance(build_notifier(NotificationConfig(channel="both")), CompositeNotifier)
    with pytest.raises(ValueError):
        build_notifier(NotificationConfig(channel="pager"))


def test_console_notifier_prints_event_and_data():
    buffer = io.StringIO()
    notifier = ConsoleNotifier(Console(file=buffer, width=120))

    notifier.notify(
        NotificationEvent(
            type="scenario_finished",
            message="Scenario Login: PASSED",
            level=NotificationLevel.SUCCESS,
            data={"passed": 3},
        )
    )

    output = buffer.getvalue()
    assert "[SUCCESS] Scenario Login: PASSED" in output
    assert "passed: 3" in output


def test_logging_notifier_uses_event_level(caplog):
    with caplog.at_level(logging.INFO, logger="fe_pilot.notifications.base"):
        LoggingNotifier().notify(
            NotificationEvent(type="bug_reported", message="500 on save", level=NotificationLevel.WARNING)
        )

    assert caplog.records[0].levelno == logging.WARNING
    assert "bug_reported: 500 on save" in caplog.text
