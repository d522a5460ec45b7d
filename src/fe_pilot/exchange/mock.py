"""Scripted decision channel for tests and dry runs."""

from __future__ import annotations

from typing import Iterable, Optional, Union

from pydantic import BaseModel

from ..errors import ExchangeTimeout, ValidationError
from ..models import BugReport, Decision
from .base import Checkpoint, DecisionChannel, ExchangeStatus


class ScriptedDecisionChannel(DecisionChannel):
    """Serve a fixed sequence of decisions and record what was published.

    Items may be :class:`Decision` objects, raw mappings, or exceptions to
    raise in place of a decision.
    """

    def __init__(self, decisions: Iterable[Union[Decision, dict, Exception]]) -> None:
        self._decisions = list(decisions)
        self.published: list[Checkpoint] = []
        self.statuses: list[ExchangeStatus] = []
        self.saved_sessions: list[BaseModel] = []
        self.bug_reports: list[BugReport] = []

    def publish(self, checkpoint: Checkpoint) -> None:
        self.published.append(checkpoint)
        self.set_status(ExchangeStatus.WAITING_FOR_AI)

    def await_decision(self, timeout: Optional[float] = None) -> Decision:
        if not self._decisions:
            raise ExchangeTimeout("No scripted decision left")
        item = self._decisions.pop(0)
        self.set_status(ExchangeStatus.RUNNING)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, Decision):
            return item
        try:
            return Decision.model_validate(item)
        except ValueError as exc:
            raise ValidationError(f"Invalid decision: {exc}") from exc

    def set_status(self, status: ExchangeStatus) -> None:
        self.statuses.append(status)

    def save_session(self, session: BaseModel) -> None:
        self.saved_sessions.append(session)

    def report_bug(self, report: BugReport) -> None:
        self.bug_reports.append(report)
