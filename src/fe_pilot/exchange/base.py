"""Decision channel abstractions."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field

from ..models import Action, BugReport, Decision
from ..observer.engine import Observation


class ExchangeStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    WAITING_FOR_AI = "WAITING_FOR_AI"


class Checkpoint(BaseModel):
    """Everything the decision-maker sees before choosing the next batch."""

    goal: str
    checkpoint: int
    steps_taken: int
    observation: Observation
    previous_actions: list[Action] = Field(default_factory=list)
    errors: list[str] = Field(
        default_factory=list,
        description="Problems with the previous decision that need a corrected response.",
    )


class DecisionChannel(ABC):
    """Interface between a session and its external decision-maker."""

    @abstractmethod
    def publish(self, checkpoint: Checkpoint) -> None:
        """Make ``checkpoint`` available to the decision-maker."""

    @abstractmethod
    def await_decision(self, timeout: Optional[float] = None) -> Decision:
        """Block until a decision arrives.

        Raises :class:`~fe_pilot.errors.ExchangeTimeout` when none arrives in
        time and :class:`~fe_pilot.errors.ValidationError` for a decision that
        is readable but invalid.
        """

    def set_status(self, status: ExchangeStatus) -> None:
        """Record the session's exchange status, if the channel tracks it."""

    def save_session(self, session: BaseModel) -> None:
        """Persist the session record, if the channel supports it."""

    def report_bug(self, report: BugReport) -> None:
        """Persist a bug report attached to a decision."""
