"""Session and report records produced by the orchestrators."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ..models import Action, AssertionResult, Credentials, Decision
from ..observer.dom import FormValidation
from ..observer.engine import ErrorSummary, Observation


class SessionState(str, enum.Enum):
    INITIALIZING = "initializing"
    EXECUTING_BATCH = "executing_batch"
    AWAITING_DECISION = "awaiting_decision"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = {SessionState.COMPLETED, SessionState.FAILED, SessionState.ABORTED}


class SessionStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TerminalReason(str, enum.Enum):
    GOAL_ACHIEVED = "goal_achieved"
    DECISION_ABORT = "decision_abort"
    DECISION_STUCK = "decision_stuck"
    BUDGET_EXHAUSTED = "budget_exhausted"
    EXCHANGE_TIMEOUT = "exchange_timeout"
    BLOCKER = "blocker"
    ERROR = "error"


class ExplorationGoal(BaseModel):
    """What an exploration should achieve and how much it may spend."""

    objective: str
    credentials: Optional[Credentials] = Field(default=None, exclude=True)
    max_steps: int = Field(default=50, ge=1)
    max_checkpoints: Optional[int] = Field(default=None, ge=1)


class ExplorationSession(BaseModel):
    """Aggregate record of one exploration run. Mutated only by the explorer."""

    session_id: str
    session_dir: Path
    goal: ExplorationGoal
    start_url: str
    state: SessionState = SessionState.INITIALIZING
    status: SessionStatus = SessionStatus.RUNNING
    terminal_reason: Optional[TerminalReason] = None
    failure_reason: Optional[str] = None
    rationale: Optional[str] = None
    steps_taken: int = 0
    checkpoints: int = 0
    obstacles_cleared: int = 0
    bugs_found: int = 0
    skipped_actions: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    observations: list[Observation] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class StepStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


class ReportStatus(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class StepResult(BaseModel):
    step: int
    action: Action
    status: StepStatus
    observation: Optional[Observation] = None
    duration: float = 0.0
    error: Optional[str] = None
    retry_count: int = 0
    assertions: list[AssertionResult] = Field(default_factory=list)
    form_validation: Optional[FormValidation] = None


class ReportSummary(BaseModel):
    total_steps: int = 0
    passed: int = 0
    failed: int = 0
    warnings: int = 0
    skipped: int = 0
    screenshots: list[str] = Field(default_factory=list)
    console_errors: int = 0
    network_errors: int = 0
    validation_errors: int = 0
    assertions_passed: int = 0
    assertions_failed: int = 0
    retried_steps: int = 0
    obstacles_cleared: int = 0


class ScenarioReport(BaseModel):
    scenario: str
    status: ReportStatus
    started_at: datetime
    finished_at: datetime
    duration: float
    steps: list[StepResult] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    error_summary: Optional[ErrorSummary] = None
    report_path: Optional[Path] = None
