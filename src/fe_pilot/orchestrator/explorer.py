"""Exploration loop synchronising the browser with an external decision-maker."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..browser.base import BrowserDriver
from ..config import PilotConfig
from ..errors import (
    ActionError,
    BudgetExceeded,
    ExchangeTimeout,
    ObstacleError,
    PilotError,
    ValidationError,
)
from ..exchange.base import Checkpoint, DecisionChannel
from ..executor.actions import ActionExecutor
from ..models import (
    Action,
    ActionFailure,
    ActionType,
    Decision,
    DecisionTag,
    NotificationEvent,
    NotificationLevel,
)
from ..notifications.base import Notifier
from ..obstacles.advisor import ObstacleAdvisor
from ..obstacles.resolver import ObstacleResolver
from ..observer.engine import Observation, Observer
from .models import (
    ExplorationGoal,
    ExplorationSession,
    SessionState,
    SessionStatus,
    TerminalReason,
)

LOGGER = logging.getLogger(__name__)


def new_session_dir(base: Path) -> Path:
    """Create and return a new ``exploration-<ms>-<id>`` directory under ``base``."""

    session_dir = base / f"exploration-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    session_dir.mkdir(parents=True, exist_ok=False)
    return session_dir


class Explorer:
    """Drive one exploration session.

    The session moves from ``initializing`` through alternating
    ``awaiting_decision`` and ``executing_batch`` states until it reaches
    ``completed``, ``failed`` or ``aborted``. Every batch of actions is
    followed by exactly one observation and one decision request.
    """

    def __init__(
        self,
        config: PilotConfig,
        driver: BrowserDriver,
        channel: DecisionChannel,
        notifier: Notifier,
        *,
        session_dir: Path,
        observer: Optional[Observer] = None,
        executor: Optional[ActionExecutor] = None,
        resolver: Optional[ObstacleResolver] = None,
        advisor: Optional[ObstacleAdvisor] = None,
    ) -> None:
        self._config = config
        self._driver = driver
        self._channel = channel
        self._notifier = notifier
        self._session_dir = session_dir
        self._observer = observer or Observer(
            driver, session_dir / "screenshots", config=config.observer
        )
        self._executor = executor or ActionExecutor(driver, config.executor, error_feed=self._observer)
        self._resolver = resolver
        self._advisor = advisor

    def explore(self, start_url: str, goal: ExplorationGoal) -> ExplorationSession:
        """Run the session to a terminal state and return its record."""

        session = ExplorationSession(
            session_id=self._session_dir.name,
            session_dir=self._session_dir,
            goal=goal,
            start_url=start_url,
        )
        resolver = self._resolver or ObstacleResolver(
            self._driver,
            self._config.obstacles,
            credentials=goal.credentials or self._config.credentials,
            advisor=self._advisor,
        )
        LOGGER.info("Starting exploration of %s: %s", start_url, goal.objective)
        self._notify(
            "session_started",
            f"Exploring {start_url}: {goal.objective}",
            data={"session_dir": str(self._session_dir), "max_steps": goal.max_steps},
        )
        try:
            self._driver.start()
            self._run(session, start_url, goal, resolver)
        except ExchangeTimeout as exc:
            self._finish(session, SessionState.ABORTED, TerminalReason.EXCHANGE_TIMEOUT, str(exc))
        except (ObstacleError, BudgetExceeded) as exc:
            self._finish(session, SessionState.ABORTED, TerminalReason.BLOCKER, str(exc))
        except PilotError as exc:
            self._finish(session, SessionState.FAILED, TerminalReason.ERROR, str(exc))
        except Exception as exc:  # pragma: no cover - unexpected failure
            LOGGER.exception("Unhandled exploration error")
            self._finish(session, SessionState.FAILED, TerminalReason.ERROR, str(exc))
        finally:
            self._driver.stop()
            session.obstacles_cleared = resolver.cleared
            session.finished_at = datetime.now(timezone.utc)
            self._channel.save_session(session)
            self._notify_finished(session)
        return session

    def _run(
        self,
        session: ExplorationSession,
        start_url: str,
        goal: ExplorationGoal,
        resolver: ObstacleResolver,
    ) -> None:
        initial = Action(action=ActionType.NAVIGATE, url=start_url, description="Initial navigation")
        self._executor.execute(initial)
        history: list[Action] = [initial]
        if self._config.obstacles.enabled:
            resolver.ensure_clear()
        observation = self._observe(session, initial)

        errors: list[str] = []
        invalid_streak = 0
        while True:
            if goal.max_checkpoints is not None and session.checkpoints >= goal.max_checkpoints:
                self._finish(
                    session,
                    SessionState.FAILED,
                    TerminalReason.BUDGET_EXHAUSTED,
                    f"Checkpoint budget of {goal.max_checkpoints} reached without a terminal decision",
                )
                return
            try:
                decision = self._request_decision(session, goal, observation, history, errors)
            except ValidationError as exc:
                invalid_streak += 1
                LOGGER.warning("Invalid decision (%s in a row): %s", invalid_streak, exc)
                if invalid_streak >= self._config.exploration.max_invalid_decisions:
                    self._finish(
                        session,
                        SessionState.FAILED,
                        TerminalReason.ERROR,
                        f"{invalid_streak} invalid decisions in a row: {exc}",
                    )
                    return
                errors = [str(exc), *exc.errors]
                continue
            invalid_streak = 0
            errors = []

            if self._apply_terminal_decision(session, decision):
                return

            remaining = goal.max_steps - session.steps_taken
            if remaining <= 0:
                self._finish(
                    session,
                    SessionState.FAILED,
                    TerminalReason.BUDGET_EXHAUSTED,
                    f"Step budget of {goal.max_steps} exhausted without a terminal decision",
                )
                return
            batch = decision.batch()
            if len(batch) > remaining:
                skipped = len(batch) - remaining
                session.skipped_actions += skipped
                errors.append(f"{skipped} action(s) skipped: step budget of {goal.max_steps} reached")
                LOGGER.warning("Truncating batch of %s to %s actions", len(batch), remaining)
                batch = batch[:remaining]

            failures = self._execute_batch(session, batch, history, decision.stop_on_error)
            observation = self._observe(session, batch[-1] if batch else None, failures)

    def _observe(
        self,
        session: ExplorationSession,
        action: Optional[Action],
        failures: Optional[list[ActionFailure]] = None,
    ) -> Observation:
        observation = self._observer.capture_observation(session.steps_taken, action)
        if failures:
            observation = observation.with_failures(failures)
        session.observations.append(observation)
        if observation.has_new_errors:
            LOGGER.warning(
                "New errors since last checkpoint: %s console, %s network",
                observation.new_errors.console_errors,
                observation.new_errors.network_errors,
            )
        return observation

    def _request_decision(
        self,
        session: ExplorationSession,
        goal: ExplorationGoal,
        observation: Observation,
        history: list[Action],
        errors: list[str],
    ) -> Decision:
        session.state = SessionState.AWAITING_DECISION
        session.checkpoints += 1
        checkpoint = Checkpoint(
            goal=goal.objective,
            checkpoint=session.checkpoints,
            steps_taken=session.steps_taken,
            observation=observation,
            previous_actions=list(history),
            errors=list(errors),
        )
        self._channel.publish(checkpoint)
        self._channel.save_session(session)
        self._notify(
            "checkpoint",
            f"Checkpoint {session.checkpoints} at {observation.current_url}",
            data={
                "steps": session.steps_taken,
                "console_errors": observation.new_errors.console_errors,
                "network_errors": observation.new_errors.network_errors,
                "failures": len(observation.failures),
            },
        )
        decision = self._channel.await_decision(self._config.exchange.decision_timeout)
        session.decisions.append(decision)
        self._notify("decision", f"Decision: {decision.decision.value}. {decision.reasoning}".strip())
        for concern in decision.concerns:
            LOGGER.warning("Decision-maker concern: %s", concern)
        if decision.bug_report is not None and decision.bug_report.bug_found:
            self._channel.report_bug(decision.bug_report)
            session.bugs_found += 1
            self._notify(
                "bug_reported",
                decision.bug_report.description or "Bug reported",
                level=NotificationLevel.WARNING,
                data={"severity": decision.bug_report.severity.value},
            )
        return decision

    def _apply_terminal_decision(self, session: ExplorationSession, decision: Decision) -> bool:
        if decision.decision == DecisionTag.GOAL_ACHIEVED:
            self._finish(
                session,
                SessionState.COMPLETED,
                TerminalReason.GOAL_ACHIEVED,
                rationale=decision.reasoning,
            )
            return True
        if decision.decision in {DecisionTag.ABORT, DecisionTag.STUCK}:
            reason = (
                TerminalReason.DECISION_ABORT
                if decision.decision == DecisionTag.ABORT
                else TerminalReason.DECISION_STUCK
            )
            self._finish(
                session,
                SessionState.FAILED,
                reason,
                decision.reasoning or f"Decision-maker reported {decision.decision.value}",
                rationale=decision.reasoning,
            )
            return True
        return False

    def _execute_batch(
        self,
        session: ExplorationSession,
        batch: list[Action],
        history: list[Action],
        stop_on_error: bool,
    ) -> list[ActionFailure]:
        session.state = SessionState.EXECUTING_BATCH
        failures: list[ActionFailure] = []
        if len(batch) > 1:
            LOGGER.info(
                "Executing batch of %s actions%s",
                len(batch),
                " (stop on error)" if stop_on_error else "",
            )
        for index, action in enumerate(batch):
            session.steps_taken += 1
            LOGGER.info("Step %s: %s", session.steps_taken, action.summary())
            try:
                self._executor.execute(action)
            except (ActionError, ValidationError) as exc:
                failures.append(
                    ActionFailure(
                        index=index,
                        action=action,
                        error_type=type(exc).__name__,
                        message=str(exc),
                        attempts=getattr(exc, "attempts", 1),
                    )
                )
                LOGGER.warning("Action failed: %s", exc)
                if stop_on_error:
                    not_run = len(batch) - index - 1
                    if not_run:
                        LOGGER.info("Stopping batch; %s action(s) not executed", not_run)
                    break
                continue
            history.append(action)
        return failures

    def _finish(
        self,
        session: ExplorationSession,
        state: SessionState,
        reason: TerminalReason,
        message: Optional[str] = None,
        *,
        rationale: Optional[str] = None,
    ) -> None:
        session.state = state
        session.status = SessionStatus.COMPLETED if state == SessionState.COMPLETED else SessionStatus.FAILED
        session.terminal_reason = reason
        session.rationale = rationale
        if state != SessionState.COMPLETED:
            session.failure_reason = message
        LOGGER.info("Session %s finished: %s (%s)", session.session_id, state.value, reason.value)

    def _notify_finished(self, session: ExplorationSession) -> None:
        data = {
            "steps": session.steps_taken,
            "checkpoints": session.checkpoints,
            "bugs_found": session.bugs_found,
            "session_dir": str(session.session_dir),
        }
        if session.state == SessionState.COMPLETED:
            self._notify(
                "session_finished",
                session.rationale or "Goal achieved",
                level=NotificationLevel.SUCCESS,
                data=data,
            )
            return
        level = NotificationLevel.WARNING if session.state == SessionState.ABORTED else NotificationLevel.ERROR
        self._notify(
            f"session_{session.state.value}",
            session.failure_reason or "Exploration did not reach its goal",
            level=level,
            data={"reason": session.terminal_reason.value if session.terminal_reason else None, **data},
        )

    def _notify(
        self,
        event_type: str,
        message: str,
        *,
        level: NotificationLevel = NotificationLevel.INFO,
        data: Optional[dict] = None,
    ) -> None:
        self._notifier.notify(
            NotificationEvent(type=event_type, message=message, level=level, data=data or {})
        )
