"""Deterministic execution of YAML scenarios."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..browser.base import BrowserDriver, DriverError
from ..config import PilotConfig
from ..errors import ActionError, AssertionFailed, ObstacleError, ValidationError
from ..executor.actions import ActionExecutor, ActionResult
from ..models import Action, ActionType, AssertionResult, NotificationEvent, NotificationLevel
from ..notifications.base import Notifier
from ..obstacles.resolver import ObstacleResolver
from ..observer.engine import Observation, Observer
from ..scenario import Scenario
from .models import ReportStatus, ReportSummary, ScenarioReport, StepResult, StepStatus

LOGGER = logging.getLogger(__name__)

RETRY_DELAY = 1.0


def apply_scenario_config(config: PilotConfig, scenario: Scenario) -> PilotConfig:
    """Return ``config`` with the browser and timeout options of ``scenario`` applied."""

    options = scenario.config
    browser = {}
    if options.headless is not None:
        browser["headless"] = options.headless
    if options.viewport is not None:
        browser["viewport_width"] = options.viewport.width
        browser["viewport_height"] = options.viewport.height
    update = {}
    if browser:
        update["browser"] = config.browser.model_copy(update=browser)
    if options.timeout is not None:
        update["executor"] = config.executor.model_copy(update={"default_timeout": options.timeout})
    if not update:
        return config
    return config.model_copy(update=update)


class _StepOutcome:
    """Mutable status of the step being executed."""

    def __init__(self) -> None:
        self.status = StepStatus.SUCCESS
        self.error: Optional[str] = None

    def fail(self, message: str) -> None:
        self.status = StepStatus.FAILED
        self.error = message

    def warn(self) -> None:
        if self.status == StepStatus.SUCCESS:
            self.status = StepStatus.WARNING


class ScenarioRunner:
    """Run every step of a scenario in order and produce a report."""

    def __init__(
        self,
        config: PilotConfig,
        driver: BrowserDriver,
        notifier: Notifier,
        *,
        output_dir: Optional[Path] = None,
        observer: Optional[Observer] = None,
        executor: Optional[ActionExecutor] = None,
        resolver: Optional[ObstacleResolver] = None,
    ) -> None:
        self._config = config
        self._driver = driver
        self._notifier = notifier
        self._output_dir = output_dir or config.output_dir
        self._observer = observer or Observer(
            driver, self._output_dir / "screenshots", config=config.observer
        )
        self._executor = executor or ActionExecutor(driver, config.executor, error_feed=self._observer)
        self._resolver = resolver

    def run(self, scenario: Scenario) -> ScenarioReport:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        steps: list[StepResult] = []
        LOGGER.info("Starting scenario %s at %s", scenario.name, scenario.url)
        self._notify(
            "scenario_started",
            f"Starting scenario: {scenario.name}",
            data={"url": scenario.url, "steps": len(scenario.steps)},
        )
        resolver = self._resolver
        if resolver is None and scenario.config.handle_obstacles:
            resolver = ObstacleResolver(
                self._driver,
                self._config.obstacles,
                credentials=scenario.credentials or self._config.credentials,
            )
        try:
            self._driver.start()
            for index, action in enumerate(scenario.steps):
                result = self._run_step(scenario, index + 1, action, resolver)
                steps.append(result)
                if result.status == StepStatus.FAILED and scenario.config.stop_on_first_failure:
                    steps.extend(
                        StepResult(step=number, action=remaining, status=StepStatus.SKIPPED)
                        for number, remaining in enumerate(
                            scenario.steps[index + 1 :], start=index + 2
                        )
                    )
                    break
        finally:
            self._driver.stop()

        finished_at = datetime.now(timezone.utc)
        summary = _summarize(steps)
        if resolver is not None:
            summary.obstacles_cleared = resolver.cleared
        report = ScenarioReport(
            scenario=scenario.name,
            status=_overall_status(steps),
            started_at=started_at,
            finished_at=finished_at,
            duration=time.monotonic() - started,
            steps=steps,
            summary=summary,
            error_summary=self._observer.error_summary(),
        )
        report.report_path = self._save(report)
        self._notify_finished(report)
        return report

    def _run_step(
        self,
        scenario: Scenario,
        number: int,
        action: Action,
        resolver: Optional[ObstacleResolver],
    ) -> StepResult:
        options = scenario.config
        LOGGER.info("Step %s: %s", number, action.summary())
        started = time.monotonic()
        retries = 0
        while True:
            outcome = _StepOutcome()
            assertions: list[AssertionResult] = []
            url_before = self._driver.url
            try:
                executed = self._executor.execute(action)
                if resolver is not None and action.action == ActionType.NAVIGATE:
                    resolver.ensure_clear()
            except AssertionFailed as exc:
                # a failed assertion is a verdict, not a flaky interaction
                if exc.result is not None:
                    assertions.append(exc.result)
                outcome.fail(str(exc))
            except (ActionError, DriverError, ObstacleError, ValidationError) as exc:
                if retries < options.retry_failed_steps:
                    retries += 1
                    LOGGER.warning(
                        "Step %s failed, retry %s/%s: %s",
                        number,
                        retries,
                        options.retry_failed_steps,
                        exc,
                    )
                    self._driver.pause(RETRY_DELAY)
                    continue
                outcome.fail(str(exc))
            if outcome.status == StepStatus.FAILED:
                return self._failed_step(scenario, number, action, outcome, started, retries, assertions)

            if executed.assertion is not None:
                assertions.append(executed.assertion)
            if action.expect:
                report = self._executor.assertions.verify_expectations(
                    action.expect, url_before=url_before
                )
                if not report.passed:
                    outcome.fail("; ".join(report.failures))
                    LOGGER.warning("Step %s expectations failed: %s", number, outcome.error)
            observation = self._observer.capture_observation(
                number, action, screenshot=options.screenshot_on_step
            )
            self._check_warnings(scenario, number, action, observation, executed, outcome)
            return StepResult(
                step=number,
                action=action,
                status=outcome.status,
                observation=observation,
                duration=time.monotonic() - started,
                error=outcome.error,
                retry_count=retries,
                assertions=assertions,
                form_validation=executed.form_validation or observation.form_validation,
            )

    def _check_warnings(
        self,
        scenario: Scenario,
        number: int,
        action: Action,
        observation: Observation,
        executed: ActionResult,
        outcome: _StepOutcome,
    ) -> None:
        form = executed.form_validation or observation.form_validation
        if scenario.config.detect_validation_errors and form is not None and not form.is_valid:
            for issue in form.validation_errors:
                LOGGER.warning("Step %s form validation error on %s: %s", number, issue.field, issue.message)
            if form.validation_errors:
                outcome.warn()
        if action.observe and observation.has_new_errors:
            LOGGER.warning(
                "Step %s observed %s console and %s network errors",
                number,
                observation.new_errors.console_errors,
                observation.new_errors.network_errors,
            )
            outcome.warn()

    def _failed_step(
        self,
        scenario: Scenario,
        number: int,
        action: Action,
        outcome: _StepOutcome,
        started: float,
        retries: int,
        assertions: list[AssertionResult],
    ) -> StepResult:
        LOGGER.error("Step %s failed: %s", number, (outcome.error or "")[:200])
        observation = self._observer.capture_observation(
            number, action, screenshot=scenario.config.screenshot_on_error
        )
        return StepResult(
            step=number,
            action=action,
            status=StepStatus.FAILED,
            observation=observation,
            duration=time.monotonic() - started,
            error=outcome.error,
            retry_count=retries,
            assertions=assertions,
            form_validation=observation.form_validation,
        )

    def _save(self, report: ScenarioReport) -> Path:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / f"report-{int(time.time() * 1000)}.json"
        path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        LOGGER.info("Report saved: %s", path)
        return path

    def _notify_finished(self, report: ScenarioReport) -> None:
        summary = report.summary
        level = {
            ReportStatus.PASSED: NotificationLevel.SUCCESS,
            ReportStatus.WARNING: NotificationLevel.WARNING,
            ReportStatus.FAILED: NotificationLevel.ERROR,
        }[report.status]
        data = {
            "total_steps": summary.total_steps,
            "passed": summary.passed,
            "failed": summary.failed,
            "warnings": summary.warnings,
        }
        if summary.skipped:
            data["skipped"] = summary.skipped
        if summary.assertions_passed or summary.assertions_failed:
            data["assertions"] = f"{summary.assertions_passed} passed, {summary.assertions_failed} failed"
        if summary.retried_steps:
            data["retried"] = summary.retried_steps
        data["console_errors"] = summary.console_errors
        data["network_errors"] = summary.network_errors
        if summary.validation_errors:
            data["validation_errors"] = summary.validation_errors
        data["screenshots"] = len(summary.screenshots)
        data["duration"] = f"{report.duration:.2f}s"
        data["report"] = str(report.report_path)
        self._notify(
            "scenario_finished",
            f"Scenario {report.scenario}: {report.status.value.upper()}",
            level=level,
            data=data,
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


def _overall_status(steps: list[StepResult]) -> ReportStatus:
    statuses = {step.status for step in steps}
    if StepStatus.FAILED in statuses:
        return ReportStatus.FAILED
    if StepStatus.WARNING in statuses:
        return ReportStatus.WARNING
    return ReportStatus.PASSED


def _summarize(steps: list[StepResult]) -> ReportSummary:
    summary = ReportSummary(total_steps=len(steps))
    for step in steps:
        if step.status == StepStatus.SUCCESS:
            summary.passed += 1
        elif step.status == StepStatus.FAILED:
            summary.failed += 1
        elif step.status == StepStatus.WARNING:
            summary.warnings += 1
        else:
            summary.skipped += 1
        if step.retry_count:
            summary.retried_steps += 1
        for assertion in step.assertions:
            if assertion.passed:
                summary.assertions_passed += 1
            else:
                summary.assertions_failed += 1
        observation = step.observation
        if observation is not None:
            summary.console_errors += observation.new_errors.console_errors
            summary.network_errors += observation.new_errors.network_errors
            if observation.screenshot:
                summary.screenshots.append(observation.screenshot)
        if step.form_validation is not None:
            summary.validation_errors += len(step.form_validation.validation_errors)
    return summary
