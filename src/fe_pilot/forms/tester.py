"""Form analysis and testing on top of the executor, observer and resolver."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..browser.base import BrowserDriver, DriverError
from ..config import PilotConfig
from ..errors import ActionError, FormNotFound
from ..executor.actions import ActionExecutor
from ..models import (
    Action,
    ActionType,
    Credentials,
    NotificationEvent,
    NotificationLevel,
    WaitConditionType,
    WaitFor,
)
from ..notifications.base import Notifier
from ..obstacles.advisor import ObstacleAdvisor
from ..obstacles.resolver import ObstacleResolver
from ..observer.engine import Observation, Observer
from .discovery import DiscoveredField, DiscoveredForm, FormDiscovery, FormSchema, RuleType
from .models import (
    CheckResult,
    FieldStatus,
    FieldTestResult,
    FormIssue,
    FormTestMode,
    FormTestReport,
    FormTestResult,
    IssueCategory,
    IssueSeverity,
    SubmissionResult,
    summarize_form,
    summarize_report,
)

LOGGER = logging.getLogger(__name__)

INVALID_SAMPLES = {
    "email": "notanemail",
    "tel": "abc123",
    "url": "notaurl",
}

VALID_SAMPLES = {
    "email": "test@example.com",
    "tel": "+15555550123",
    "url": "https://example.com",
    "password": "SecurePass123!",
    "number": "42",
    "date": "2024-01-15",
    "textarea": "Valid text for testing",
}
DEFAULT_VALID = "Valid text"

GENERIC_MESSAGES = {"error", "required", "invalid", "wrong", "incorrect"}
EXPLANATION_WORDS = ("must", "should", "please", "required", "valid")

_UNFILLABLE = {"file"}


def invalid_sample(field: DiscoveredField) -> Optional[str]:
    return INVALID_SAMPLES.get(field.type)


def valid_sample(field: DiscoveredField) -> str:
    """A value that should pass every client-side rule of ``field``."""

    if field.type in {"checkbox", "radio"}:
        return "true"
    if field.is_choice:
        for option in field.options:
            if option.value:
                return option.label or option.value
        return ""
    value = VALID_SAMPLES.get(field.type, DEFAULT_VALID)
    min_length = field.rule(RuleType.MIN_LENGTH)
    if min_length is not None and isinstance(min_length.value, (int, float)):
        value = value.ljust(int(min_length.value), "x")
    max_length = field.rule(RuleType.MAX_LENGTH)
    if max_length is not None and isinstance(max_length.value, (int, float)):
        value = value[: int(max_length.value)]
    return value


def review_error_message(message: str, field: DiscoveredField) -> list[str]:
    """Return the problems that make ``message`` unhelpful for ``field``."""

    problems: list[str] = []
    text = message.strip().lower()
    if len(text) < 10:
        problems.append("message too vague (under 10 characters)")
    label = field.label.strip().lower()[:5]
    if label and label not in text:
        problems.append(f'message does not name the field "{field.label}"')
    if text in GENERIC_MESSAGES:
        problems.append("message is generic")
    if len(text) < 20 and not any(word in text for word in EXPLANATION_WORDS):
        problems.append("message does not explain what is wrong")
    return problems


class FormTester:
    """Discover the forms of a page and exercise their validation."""

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
        advisor: Optional[ObstacleAdvisor] = None,
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
        self._advisor = advisor
        self._discovery = FormDiscovery(driver)
        self._observations = 0

    def analyze(self, url: str, credentials: Optional[Credentials] = None) -> FormSchema:
        """Open ``url`` and return the schema of its forms.

        Raises :class:`~fe_pilot.errors.FormNotFound` when the page has none.
        """

        try:
            self._driver.start()
            self._open(url, self._build_resolver(credentials))
            forms = self._discovery.detect_forms()
            schema = FormSchema(url=self._driver.url, title=self._driver.title(), forms=forms)
        finally:
            self._driver.stop()
        if not schema.forms:
            raise FormNotFound(f"No forms found on {url}")
        return schema

    def test(
        self,
        url: str,
        mode: Optional[FormTestMode] = None,
        credentials: Optional[Credentials] = None,
    ) -> FormTestReport:
        mode = FormTestMode(mode or self._config.forms.mode)
        report = FormTestReport(url=url, mode=mode)
        started = time.monotonic()
        resolver = self._build_resolver(credentials)
        LOGGER.info("Testing forms at %s (%s mode)", url, mode.value)
        self._notify("form_test_started", f"Testing forms at {url}", data={"mode": mode.value})
        try:
            self._driver.start()
            self._open(url, resolver)
            forms = self._discovery.detect_forms()
            if not forms:
                raise FormNotFound(f"No forms found on {url}")
            for index, form in enumerate(forms):
                if index and self._driver.url != url:
                    self._open(url, resolver)
                report.forms.append(self._test_form(form, mode))
        finally:
            self._driver.stop()

        report.finished_at = datetime.now(timezone.utc)
        report.duration = time.monotonic() - started
        report.summary = summarize_report(report.forms)
        report.obstacles_cleared = resolver.cleared
        report.ai_calls = resolver.ai_calls
        report.ai_cost = resolver.ai_cost
        report.report_path = self._save(report)
        self._notify_finished(report)
        return report

    def _build_resolver(self, credentials: Optional[Credentials]) -> ObstacleResolver:
        if self._resolver is not None:
            return self._resolver
        return ObstacleResolver(
            self._driver,
            self._config.obstacles,
            credentials=credentials or self._config.credentials,
            advisor=self._advisor,
        )

    def _open(self, url: str, resolver: ObstacleResolver) -> None:
        self._executor.execute(Action(action=ActionType.NAVIGATE, url=url))
        resolver.ensure_clear()

    def _test_form(self, form: DiscoveredForm, mode: FormTestMode) -> FormTestResult:
        started = time.monotonic()
        LOGGER.info("Testing form %s (%s fields)", form.id, len(form.fields))
        result = FormTestResult(form=form)
        for field in form.fields:
            field_result = self._test_field(form, field, mode)
            result.field_results.append(field_result)
            result.issues.extend(field_result.issues)
        if mode == FormTestMode.FULL:
            result.submission = self._test_submission(form, result.issues)
        result.summary = summarize_form(result.field_results, result.issues)
        result.duration = time.monotonic() - started
        LOGGER.info(
            "Form %s: %s/%s fields passed, %s critical issue(s)",
            form.id,
            result.summary.fields_passed,
            result.summary.total_fields,
            result.summary.critical_issues,
        )
        return result

    def _test_field(
        self, form: DiscoveredForm, field: DiscoveredField, mode: FormTestMode
    ) -> FieldTestResult:
        result = FieldTestResult(field=field)
        if field.disabled:
            result.issues.append(
                FormIssue(
                    severity=IssueSeverity.LOW,
                    category=IssueCategory.FUNCTIONAL,
                    field=field.label,
                    message="Field is disabled (likely depends on another field), not tested",
                    recommendation="Test this field after filling the fields it depends on",
                )
            )
            result.status = FieldStatus.WARNING
            return result

        if field.required:
            result.required_validation = self._check_required(form, field)
            check = result.required_validation
            if not check.passed:
                result.issues.append(
                    FormIssue(
                        severity=IssueSeverity.HIGH,
                        category=IssueCategory.VALIDATION,
                        field=field.label,
                        message=f"Required validation failed: {check.message}",
                        recommendation="Show an error when this required field is left empty",
                    )
                )
            elif mode == FormTestMode.FULL and check.details.get("message"):
                problems = review_error_message(check.details["message"], field)
                if problems:
                    result.issues.append(
                        FormIssue(
                            severity=IssueSeverity.MEDIUM,
                            category=IssueCategory.VALIDATION,
                            field=field.label,
                            message=f"Error message quality: {', '.join(problems)}",
                            recommendation=(
                                f'Name the field and the fix, e.g. "{field.label} is required"'
                            ),
                        )
                    )

        if mode != FormTestMode.QUICK:
            result.format_validation = self._check_format(form, field)
            check = result.format_validation
            if check is not None and not check.passed:
                result.issues.append(
                    FormIssue(
                        severity=IssueSeverity.MEDIUM,
                        category=IssueCategory.VALIDATION,
                        field=field.label,
                        message=f"Format validation failed: {check.message}",
                        recommendation=f"Validate the {field.type} format of this field",
                    )
                )

        if any(issue.is_blocking for issue in result.issues):
            result.status = FieldStatus.FAILED
        elif result.issues:
            result.status = FieldStatus.WARNING
        return result

    def _check_required(self, form: DiscoveredForm, field: DiscoveredField) -> CheckResult:
        if field.type == "radio":
            return CheckResult(passed=True, message="Radio groups cannot be emptied, skipped")
        if field.type in {"select", "multiselect"} and not any(
            option.value == "" for option in field.options
        ):
            return CheckResult(passed=True, message="Select has no empty option, skipped")
        before = self._page_messages()
        try:
            self._empty(field)
            feedback = self._feedback(form, field, before)
        except ActionError as exc:
            return CheckResult(passed=False, message=f"Could not exercise field: {exc}")
        if feedback is None:
            return CheckResult(passed=False, message="No error shown when the field is empty")
        return CheckResult(
            passed=True,
            message="Required validation works",
            details={"message": feedback},
        )

    def _check_format(self, form: DiscoveredForm, field: DiscoveredField) -> Optional[CheckResult]:
        samples: list[tuple[str, str]] = []
        invalid = invalid_sample(field)
        if invalid is not None:
            samples.append((field.type, invalid))
        min_length = field.rule(RuleType.MIN_LENGTH)
        if (
            min_length is not None
            and isinstance(min_length.value, (int, float))
            and min_length.value > 1
            and not field.is_choice
        ):
            samples.append(("min_length", "x" * (int(min_length.value) - 1)))
        if not samples:
            return None

        accepted: list[str] = []
        messages: dict[str, str] = {}
        for rule, value in samples:
            before = self._page_messages()
            try:
                self._executor.execute(Action(action=ActionType.TYPE, selector=field.selector, value=value))
                feedback = self._feedback(form, field, before)
                self._executor.execute(Action(action=ActionType.CLEAR, selector=field.selector))
            except ActionError as exc:
                return CheckResult(passed=False, message=f"Could not exercise field: {exc}")
            if feedback is None:
                accepted.append(f"{rule} ({value!r})")
            else:
                messages[rule] = feedback
        if accepted:
            return CheckResult(
                passed=False,
                message=f"No error shown for invalid value: {', '.join(accepted)}",
                details=messages,
            )
        return CheckResult(passed=True, message="Format validation works", details=messages)

    def _empty(self, field: DiscoveredField) -> None:
        if field.type == "checkbox":
            action = Action(action=ActionType.FILL_FIELD, selector=field.selector, value="false")
        elif field.type in {"select", "multiselect"}:
            action = Action(action=ActionType.FILL_FIELD, selector=field.selector, value="")
        else:
            action = Action(action=ActionType.CLEAR, selector=field.selector)
        self._executor.execute(action)

    def _feedback(
        self, form: DiscoveredForm, field: DiscoveredField, before: list[str]
    ) -> Optional[str]:
        """Blur ``field`` and return the validation message it triggered, if any."""

        self._executor.execute(Action(action=ActionType.BLUR, selector=field.selector))
        self._driver.pause(self._config.forms.settle_delay)
        try:
            validity = self._executor.assertions.check_form_validity(form.selector)
        except DriverError as exc:
            LOGGER.debug("Form validity unavailable: %s", exc)
        else:
            for state in validity.fields:
                if state.selector == field.selector and not state.valid:
                    return state.validation_message or "invalid"
            for issue in validity.validation_errors:
                if issue.selector == field.selector:
                    return issue.message
        fresh = [message for message in self._page_messages() if message not in before]
        return fresh[0] if fresh else None

    def _page_messages(self) -> list[str]:
        try:
            return self._executor.assertions.detect_validation_errors()
        except DriverError as exc:
            LOGGER.debug("Validation messages unavailable: %s", exc)
            return []

    def _test_submission(self, form: DiscoveredForm, issues: list[FormIssue]) -> SubmissionResult:
        submission = SubmissionResult()
        if form.submit_button is None:
            submission.message = "Form has no submit button"
            issues.append(
                FormIssue(
                    severity=IssueSeverity.MEDIUM,
                    category=IssueCategory.FUNCTIONAL,
                    message="Form has no submit button, submission not tested",
                    recommendation="Add a submit button to the form",
                )
            )
            return submission

        for field in form.fields:
            value = valid_sample(field)
            if field.disabled or field.type in _UNFILLABLE or not value:
                submission.skipped_fields.append(field.id)
                continue
            try:
                self._executor.execute(
                    Action(action=ActionType.FILL_FIELD, selector=field.selector, value=value)
                )
            except ActionError as exc:
                LOGGER.warning("Could not fill %s: %s", field.selector, exc)
                submission.skipped_fields.append(field.id)
                continue
            submission.filled_fields.append(field.id)

        self._observe()
        submission.url_before = self._driver.url
        click = Action(
            action=ActionType.CLICK,
            selector=form.submit_button.selector,
            wait_for=WaitFor(
                condition=WaitConditionType.NETWORK_IDLE, timeout=self._config.forms.submit_timeout
            ),
        )
        try:
            self._executor.execute(click)
        except ActionError as exc:
            submission.message = f"Submit button could not be clicked: {exc}"
            issues.append(
                FormIssue(
                    severity=IssueSeverity.HIGH,
                    category=IssueCategory.FUNCTIONAL,
                    message=submission.message,
                    recommendation="Make the submit button visible and enabled once the form is valid",
                )
            )
            return submission

        observation = self._observe()
        submission.url_after = observation.current_url
        submission.validation_errors = self._page_messages()
        submission.console_errors = [entry.text for entry in observation.new_console if entry.is_error]
        failed_requests = [entry for entry in observation.new_network if entry.is_error]
        submission.network_errors = [
            f"{entry.method} {entry.url} -> {entry.status}" for entry in failed_requests
        ]
        posted = any(entry.method.upper() == "POST" for entry in observation.new_network)
        submission.submitted = submission.url_after != submission.url_before or posted
        submission.passed = submission.submitted and not failed_requests

        if not submission.submitted:
            submission.message = "Form did not submit with valid data"
            detail = "; ".join(submission.validation_errors[:3])
            issues.append(
                FormIssue(
                    severity=IssueSeverity.HIGH,
                    category=IssueCategory.FUNCTIONAL,
                    message=submission.message + (f" ({detail})" if detail else ""),
                    recommendation="Check that valid input is accepted and the submit handler runs",
                )
            )
        elif failed_requests:
            submission.message = f"Submission request failed: {submission.network_errors[0]}"
            issues.append(
                FormIssue(
                    severity=IssueSeverity.HIGH,
                    category=IssueCategory.FUNCTIONAL,
                    message=submission.message,
                    recommendation="Fix the server side handling of valid submissions",
                )
            )
        else:
            submission.message = "Form submitted"
        if submission.console_errors:
            issues.append(
                FormIssue(
                    severity=IssueSeverity.MEDIUM,
                    category=IssueCategory.FUNCTIONAL,
                    message=f"{len(submission.console_errors)} console error(s) during submission",
                    recommendation="Fix the script errors raised by the submit handler",
                )
            )
        LOGGER.info("Submission of %s: %s", form.id, submission.message)
        return submission

    def _observe(self) -> Observation:
        self._observations += 1
        return self._observer.capture_observation(self._observations)

    def _save(self, report: FormTestReport) -> Path:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / f"form-report-{int(time.time() * 1000)}.json"
        path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        LOGGER.info("Form report saved: %s", path)
        return path

    def _notify_finished(self, report: FormTestReport) -> None:
        summary = report.summary
        if summary.critical_issues:
            level = NotificationLevel.ERROR
        elif summary.warnings:
            level = NotificationLevel.WARNING
        else:
            level = NotificationLevel.SUCCESS
        self._notify(
            "form_test_finished",
            f"Form test {report.url}: {summary.pass_rate}% of fields passed",
            level=level,
            data={
                "forms": summary.total_forms,
                "fields": summary.total_fields,
                "passed": summary.fields_passed,
                "critical_issues": summary.critical_issues,
                "warnings": summary.warnings,
                "duration": f"{report.duration:.2f}s",
                "report": str(report.report_path),
            },
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
