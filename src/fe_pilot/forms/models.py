"""Result records produced by the form tester."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .discovery import DiscoveredField, DiscoveredForm


class FormTestMode(str, enum.Enum):
    """How deep a form test goes.

    ``quick`` checks required fields, ``standard`` adds format checks and
    ``full`` adds error message review and a submission with valid data.
    """

    QUICK = "quick"
    STANDARD = "standard"
    FULL = "full"


class IssueSeverity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


BLOCKING_SEVERITIES = {IssueSeverity.CRITICAL, IssueSeverity.HIGH}


class IssueCategory(str, enum.Enum):
    VALIDATION = "validation"
    FUNCTIONAL = "functional"


class FormIssue(BaseModel):
    severity: IssueSeverity
    category: IssueCategory
    field: Optional[str] = None
    message: str
    recommendation: str = ""

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES


class CheckResult(BaseModel):
    passed: bool
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class FieldStatus(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class FieldTestResult(BaseModel):
    field: DiscoveredField
    required_validation: Optional[CheckResult] = None
    format_validation: Optional[CheckResult] = None
    status: FieldStatus = FieldStatus.PASSED
    issues: list[FormIssue] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    """What happened when the form was submitted with valid data."""

    submitted: bool = False
    passed: bool = False
    message: str = ""
    url_before: str = ""
    url_after: str = ""
    filled_fields: list[str] = Field(default_factory=list)
    skipped_fields: list[str] = Field(default_factory=list)
    validation_errors: list[str] = Field(default_factory=list)
    console_errors: list[str] = Field(default_factory=list)
    network_errors: list[str] = Field(default_factory=list)


class FormTestSummary(BaseModel):
    total_fields: int = 0
    fields_passed: int = 0
    fields_failed: int = 0
    fields_warning: int = 0
    critical_issues: int = 0
    warnings: int = 0
    pass_rate: int = 100


class FormTestResult(BaseModel):
    form: DiscoveredForm
    field_results: list[FieldTestResult] = Field(default_factory=list)
    submission: Optional[SubmissionResult] = None
    issues: list[FormIssue] = Field(default_factory=list)
    summary: FormTestSummary = Field(default_factory=FormTestSummary)
    duration: float = 0.0


class FormReportSummary(BaseModel):
    total_forms: int = 0
    forms_with_issues: int = 0
    total_fields: int = 0
    fields_passed: int = 0
    critical_issues: int = 0
    warnings: int = 0
    pass_rate: int = 100


class FormTestReport(BaseModel):
    """Aggregate record of one ``form test`` run, saved as JSON."""

    url: str
    mode: FormTestMode
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    duration: float = 0.0
    forms: list[FormTestResult] = Field(default_factory=list)
    summary: FormReportSummary = Field(default_factory=FormReportSummary)
    obstacles_cleared: int = 0
    ai_calls: int = 0
    ai_cost: float = 0.0
    report_path: Optional[Path] = None


def pass_rate(passed: int, total: int) -> int:
    """Percentage of passing fields, rounded; a form without fields passes."""

    if total <= 0:
        return 100
    return round(passed * 100 / total)


def summarize_form(field_results: list[FieldTestResult], issues: list[FormIssue]) -> FormTestSummary:
    total = len(field_results)
    passed = sum(1 for result in field_results if result.status == FieldStatus.PASSED)
    return FormTestSummary(
        total_fields=total,
        fields_passed=passed,
        fields_failed=sum(1 for result in field_results if result.status == FieldStatus.FAILED),
        fields_warning=sum(1 for result in field_results if result.status == FieldStatus.WARNING),
        critical_issues=sum(1 for issue in issues if issue.is_blocking),
        warnings=sum(1 for issue in issues if not issue.is_blocking),
        pass_rate=pass_rate(passed, total),
    )


def summarize_report(forms: list[FormTestResult]) -> FormReportSummary:
    total = sum(result.summary.total_fields for result in forms)
    passed = sum(result.summary.fields_passed for result in forms)
    return FormReportSummary(
        total_forms=len(forms),
        forms_with_issues=sum(
            1 for result in forms if result.summary.critical_issues or result.summary.warnings
        ),
        total_fields=total,
        fields_passed=passed,
        critical_issues=sum(result.summary.critical_issues for result in forms),
        warnings=sum(result.summary.warnings for result in forms),
        pass_rate=pass_rate(passed, total),
    )
