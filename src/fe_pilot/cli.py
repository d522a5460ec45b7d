"""Command line interface for fe-pilot."""

from __future__ import annotations

import enum
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from .config import PilotConfig, load_config
from .errors import PilotError, ValidationError
from .factory import build_advisor, build_channel, build_driver, build_notifier
from .forms.discovery import FormSchema
from .forms.models import FormTestMode, FormTestReport
from .forms.tester import FormTester
from .models import Action, ActionType, Credentials
from .orchestrator.explorer import Explorer, new_session_dir
from .orchestrator.models import ExplorationGoal, ReportStatus, SessionState
from .orchestrator.pilot import ScenarioRunner, apply_scenario_config
from .scenario import Scenario, load_scenario

app = typer.Typer(help="fe-pilot: browser pilot for scenario runs and guided exploration")

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to YAML configuration."),
]
EnvFileOption = Annotated[
    Optional[Path],
    typer.Option("--env-file", help="Path to an .env file with default configuration values."),
]
HeadlessOption = Annotated[
    Optional[bool],
    typer.Option("--headless/--headed", help="Run the browser in headless mode (or headed)."),
]
OutputOption = Annotated[
    Optional[Path],
    typer.Option("--output", "-o", help="Directory for reports, screenshots and sessions."),
]
CredentialsOption = Annotated[
    Optional[str],
    typer.Option("--credentials", help="Login credentials as username:password."),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging before executing any command."""

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def version() -> None:
    """Print the package version."""

    try:
        typer.echo(get_version("fe-pilot"))
    except PackageNotFoundError:  # pragma: no cover - when running from source tree
        typer.echo("0.0.0")


def _parse_credentials(raw: Optional[str]) -> Optional[Credentials]:
    if raw is None:
        return None
    try:
        return Credentials.parse(raw)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--credentials") from exc


def _with_headless(config: PilotConfig, headless: Optional[bool]) -> PilotConfig:
    if headless is None:
        return config
    return config.model_copy(
        update={"browser": config.browser.model_copy(update={"headless": headless})}
    )


def _run_scenario(config: PilotConfig, scenario: Scenario) -> None:
    driver = build_driver(config.browser)
    notifier = build_notifier(config.notifications)
    runner = ScenarioRunner(config, driver, notifier, output_dir=config.output_dir)
    report = runner.run(scenario)
    typer.echo(f"Report saved: {report.report_path}")
    if report.status == ReportStatus.FAILED:
        raise typer.Exit(code=1)


@app.command()
def run(
    scenario_path: Annotated[Path, typer.Argument(help="YAML scenario to execute.")],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
    output: OutputOption = None,
    credentials: CredentialsOption = None,
) -> None:
    """Run a test scenario from a YAML file."""

    parsed = _parse_credentials(credentials)
    try:
        scenario = load_scenario(scenario_path, credentials=parsed)
    except ValidationError as exc:
        typer.echo(f"Scenario validation failed: {exc}", err=True)
        for error in exc.errors:
            typer.echo(f"  - {error}", err=True)
        raise typer.Exit(code=1) from exc

    overrides: dict[str, Any] = {}
    if output is not None:
        overrides["output_dir"] = str(output)
    config = load_config(config_path, env_file=env_file, **overrides)
    config = _with_headless(apply_scenario_config(config, scenario), headless)
    typer.echo(f"Loaded scenario: {scenario.name} ({len(scenario.steps)} steps)")
    _run_scenario(config, scenario)


@app.command()
def test(
    url: Annotated[str, typer.Argument(help="Page to open.")],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
    output: OutputOption = None,
    credentials: CredentialsOption = None,
) -> None:
    """Quick test a URL: navigate, capture a screenshot and the page state."""

    scenario = Scenario(
        name="Quick Test",
        url=url,
        credentials=_parse_credentials(credentials),
        steps=[
            Action(action=ActionType.NAVIGATE, url=url, observe=True),
            Action(action=ActionType.SCREENSHOT, description="Initial page state"),
            Action(action=ActionType.WAIT, duration=2.0),
        ],
    )
    overrides: dict[str, Any] = {}
    if output is not None:
        overrides["output_dir"] = str(output)
    config = _with_headless(load_config(config_path, env_file=env_file, **overrides), headless)
    _run_scenario(config, scenario)


@app.command()
def explore(
    url: Annotated[str, typer.Argument(help="Start URL of the exploration.")],
    goal: Annotated[str, typer.Option("--goal", help="What the exploration should achieve.")],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    max_steps: Annotated[
        Optional[int],
        typer.Option("--max-steps", help="Maximum actions before the session gives up."),
    ] = None,
    max_checkpoints: Annotated[
        Optional[int],
        typer.Option("--max-checkpoints", help="Maximum decision requests."),
    ] = None,
    decision_timeout: Annotated[
        Optional[float],
        typer.Option("--decision-timeout", help="Seconds to wait for each decision."),
    ] = None,
    poll_interval: Annotated[
        Optional[float],
        typer.Option("--poll-interval", help="Seconds between checks for a decision file."),
    ] = None,
    headless: HeadlessOption = None,
    output: OutputOption = None,
    credentials: CredentialsOption = None,
) -> None:
    """Explore a site step by step, asking an external decision-maker what to do."""

    parsed = _parse_credentials(credentials)
    overrides: dict[str, Any] = {}
    if max_steps is not None or max_checkpoints is not None or output is not None:
        overrides.setdefault("exploration", {})
        if max_steps is not None:
            overrides["exploration"]["max_steps"] = max_steps
        if max_checkpoints is not None:
            overrides["exploration"]["max_checkpoints"] = max_checkpoints
        if output is not None:
            overrides["exploration"]["sessions_dir"] = str(output)
    if decision_timeout is not None or poll_interval is not None:
        overrides.setdefault("exchange", {})
        if decision_timeout is not None:
            overrides["exchange"]["decision_timeout"] = decision_timeout
        if poll_interval is not None:
            overrides["exchange"]["poll_interval"] = poll_interval
    if headless is not None:
        overrides["browser"] = {"headless": headless}

    config = load_config(config_path, env_file=env_file, **overrides)
    session_dir = new_session_dir(config.exploration.sessions_dir)
    channel = build_channel(config.exchange, session_dir)
    typer.echo(f"Session directory: {session_dir}")
    if config.exchange.channel == "files":
        typer.echo(
            f"Write decisions to {session_dir / ('action.' + config.exchange.format)}"
        )

    explorer = Explorer(
        config,
        build_driver(config.browser),
        channel,
        build_notifier(config.notifications),
        session_dir=session_dir,
        advisor=build_advisor(config.obstacles),
    )
    session = explorer.explore(
        url,
        ExplorationGoal(
            objective=goal,
            credentials=parsed,
            max_steps=config.exploration.max_steps,
            max_checkpoints=config.exploration.max_checkpoints,
        ),
    )
    if session.state != SessionState.COMPLETED:
        typer.echo(f"Exploration {session.state.value}: {session.failure_reason}", err=True)
        raise typer.Exit(code=1)
    typer.echo("Goal achieved.")


form_app = typer.Typer(help="Analyse and test the forms of a page.")
app.add_typer(form_app, name="form")


class AIMode(str, enum.Enum):
    DISABLED = "disabled"
    HYBRID = "hybrid"
    ALWAYS = "always"


def _print_schema(schema: FormSchema) -> None:
    typer.echo(f"Found {len(schema.forms)} form(s) on {schema.url}")
    for index, form in enumerate(schema.forms, start=1):
        typer.echo(f"Form {index}: {form.id} ({form.method or 'get'} {form.action or '-'})")
        for field in form.fields:
            flags = [field.type]
            if field.required:
                flags.append("required")
            if field.disabled:
                flags.append("disabled")
            line = f"  - {field.label} [{' '.join(flags)}] {field.selector}"
            rules = ", ".join(rule.type.value for rule in field.validation_rules)
            if rules:
                line += f" rules: {rules}"
            typer.echo(line)
        if form.submit_button is not None:
            typer.echo(f"  submit: {form.submit_button.text} ({form.submit_button.selector})")


def _print_form_report(report: FormTestReport) -> None:
    for result in report.forms:
        summary = result.summary
        typer.echo(
            f"Form {result.form.id}: {summary.fields_passed}/{summary.total_fields} fields passed "
            f"({summary.pass_rate}%), {summary.critical_issues} critical, {summary.warnings} warnings"
        )
        for issue in result.issues:
            where = f"{issue.field}: " if issue.field else ""
            typer.echo(f"  [{issue.severity.value.upper()}] {where}{issue.message}")
        if result.submission is not None:
            typer.echo(f"  submission: {result.submission.message}")
    typer.echo(f"Report saved: {report.report_path}")


@form_app.command("analyze")
def form_analyze(
    url: Annotated[str, typer.Argument(help="Page with the forms to analyse.")],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the form schema as JSON to this file."),
    ] = None,
    credentials: CredentialsOption = None,
) -> None:
    """Discover the forms of a page and print their fields and rules."""

    parsed = _parse_credentials(credentials)
    config = _with_headless(load_config(config_path, env_file=env_file), headless)
    tester = FormTester(
        config,
        build_driver(config.browser),
        build_notifier(config.notifications),
        advisor=build_advisor(config.obstacles),
    )
    try:
        schema = tester.analyze(url, credentials=parsed)
    except PilotError as exc:
        typer.echo(f"Form analysis failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    _print_schema(schema)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(schema.model_dump_json(indent=2), encoding="utf-8")
        typer.echo(f"Schema saved: {output}")


@form_app.command("test")
def form_test(
    url: Annotated[str, typer.Argument(help="Page with the forms to test.")],
    mode: Annotated[
        Optional[FormTestMode],
        typer.Option("--mode", help="quick: required fields, standard: + formats, full: + submission."),
    ] = None,
    ai_mode: Annotated[
        Optional[AIMode],
        typer.Option("--ai-mode", help="How the obstacle advisor is used."),
    ] = None,
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
    output: OutputOption = None,
    credentials: CredentialsOption = None,
) -> None:
    """Test required and format validation of every form on a page."""

    parsed = _parse_credentials(credentials)
    overrides: dict[str, Any] = {}
    if output is not None:
        overrides["output_dir"] = str(output)
    if ai_mode is not None:
        overrides["obstacles"] = {"ai_mode": ai_mode.value}
    config = _with_headless(load_config(config_path, env_file=env_file, **overrides), headless)
    tester = FormTester(
        config,
        build_driver(config.browser),
        build_notifier(config.notifications),
        output_dir=config.output_dir,
        advisor=build_advisor(config.obstacles),
    )
    try:
        report = tester.test(url, mode=mode, credentials=parsed)
    except PilotError as exc:
        typer.echo(f"Form test failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    _print_form_report(report)
    if report.summary.critical_issues:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
