"""Loading, variable substitution and validation of YAML scenarios."""

from __future__ import annotations

import random
import re
import string
import time
import uuid
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field

from .errors import ValidationError
from .models import Action, Credentials

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_CALL = re.compile(r"^(\w+(?:\.\w+)*)\(([^)]*)\)$")

_FIRST_NAMES = ("John", "Jane", "Alex", "Maria", "Michael", "Sarah")
_LAST_NAMES = ("Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia")
_CITIES = ("New York", "Los Angeles", "Chicago", "Tashkent")
_WORDS = ("lorem", "ipsum", "dolor", "sit", "amet")


class Viewport(BaseModel):
    width: int = 1280
    height: int = 720


class ScenarioConfig(BaseModel):
    """Per-scenario run options. camelCase keys are accepted."""

    model_config = ConfigDict(populate_by_name=True)

    headless: Optional[bool] = None
    viewport: Optional[Viewport] = None
    timeout: Optional[float] = Field(default=None, description="Default action timeout in seconds.")
    screenshot_on_error: bool = Field(default=True, alias="screenshotOnError")
    screenshot_on_step: bool = Field(default=False, alias="screenshotOnStep")
    stop_on_first_failure: bool = Field(default=True, alias="stopOnFirstFailure")
    retry_failed_steps: int = Field(default=0, ge=0, alias="retryFailedSteps")
    detect_validation_errors: bool = Field(default=True, alias="detectValidationErrors")
    handle_obstacles: bool = Field(default=False, alias="handleObstacles")


class Scenario(BaseModel):
    name: str
    url: str
    description: Optional[str] = None
    credentials: Optional[Credentials] = None
    variables: dict[str, Any] = Field(default_factory=dict)
    steps: list[Action]
    config: ScenarioConfig = Field(default_factory=ScenarioConfig)


def _choice(options: tuple[str, ...]) -> Callable[[], str]:
    return lambda: random.choice(options)


def _first_name() -> str:
    return random.choice(_FIRST_NAMES)


def _shift_years(years: int) -> str:
    return (date.today() + timedelta(days=365 * years)).isoformat()


def _generators() -> dict[str, Any]:
    return {
        "person": {
            "firstName": _first_name,
            "lastName": _choice(_LAST_NAMES),
            "fullName": lambda: f"{_first_name()} {random.choice(_LAST_NAMES)}",
        },
        "internet": {
            "email": lambda: f"{_first_name().lower()}{random.randint(0, 999)}@test.com",
            "password": lambda: "Test"
            + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
            + "!",
            "username": lambda: f"{_first_name().lower()}{random.randint(0, 999)}",
        },
        "phone": {"number": lambda: f"+1{random.randint(1_000_000_000, 9_999_999_999)}"},
        "location": {
            "city": _choice(_CITIES),
            "address": lambda: f"{random.randint(1, 9999)} Main St",
            "zipCode": lambda: str(random.randint(10000, 99999)),
        },
        "lorem": {
            "word": _choice(_WORDS),
            "sentence": lambda: " ".join(random.choice(_WORDS) for _ in range(8)) + ".",
        },
        "date": {
            "future": lambda years=1: _shift_years(random.randint(1, max(1, int(years)))),
            "past": lambda years=1: _shift_years(-random.randint(1, max(1, int(years)))),
        },
        "number": {
            "int": lambda low=0, high=100: random.randint(int(low), int(high)),
            "float": lambda low=0, high=100, digits=2: round(random.uniform(low, high), int(digits)),
        },
        "datatype": {
            "uuid": lambda: str(uuid.uuid4()),
            "boolean": lambda: random.random() > 0.5,
        },
    }


def build_variables(
    url: str,
    credentials: Optional[Credentials] = None,
    variables: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Return the namespace ``{{ ... }}`` expressions are resolved against."""

    generators = _generators()
    return {
        "url": url,
        "credentials": credentials.model_dump() if credentials else None,
        **(variables or {}),
        "faker": generators,
        "random": {
            "int": generators["number"]["int"],
            "float": generators["number"]["float"],
            "boolean": generators["datatype"]["boolean"],
            "uuid": generators["datatype"]["uuid"],
        },
        "timestamp": int(time.time() * 1000),
        "date": date.today().isoformat(),
    }


def substitute_variables(value: Any, variables: dict[str, Any]) -> Any:
    """Replace ``{{ expr }}`` placeholders in strings nested anywhere in ``value``.

    ``expr`` is a dotted path into ``variables``, optionally called with
    literal arguments (``{{ random.int(1, 10) }}``). Unknown expressions are
    left untouched.
    """

    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda match: _render(match, variables), value)
    if isinstance(value, list):
        return [substitute_variables(item, variables) for item in value]
    if isinstance(value, dict):
        return {key: substitute_variables(item, variables) for key, item in value.items()}
    return value


def _render(match: re.Match[str], variables: dict[str, Any]) -> str:
    expression = match.group(1).strip()
    call = _CALL.match(expression)
    if call:
        target = _lookup(variables, call.group(1))
        if callable(target):
            args = [_literal(arg) for arg in call.group(2).split(",") if arg.strip()]
            try:
                return _stringify(target(*args))
            except (TypeError, ValueError):
                return match.group(0)
    result = _lookup(variables, expression)
    if callable(result):
        try:
            result = result()
        except (TypeError, ValueError):
            return match.group(0)
    if result is None:
        return match.group(0)
    return _stringify(result)


def _lookup(variables: dict[str, Any], path: str) -> Any:
    current: Any = variables
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _literal(raw: str) -> Any:
    text = raw.strip()
    if text in {"true", "false"}:
        return text == "true"
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text.strip("'\"")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_scenario(
    data: Any,
    *,
    substitute: bool = True,
    credentials: Optional[Credentials] = None,
) -> Scenario:
    """Validate raw scenario data, reporting every bad step as ``Step N: ...``.

    ``credentials`` replaces the credentials of the scenario file and is
    visible to ``{{ credentials.* }}`` expressions.
    """

    if not isinstance(data, dict):
        raise ValidationError("Scenario must be a mapping")
    missing = [
        f'Missing "{key}" field'
        for key in ("name", "url")
        if not data.get(key)
    ]
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        missing.append('Missing "steps" field')
    if missing:
        raise ValidationError(f"Invalid scenario: {'; '.join(missing)}", missing)

    try:
        if credentials is None and data.get("credentials"):
            credentials = Credentials.model_validate(data["credentials"])
        config = ScenarioConfig.model_validate(data.get("config") or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid scenario: {exc}", [str(exc)]) from exc

    if substitute:
        variables = build_variables(data["url"], credentials, data.get("variables"))
        raw_steps = substitute_variables(raw_steps, variables)

    steps: list[Action] = []
    errors: list[str] = []
    for number, raw in enumerate(raw_steps, start=1):
        try:
            steps.append(Action.model_validate(raw))
        except pydantic.ValidationError as exc:
            for error in exc.errors():
                message = error["msg"].removeprefix("Value error, ")
                location = ".".join(str(part) for part in error["loc"])
                errors.append(f"Step {number}: {location + ': ' if location else ''}{message}")
    if errors:
        raise ValidationError(f"Invalid scenario: {len(errors)} error(s)", errors)

    return Scenario(
        name=data["name"],
        url=data["url"],
        description=data.get("description"),
        credentials=credentials,
        variables=data.get("variables") or {},
        steps=steps,
        config=config,
    )


def load_scenario(
    path: Path,
    *,
    substitute: bool = True,
    credentials: Optional[Credentials] = None,
) -> Scenario:
    """Load a scenario from a YAML file."""

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError(f"Failed to load scenario {path}: {exc}") from exc
    return parse_scenario(data, substitute=substitute, credentials=credentials)
