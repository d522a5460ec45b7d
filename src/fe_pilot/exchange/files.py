"""File-based decision exchange inside a session directory."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Literal, Optional

import yaml
from pydantic import BaseModel

from ..errors import ExchangeTimeout, ValidationError
from ..models import BugReport, Decision
from .base import Checkpoint, DecisionChannel, ExchangeStatus
from .json_parser import parse_decision

LOGGER = logging.getLogger(__name__)


class FileExchange(DecisionChannel):
    """Exchange checkpoints and decisions through files a decision-maker polls.

    ``observation.<ext>`` is written before every request, the decision is
    expected in ``action.<ext>`` and is deleted once read. ``status.txt``
    holds ``RUNNING`` or ``WAITING_FOR_AI``.
    """

    def __init__(
        self,
        session_dir: Path,
        *,
        fmt: Literal["json", "yaml"] = "json",
        poll_interval: float = 1.0,
        timeout: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_dir = session_dir
        self.session_dir.mkdir(parents=True, exist_ok=True)
        self._format = fmt
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self.observation_file = session_dir / f"observation.{fmt}"
        self.action_file = session_dir / f"action.{fmt}"
        self.status_file = session_dir / "status.txt"
        self.session_file = session_dir / "session.json"
        self.bug_report_file = session_dir / "bug-report.json"

    def publish(self, checkpoint: Checkpoint) -> None:
        payload = checkpoint.model_dump(mode="json")
        if self._format == "yaml":
            content = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
        else:
            content = json.dumps(payload, indent=2)
        _write_atomic(self.observation_file, content)
        self.set_status(ExchangeStatus.WAITING_FOR_AI)
        LOGGER.info(
            "Checkpoint %s written to %s; waiting for %s",
            checkpoint.checkpoint,
            self.observation_file,
            self.action_file,
        )

    def await_decision(self, timeout: Optional[float] = None) -> Decision:
        limit = self._timeout if timeout is None else timeout
        deadline = self._clock() + limit
        polls = 0
        reread = False
        while True:
            polls += 1
            text = self._read_action()
            if text is not None:
                try:
                    decision = parse_decision(text, self._format)
                except ValidationError:
                    self._consume()
                    raise
                except ValueError as exc:
                    if not reread:
                        # the decision-maker may still be writing the file
                        reread = True
                        LOGGER.debug("Decision file not decodable yet: %s", exc)
                    else:
                        self._consume()
                        raise ValidationError(
                            f"Malformed decision in {self.action_file}: {exc}",
                            [str(exc)],
                        ) from exc
                else:
                    self._consume()
                    LOGGER.info("Decision received after %s polls: %s", polls, decision.decision.value)
                    return decision
            if self._clock() >= deadline:
                raise ExchangeTimeout(
                    f"No decision received after {limit}s. Expected file: {self.action_file} "
                    f"({polls} polls every {self._poll_interval}s)"
                )
            self._sleep(self._poll_interval)

    def set_status(self, status: ExchangeStatus) -> None:
        _write_atomic(self.status_file, status.value)

    def read_status(self) -> Optional[ExchangeStatus]:
        if not self.status_file.exists():
            return None
        return ExchangeStatus(self.status_file.read_text(encoding="utf-8").strip())

    def save_session(self, session: BaseModel) -> None:
        _write_atomic(self.session_file, session.model_dump_json(indent=2))

    def report_bug(self, report: BugReport) -> None:
        _write_atomic(
            self.bug_report_file,
            json.dumps(report.model_dump(mode="json", by_alias=True), indent=2),
        )
        LOGGER.warning("Bug reported: %s", self.bug_report_file)

    def _read_action(self) -> Optional[str]:
        try:
            return self.action_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _consume(self) -> None:
        self.action_file.unlink(missing_ok=True)
        self.set_status(ExchangeStatus.RUNNING)


def _write_atomic(path: Path, content: str) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)
