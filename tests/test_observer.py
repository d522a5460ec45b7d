from pathlib import Path

from fakes import FakeDriver

from fe_pilot.browser.base import DriverError
from fe_pilot.config import ObserverConfig
from fe_pilot.models import Action
from fe_pilot.observer.dom import DOM_SUMMARY_SCRIPT, FormStatus, compute_form_status
from fe_pilot.observer.engine import Observer
from fe_pilot.observer.events import EventLog, Severity


def _observer(driver: FakeDriver, tmp_path: Path, **config) -> Observer:
    return Observer(driver, tmp_path / "screenshots", config=ObserverConfig(**config))


def test_event_cursor_returns_each_entry_once():
    log: EventLog[int] = EventLog()
    cursor = log.cursor()
    log.append(1)
    log.append(2)

    assert cursor.peek() == [1, 2]
    assert cursor.drain() == [1, 2]
    log.append(3)
    assert cursor.drain() == [3]
    assert cursor.drain() == []
    assert log.entries() == [1, 2, 3]


def test_observation_reports_only_new_events(tmp_path: Path):
    driver = FakeDriver(url="https://app.test/")
    observer = _observer(driver, tmp_path)

    driver.emit_console("error", "Uncaught TypeError: x is undefined")
    driver.emit_console("log", "ready")
    driver.emit_response("https://app.test/api/items", 500)
    first = observer.capture_observation(1)

    assert first.new_errors.console_errors == 1
    assert first.new_errors.network_errors == 1
    assert len(first.new_console) == 2

    second = observer.capture_observation(2)
    assert second.new_console == []
    assert second.new_network == []
    assert not second.has_new_errors

    driver.emit_response("https://app.test/api/items", 200)
    third = observer.capture_observation(3)
    assert [entry.status for entry in third.new_network] == [200]
    assert third.new_errors.network_errors == 0


def test_pending_errors_do_not_consume_the_delta(tmp_path: Path):
    driver = FakeDriver()
    observer = _observer(driver, tmp_path)
    driver.emit_page_error("ReferenceError: foo is not defined")

    assert len(observer.pending_console_errors()) == 1
    assert observer.capture_observation(1).new_errors.console_errors == 1
    assert observer.pending_console_errors() == []


def test_url_change_is_tracked_between_observations(tmp_path: Path):
    driver = FakeDriver(url="https://app.test/login")
    observer = _observer(driver, tmp_path)

    first = observer.capture_observation(0)
    driver.set_url("https://app.test/dashboard")
    second = observer.capture_observation(4)

    assert first.url_changed is False
    assert second.url_before == "https://app.test/login"
    assert second.url_after == "https://app.test/dashboard"
    assert second.url_changed is True


def test_failing_section_degrades_to_partial_observation(tmp_path: Path):
    driver = FakeDriver(url="https://app.test/", title="App")

    def broken(_):
        raise DriverError("Execution context was destroyed")

    driver.scripts[DOM_SUMMARY_SCRIPT] = broken
    observation = _observer(driver, tmp_path).capture_observation(1)

    assert observation.page is None
    assert observation.omitted_sections == ["dom"]
    assert observation.title == "App"


def test_page_summary_is_bounded_and_deduplicated(tmp_path: Path):
    driver = FakeDriver()
    driver.scripts[DOM_SUMMARY_SCRIPT] = {
        "buttons": ["Submit", "Submit", " Cancel ", "Next", "Help"],
        "links": ["Home", "About"],
        "field_counts": {"total": 3, "filled": 1, "required": 2, "filled_required": 1},
    }

    page = _observer(driver, tmp_path, max_buttons=3).capture_observation(1).page

    assert page is not None
    assert page.buttons == ["Submit", "Cancel", "Next"]
    assert page.summary.key_actions == ["Submit", "Next"]
    assert page.summary.form_status == FormStatus.PARTIALLY_FILLED


def test_screenshot_is_taken_when_requested(tmp_path: Path):
    driver = FakeDriver()
    observer = _observer(driver, tmp_path)

    plain = observer.capture_observation(1, Action(action="scroll"))
    shot = observer.capture_observation(2, Action(action="screenshot"))

    assert plain.screenshot is None
    assert shot.screenshot is not None
    assert Path(shot.screenshot).exists()
    assert Path(shot.screenshot).name.startswith("step-2-")


def test_error_summary_groups_repeated_messages(tmp_path: Path):
    driver = FakeDriver()
    observer = _observer(driver, tmp_path)
    for _ in range(3):
        driver.emit_console("error", "Failed to fetch")
    driver.emit_console("warning", "Something odd")
    driver.emit_console("warning", "componentWillMount is deprecated")

    summary = observer.error_summary()

    assert summary.critical.count == 1
    assert summary.critical.items[0].count == 3
    assert summary.critical.items[0].source == "network"
    assert summary.warning.count == 1
    assert summary.info.count == 1


def test_form_status_thresholds():
    assert compute_form_status(0, 0, 0, 0) == FormStatus.NO_FORM
    assert compute_form_status(3, 0, 2, 0) == FormStatus.EMPTY
    assert compute_form_status(3, 2, 2, 2) == FormStatus.COMPLETE
    assert compute_form_status(2, 2, 0, 0) == FormStatus.COMPLETE


def test_console_severity_classification(tmp_path: Path):
    driver = FakeDriver()
    observer = _observer(driver, tmp_path)
    driver.emit_console("debug", "trace")
    driver.emit_console("error", "boom")

    entries = observer.events.console.entries()

    assert [entry.severity for entry in entries] == [Severity.DEBUG, Severity.CRITICAL]
