import json

import httpx
import pytest

from fakes import FakeDriver

from fe_pilot.browser.base import DriverError
from fe_pilot.config import LLMConfig, ObstacleConfig
from fe_pilot.errors import AdvisorError, BudgetExceeded, CaptchaBlocker, ObstacleUnresolved
from fe_pilot.models import Credentials
from fe_pilot.obstacles.advisor import (
    ObstacleAdvice,
    ObstacleAdvisor,
    ObstacleContext,
    OpenAIObstacleAdvisor,
    parse_advice,
)
from fe_pilot.obstacles.detection import OBSTACLE_DETECTION_SCRIPT, Obstacle, ObstacleType
from fe_pilot.obstacles.resolver import ObstacleResolver


def _page_with_obstacle(kind: str, selector: str) -> FakeDriver:
    driver = FakeDriver(url="https://shop.test/", title="Shop")
    container = driver.add(selector, tag="div")
    driver.scripts[OBSTACLE_DETECTION_SCRIPT] = lambda _: (
        {"type": kind, "description": f"{kind} overlay", "element": selector}
        if container.is_visible()
        else None
    )
    return driver


def _hide(selector: str):
    def hide(driver: FakeDriver) -> None:
        driver.elements[selector].visible = False

    return hide


class StubAdvisor(ObstacleAdvisor):
    def __init__(self, advice: ObstacleAdvice) -> None:
        self.advice = advice
        self.contexts: list[ObstacleContext] = []

    def advise(self, context: ObstacleContext) -> ObstacleAdvice:
        self.contexts.append(context)
        return self.advice


def test_cookie_banner_is_accepted_in_one_iteration():
    driver = _page_with_obstacle("cookie-consent", "#cookie-banner")
    driver.add('button:has-text("Accept")', tag="button", on_click=_hide("#cookie-banner"))
    resolver = ObstacleResolver(driver)

    assert resolver.clear_obstacles() is True
    assert resolver.cleared == 1
    assert [obstacle.type for obstacle in resolver.encountered] == [ObstacleType.COOKIE_CONSENT]
    assert ("click", 'button:has-text("Accept")') in driver.calls


def test_captcha_is_a_blocker():
    driver = _page_with_obstacle("captcha", ".g-recaptcha")
    resolver = ObstacleResolver(driver)

    with pytest.raises(CaptchaBlocker):
        resolver.ensure_clear()
    assert resolver.clear_obstacles() is False


def test_login_wall_with_credentials_submits_form():
    driver = _page_with_obstacle("login", "#login-modal")
    email = driver.add('input[type="email"]')
    password = driver.add('input[type="password"]')
    driver.add('button[type="submit"]', tag="button", on_click=_hide("#login-modal"))
    resolver = ObstacleResolver(driver, credentials=Credentials(username="qa@shop.test", password="s3cret"))

    assert resolver.ensure_clear() == 1
    assert email.value == "qa@shop.test"
    assert password.value == "s3cret"
    assert 2.0 in driver.pauses


def test_login_wall_without_credentials_uses_skip_affordance():
    driver = _page_with_obstacle("login", "#login-modal")
    driver.add('button:has-text("Skip")', tag="button", on_click=_hide("#login-modal"))

    assert ObstacleResolver(driver).ensure_clear() == 1


def test_modal_that_ignores_escape_is_unresolved():
    driver = _page_with_obstacle("modal", "#promo")
    resolver = ObstacleResolver(driver)

    with pytest.raises(ObstacleUnresolved):
        resolver.ensure_clear()
    assert driver.keys == ["Escape"]


def test_modal_closed_by_scoped_close_button():
    driver = _page_with_obstacle("popup", "#newsletter")
    driver.add("#newsletter .close", tag="button", on_click=_hide("#newsletter"))

    assert ObstacleResolver(driver).ensure_clear() == 1


def test_advisor_consulted_only_after_rules_fail():
    driver = _page_with_obstacle("modal", "#odd-dialog")
    driver.add("#odd-dialog footer button", tag="button", on_click=_hide("#odd-dialog"))
    advisor = StubAdvisor(
        ObstacleAdvice(
            action="close_modal",
            reasoning="Footer button dismisses the dialog",
            steps=[{"type": "click", "selector": "#odd-dialog footer button"}],
        )
    )
    resolver = ObstacleResolver(driver, ObstacleConfig(ai_mode="hybrid"), advisor=advisor)

    assert resolver.ensure_clear() == 1
    assert resolver.ai_calls == 1
    assert driver.keys == ["Escape"]
    assert advisor.contexts[0].obstacle.element == "#odd-dialog"
    assert advisor.contexts[0].screenshot == b"png"


def test_advisor_respects_cost_budget():
    driver = _page_with_obstacle("modal", "#odd-dialog")
    advisor = StubAdvisor(ObstacleAdvice(action="wait"))
    config = ObstacleConfig(ai_mode="hybrid", max_ai_cost=0.01, cost_per_call=0.02)
    resolver = ObstacleResolver(driver, config, advisor=advisor)

    with pytest.raises(BudgetExceeded):
        resolver.ensure_clear()
    assert advisor.contexts == []


def test_disabled_ai_mode_never_calls_advisor():
    driver = _page_with_obstacle("modal", "#odd-dialog")
    advisor = StubAdvisor(ObstacleAdvice(action="close_modal"))

    assert ObstacleResolver(driver, advisor=advisor).clear_obstacles() is False
    assert advisor.contexts == []


def test_always_mode_goes_straight_to_advisor():
    driver = _page_with_obstacle("popup", "#newsletter")
    driver.add("#newsletter .close", tag="button")
    driver.add("#newsletter .dismiss", tag="button", on_click=_hide("#newsletter"))
    advisor = StubAdvisor(
        ObstacleAdvice(action="close_modal", steps=[{"type": "click", "selector": "#newsletter .dismiss"}])
    )
    resolver = ObstacleResolver(driver, ObstacleConfig(ai_mode="always"), advisor=advisor)

    assert resolver.ensure_clear() == 1
    assert ("click", "#newsletter .close") not in driver.calls
    assert len(advisor.contexts) == 1


def test_detection_failure_is_treated_as_clear_page():
    driver = FakeDriver(url="https://shop.test/")

    def navigating(_arg):
        raise DriverError("Execution context was destroyed, most likely because of a navigation")

    driver.scripts[OBSTACLE_DETECTION_SCRIPT] = navigating
    resolver = ObstacleResolver(driver)

    assert resolver.clear_obstacles() is True
    assert resolver.ensure_clear() == 0
    assert driver.pauses == [0.5, 0.5]


def test_detection_retries_once_after_transient_failure():
    driver = _page_with_obstacle("cookie-consent", "#cookie-banner")
    driver.add('button:has-text("Accept")', tag="button", on_click=_hide("#cookie-banner"))
    detect = driver.scripts[OBSTACLE_DETECTION_SCRIPT]
    failures = [DriverError("Target page, context or browser has been closed")]

    def flaky(arg):
        if failures:
            raise failures.pop()
        return detect(arg)

    driver.scripts[OBSTACLE_DETECTION_SCRIPT] = flaky
    resolver = ObstacleResolver(driver)

    assert resolver.ensure_clear() == 1
    assert ("click", 'button:has-text("Accept")') in driver.calls


def test_parse_advice_rejects_garbage():
    advice = parse_advice('```json\n{"action": "report_blocker", "reasoning": "hard wall"}\n```')
    assert advice.action == "report_blocker"
    with pytest.raises(AdvisorError):
        parse_advice("I cannot help with that")


def test_openai_advisor_sends_screenshot_and_parses_reply():
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        reply = {"action": "dismiss_popup", "steps": [{"type": "press", "key": "Escape"}], "confidence": 0.8}
        return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(reply)}}]})

    advisor = OpenAIObstacleAdvisor(LLMConfig(model="vision-model", api_key="key"))
    advisor._client = httpx.Client(base_url="https://llm.test/v1", transport=httpx.MockTransport(handler))
    context = ObstacleContext(
        url="https://shop.test/",
        title="Shop",
        obstacle=Obstacle(type="popup", description="Newsletter popup", element="#nl"),
        screenshot=b"png",
    )

    advice = advisor.advise(context)

    assert advice.action == "dismiss_popup"
    content = requests[0]["messages"][0]["content"]
    assert requests[0]["model"] == "vision-model"
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_openai_advisor_requires_model():
    with pytest.raises(ValueError):
        OpenAIObstacleAdvisor(LLMConfig())
