"""Rule-based detection of UI elements that block interaction."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict

OBSTACLE_DETECTION_SCRIPT = """
() => {
  const visible = (el) => {
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden'
      && el.clientHeight > 0 && el.clientWidth > 0;
  };
  const selectorFor = (el, fallback) => {
    if (el.id) return '#' + CSS.escape(el.id);
    const cls = (el.getAttribute('class') || '').trim().split(/\\s+/)[0];
    return cls ? '.' + CSS.escape(cls) : fallback;
  };
  const found = (type, description, el, fallback) => ({
    type, description, element: selectorFor(el, fallback),
  });

  const captcha = document.querySelector('.g-recaptcha, iframe[src*="recaptcha"], .h-captcha, iframe[src*="hcaptcha"]');
  if (captcha) return found('captcha', 'CAPTCHA detected', captcha, '.g-recaptcha');

  for (const el of document.querySelectorAll(
      '[class*="cookie" i], [id*="cookie" i], [class*="consent" i], [id*="consent" i]')) {
    if (visible(el)) return found('cookie-consent', 'Cookie consent banner', el, 'div');
  }

  for (const el of document.querySelectorAll(
      '[class*="login" i], [class*="auth" i], [class*="signin" i], [aria-label*="login" i]')) {
    const dialog = el.closest('[class*="modal" i], [role="dialog"]');
    if (dialog && visible(dialog)) return found('login', 'Login/auth modal', dialog, '[role="dialog"]');
  }

  for (const el of document.querySelectorAll(
      '[class*="modal" i], [role="dialog"], [class*="popup" i], [class*="overlay" i]')) {
    if (visible(el) && el.clientHeight > 100 && el.clientWidth > 100) {
      return found('modal', 'Generic modal/popup', el, '[role="dialog"]');
    }
  }

  const newsletter = document.querySelector('[class*="newsletter" i], [class*="subscribe" i]');
  if (newsletter && visible(newsletter)) {
    return found('popup', 'Newsletter subscription popup', newsletter, 'div');
  }
  return null;
}
"""


class ObstacleType(str, enum.Enum):
    COOKIE_CONSENT = "cookie-consent"
    LOGIN = "login"
    MODAL = "modal"
    POPUP = "popup"
    CAPTCHA = "captcha"


class Obstacle(BaseModel):
    """A detected blocking element and the selector that scopes it."""

    model_config = ConfigDict(frozen=True)

    type: ObstacleType
    description: str
    element: str
