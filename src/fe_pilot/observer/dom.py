"""Bounded DOM summaries extracted via page introspection."""

from __future__ import annotations

import enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import ObserverConfig

DOM_SUMMARY_SCRIPT = """
(limit) => {
  const isVisible = (el) => {
    if (!el || !(el instanceof Element)) return false;
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    return el.getClientRects().length > 0;
  };
  const label = (el) =>
    (el.innerText || el.textContent || el.value || el.getAttribute('aria-label') || '').trim();
  const selectorFor = (el, fallback) => {
    if (el.id) return '#' + el.id;
    if (el.getAttribute('name')) return el.tagName.toLowerCase() + '[name="' + el.getAttribute('name') + '"]';
    return fallback;
  };

  const visibleText = [];
  const walker = document.createTreeWalker(document.body || document.documentElement, NodeFilter.SHOW_TEXT);
  while (walker.nextNode() && visibleText.length < limit * 4) {
    const text = walker.currentNode.textContent.trim();
    if (text && text.length <= 200 && isVisible(walker.currentNode.parentElement)) visibleText.push(text);
  }

  const buttonEls = Array.from(document.querySelectorAll(
    'button, input[type="button"], input[type="submit"], [role="button"]'));
  const buttons = buttonEls.filter(isVisible).map(label).filter(Boolean);

  const inputEls = Array.from(document.querySelectorAll('input, textarea, select'))
    .filter((i) => i.type !== 'hidden');
  const inputs = inputEls
    .map((i) => i.getAttribute('aria-label') || i.placeholder || i.name || i.id || '')
    .filter(Boolean);

  const links = Array.from(document.querySelectorAll('a[href]'))
    .filter(isVisible).map(label).filter(Boolean);

  const dropdowns = Array.from(document.querySelectorAll('select')).map((s) => ({
    trigger: selectorFor(s, 'select'),
    is_open: false,
    options: Array.from(s.options).map((o) => o.text),
    selected_value: s.value,
    type: 'native',
  }));
  Array.from(document.querySelectorAll('[role="combobox"], [role="listbox"]')).forEach((c) => {
    dropdowns.push({
      trigger: selectorFor(c, '[role="' + c.getAttribute('role') + '"]'),
      is_open: c.getAttribute('aria-expanded') === 'true',
      options: Array.from(c.querySelectorAll('[role="option"]')).map((o) => o.textContent.trim()),
      selected_value: null,
      type: c.getAttribute('role') === 'combobox' ? 'autocomplete' : 'custom',
    });
  });

  const fieldSelector = 'input:not([type="hidden"]):not([type="submit"]):not([type="button"]), textarea, select';
  const isFilled = (i) => (i.type === 'checkbox' || i.type === 'radio') ? i.checked : !!(i.value && String(i.value).trim());
  const forms = Array.from(document.querySelectorAll('form')).map((f, index) => {
    const fields = Array.from(f.querySelectorAll(fieldSelector));
    const required = fields.filter((i) => i.required || i.getAttribute('aria-required') === 'true');
    const submit = f.querySelector('button[type="submit"], input[type="submit"], button:not([type])');
    return {
      selector: f.id ? '#' + f.id : 'form:nth-of-type(' + (index + 1) + ')',
      fields: fields.length,
      filled_fields: fields.filter(isFilled).length,
      required_fields: required.length,
      filled_required: required.filter(isFilled).length,
      has_validation_errors: f.querySelectorAll(':invalid').length > 0,
      submit_button: submit ? label(submit) || 'Submit' : null,
    };
  });

  const allFields = Array.from(document.querySelectorAll(fieldSelector));
  const requiredFields = allFields.filter((i) => i.required || i.getAttribute('aria-required') === 'true');

  const modals = Array.from(document.querySelectorAll(
    '[role="dialog"], [aria-modal="true"], .modal, [class*="modal" i]'))
    .filter(isVisible)
    .map((m) => ({
      selector: selectorFor(m, m.getAttribute('role') === 'dialog' ? '[role="dialog"]' : '.modal'),
      is_visible: true,
      title: (m.querySelector('h1, h2, h3, [class*="title" i]') || {}).textContent || null,
      buttons: Array.from(m.querySelectorAll('button')).map(label).filter(Boolean),
    }));

  const loading = ['.loading', '.spinner', '[class*="loading" i]', '[aria-busy="true"]', '[class*="skeleton" i]']
    .filter((sel) => Array.from(document.querySelectorAll(sel)).some(isVisible));

  return {
    url: window.location.href,
    title: document.title,
    visible_text: visibleText,
    buttons,
    inputs,
    links,
    dropdowns,
    forms,
    modals,
    loading_indicators: loading,
    field_counts: {
      total: allFields.length,
      filled: allFields.filter(isFilled).length,
      required: requiredFields.length,
      filled_required: requiredFields.filter(isFilled).length,
    },
  };
}
"""

FORM_VALIDATION_SCRIPT = """
(selector) => {
  const form = document.querySelector(selector || 'form');
  if (!form) return null;
  const fields = [];
  const errors = [];
  form.querySelectorAll('input, select, textarea').forEach((i) => {
    if (i.type === 'hidden' || i.type === 'submit' || i.type === 'button') return;
    const field = {
      selector: i.id ? '#' + i.id : '[name="' + i.name + '"]',
      name: i.name || i.id || null,
      type: i.type || i.tagName.toLowerCase(),
      required: !!i.required,
      filled: (i.type === 'checkbox' || i.type === 'radio') ? i.checked : !!i.value,
      valid: i.checkValidity ? i.checkValidity() : true,
      validation_message: i.validationMessage || null,
    };
    fields.push(field);
    if (!field.valid && field.validation_message) {
      errors.push({
        field: field.name || field.selector,
        selector: field.selector,
        message: field.validation_message,
        type: field.required && !field.filled ? 'required' : 'custom',
      });
    }
  });
  return {
    is_valid: form.checkValidity ? form.checkValidity() : errors.length === 0,
    fields,
    validation_errors: errors,
  };
}
"""

VALIDATION_MESSAGES_SCRIPT = """
() => {
  const errors = [];
  document.querySelectorAll(':invalid').forEach((i) => {
    if (i.validationMessage) errors.push(i.validationMessage);
  });
  ['.error', '.error-message', '[class*="error" i]', '.invalid-feedback', '[role="alert"]'].forEach((sel) => {
    document.querySelectorAll(sel).forEach((el) => {
      if (el.offsetParent !== null && el.textContent) errors.push(el.textContent.trim());
    });
  });
  return Array.from(new Set(errors)).filter((e) => e.length > 0);
}
"""

PERFORMANCE_SCRIPT = """
() => {
  const nav = performance.getEntriesByType('navigation')[0];
  const paint = performance.getEntriesByName('first-contentful-paint')[0];
  if (!nav) return null;
  return {
    page_load_time: nav.loadEventEnd - nav.startTime,
    dom_content_loaded: nav.domContentLoadedEventEnd - nav.startTime,
    first_contentful_paint: paint ? paint.startTime : null,
  };
}
"""

_KEY_ACTION_WORDS = ("login", "log in", "sign in", "submit", "next", "save", "continue", "register")


class FormStatus(str, enum.Enum):
    NO_FORM = "no-form"
    EMPTY = "empty"
    PARTIALLY_FILLED = "partially-filled"
    COMPLETE = "complete"


class DropdownInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger: str
    is_open: bool = False
    options: list[str] = Field(default_factory=list)
    selected_value: Optional[str] = None
    type: str = "native"


class FormInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: str
    fields: int = 0
    filled_fields: int = 0
    required_fields: int = 0
    filled_required: int = 0
    has_validation_errors: bool = False
    submit_button: Optional[str] = None


class ModalInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: str
    is_visible: bool = True
    title: Optional[str] = None
    buttons: list[str] = Field(default_factory=list)


class InteractiveSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_buttons: int = 0
    total_inputs: int = 0
    total_links: int = 0
    key_actions: list[str] = Field(default_factory=list)
    form_status: FormStatus = FormStatus.NO_FORM


class PageSummary(BaseModel):
    """Bounded, deduplicated summary of the interactive page content."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    title: str = ""
    visible_text: list[str] = Field(default_factory=list)
    buttons: list[str] = Field(default_factory=list)
    inputs: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    dropdowns: list[DropdownInfo] = Field(default_factory=list)
    forms: list[FormInfo] = Field(default_factory=list)
    modals: list[ModalInfo] = Field(default_factory=list)
    loading_indicators: list[str] = Field(default_factory=list)
    summary: InteractiveSummary = Field(default_factory=InteractiveSummary)

    @property
    def has_modal(self) -> bool:
        return bool(self.modals)


class FormFieldState(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: str
    name: Optional[str] = None
    type: str = "text"
    required: bool = False
    filled: bool = False
    valid: bool = True
    validation_message: Optional[str] = None


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    selector: str
    message: str
    type: str = "custom"


class FormValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool = True
    fields: list[FormFieldState] = Field(default_factory=list)
    validation_errors: list[ValidationIssue] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_load_time: float = 0.0
    dom_content_loaded: float = 0.0
    first_contentful_paint: Optional[float] = None


def bounded_unique(items: Iterable[Any], limit: int) -> list[str]:
    """Strip, drop empties and duplicates, keep order, cap at ``limit``."""

    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item is None:
            continue
        text = " ".join(str(item).split())
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
        if len(result) >= limit:
            break
    return result


def compute_form_status(total: int, filled: int, required: int, filled_required: int) -> FormStatus:
    """Coarse completion status from filled vs required input counts."""

    if total <= 0:
        return FormStatus.NO_FORM
    if required > 0:
        if filled_required >= required:
            return FormStatus.COMPLETE
        return FormStatus.EMPTY if filled == 0 else FormStatus.PARTIALLY_FILLED
    if filled == 0:
        return FormStatus.EMPTY
    if filled >= total:
        return FormStatus.COMPLETE
    return FormStatus.PARTIALLY_FILLED


def build_page_summary(raw: dict[str, Any], limits: ObserverConfig) -> PageSummary:
    """Turn the raw script result into a capped :class:`PageSummary`."""

    buttons = bounded_unique(raw.get("buttons") or [], limits.max_buttons)
    inputs = bounded_unique(raw.get("inputs") or [], limits.max_inputs)
    links = bounded_unique(raw.get("links") or [], limits.max_links)
    counts = raw.get("field_counts") or {}
    status = compute_form_status(
        int(counts.get("total", 0)),
        int(counts.get("filled", 0)),
        int(counts.get("required", 0)),
        int(counts.get("filled_required", 0)),
    )
    key_actions = [
        button for button in buttons if any(word in button.lower() for word in _KEY_ACTION_WORDS)
    ][:10]
    return PageSummary(
        url=raw.get("url") or "",
        title=raw.get("title") or "",
        visible_text=bounded_unique(raw.get("visible_text") or [], limits.max_text),
        buttons=buttons,
        inputs=inputs,
        links=links,
        dropdowns=[DropdownInfo.model_validate(item) for item in raw.get("dropdowns") or []],
        forms=[FormInfo.model_validate(item) for item in raw.get("forms") or []],
        modals=[ModalInfo.model_validate(item) for item in raw.get("modals") or []],
        loading_indicators=list(raw.get("loading_indicators") or []),
        summary=InteractiveSummary(
            total_buttons=len(buttons),
            total_inputs=len(inputs),
            total_links=len(links),
            key_actions=key_actions,
            form_status=status,
        ),
    )
