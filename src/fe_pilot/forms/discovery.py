"""Form discovery: a structural schema of every ``<form>`` on the page."""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..browser.base import BrowserDriver

LOGGER = logging.getLogger(__name__)

FORM_DISCOVERY_SCRIPT = """
() => {
  const text = (el) => (el && el.textContent ? el.textContent.replace(/\\s+/g, ' ').trim() : '');
  const attr = (el, name) => el.getAttribute(name) || null;
  return Array.from(document.querySelectorAll('form')).map((form, formIndex) => {
    let formSelector = form.id ? '#' + form.id : null;
    if (!formSelector) {
      form.setAttribute('data-fe-pilot-form', String(formIndex));
      formSelector = '[data-fe-pilot-form="' + formIndex + '"]';
    }
    const fields = [];
    const radioGroups = new Set();
    form.querySelectorAll('input, select, textarea').forEach((el, fieldIndex) => {
      const type = (el.type || el.tagName).toLowerCase();
      if (['submit', 'button', 'hidden', 'reset', 'image'].includes(type)) return;
      if (type === 'radio' && el.name) {
        if (radioGroups.has(el.name)) return;
        radioGroups.add(el.name);
      }
      let label = '';
      if (el.id) label = text(form.querySelector('label[for="' + el.id + '"]'));
      if (!label) label = text(el.closest('label'));
      if (!label) label = el.getAttribute('aria-label') || el.placeholder || el.name || 'Field ' + (fieldIndex + 1);
      let selector;
      if (el.id) selector = '#' + el.id;
      else if (el.name) selector = '[name="' + el.name + '"]';
      else {
        const marker = formIndex + '-' + fieldIndex;
        el.setAttribute('data-fe-pilot-field', marker);
        selector = '[data-fe-pilot-field="' + marker + '"]';
      }
      const rules = [];
      if (el.required || el.getAttribute('aria-required') === 'true') rules.push({type: 'required'});
      if (type === 'email') rules.push({type: 'email'});
      if (attr(el, 'pattern')) rules.push({type: 'pattern', value: attr(el, 'pattern')});
      if (el.minLength > 0) rules.push({type: 'min_length', value: el.minLength});
      if (el.maxLength > 0) rules.push({type: 'max_length', value: el.maxLength});
      if (attr(el, 'min')) rules.push({type: 'min', value: attr(el, 'min')});
      if (attr(el, 'max')) rules.push({type: 'max', value: attr(el, 'max')});
      fields.push({
        id: el.id || el.name || 'field-' + formIndex + '-' + fieldIndex,
        type,
        selector,
        label,
        required: rules.some((r) => r.type === 'required'),
        disabled: !!el.disabled,
        validation_rules: rules,
        placeholder: el.placeholder || null,
        aria_label: attr(el, 'aria-label'),
        autocomplete: attr(el, 'autocomplete'),
        options: el.tagName.toLowerCase() === 'select'
          ? Array.from(el.options).map((o) => ({value: o.value, label: o.text.trim()}))
          : [],
      });
    });
    const submit = form.querySelector('button[type="submit"], input[type="submit"], button:not([type])');
    let submitButton = null;
    if (submit) {
      let submitSelector = submit.id ? '#' + submit.id : null;
      if (!submitSelector) {
        submit.setAttribute('data-fe-pilot-field', formIndex + '-submit');
        submitSelector = '[data-fe-pilot-field="' + formIndex + '-submit"]';
      }
      submitButton = {text: text(submit) || submit.value || 'Submit', selector: submitSelector};
    }
    return {
      id: form.id || 'form-' + formIndex,
      name: attr(form, 'name'),
      action: form.action || null,
      method: form.method || null,
      selector: formSelector,
      fields,
      submit_button: submitButton,
    };
  });
}
"""


class RuleType(str, enum.Enum):
    REQUIRED = "required"
    EMAIL = "email"
    PATTERN = "pattern"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    MIN = "min"
    MAX = "max"


class ValidationRule(BaseModel):
    type: RuleType
    value: Optional[Union[int, float, str]] = None


class FieldOption(BaseModel):
    value: str
    label: str = ""


class DiscoveredField(BaseModel):
    """One input, select or textarea of a form."""

    id: str
    type: str = "text"
    selector: str
    label: str = ""
    required: bool = False
    disabled: bool = False
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None
    autocomplete: Optional[str] = None
    options: list[FieldOption] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if value == "select-one":
            return "select"
        if value == "select-multiple":
            return "multiselect"
        return value

    def rule(self, kind: RuleType) -> Optional[ValidationRule]:
        for rule in self.validation_rules:
            if rule.type == kind:
                return rule
        return None

    @property
    def is_choice(self) -> bool:
        return self.type in {"select", "multiselect", "checkbox", "radio"}


class SubmitButton(BaseModel):
    text: str = "Submit"
    selector: str


class DiscoveredForm(BaseModel):
    id: str
    name: Optional[str] = None
    action: Optional[str] = None
    method: Optional[str] = None
    selector: str = "form"
    fields: list[DiscoveredField] = Field(default_factory=list)
    submit_button: Optional[SubmitButton] = None


class FormSchema(BaseModel):
    """Everything ``form analyze`` found on a page."""

    url: str
    title: str = ""
    forms: list[DiscoveredForm] = Field(default_factory=list)


class FormDiscovery:
    def __init__(self, driver: BrowserDriver) -> None:
        self._driver = driver

    def detect_forms(self) -> list[DiscoveredForm]:
        """Return the schema of every form, in document order.

        Fields and forms without an id or name are tagged with a
        ``data-fe-pilot-*`` attribute so the returned selectors stay unique.
        """

        raw = self._driver.evaluate(FORM_DISCOVERY_SCRIPT) or []
        forms = [DiscoveredForm.model_validate(item) for item in raw]
        LOGGER.info(
            "Discovered %s form(s) with %s field(s)",
            len(forms),
            sum(len(form.fields) for form in forms),
        )
        return forms
