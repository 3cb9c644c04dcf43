"""Page-level operations used by the dispatcher on the live engine."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..browser.base import LivePage

LOGGER = logging.getLogger(__name__)

FILL_FIELD_SCRIPT = """
(args) => {
  const form = document.querySelectorAll("form")[args.formIndex - 1];
  if (!form) return false;
  const target = form.querySelector(`[name="${CSS.escape(args.fieldName)}"]`);
  if (!target) return false;
  target.value = args.value;
  target.dispatchEvent(new Event("input", { bubbles: true }));
  target.dispatchEvent(new Event("change", { bubbles: true }));
  return true;
}
"""

SUBMIT_FORM_SCRIPT = """
(args) => {
  const form = document.querySelectorAll("form")[args.formIndex - 1];
  if (!form) return "missing";
  for (const [name, value] of Object.entries(args.values)) {
    const target = form.querySelector(`[name="${CSS.escape(name)}"]`);
    if (!target) continue;
    target.value = value;
    target.dispatchEvent(new Event("input", { bubbles: true }));
    target.dispatchEvent(new Event("change", { bubbles: true }));
  }
  if (typeof form.requestSubmit === "function") {
    try {
      form.requestSubmit();
      return "requestSubmit";
    } catch (err) {}
  }
  HTMLFormElement.prototype.submit.call(form);
  return "submit";
}
"""

SCROLL_SCRIPT = """
(args) => {
  const target = args.selector ? document.querySelector(args.selector) : null;
  if (args.toTop) {
    if (target) target.scrollTop = 0; else window.scrollTo({ top: 0, left: 0 });
    return;
  }
  if (args.toBottom) {
    if (target) target.scrollTop = target.scrollHeight;
    else window.scrollTo({ top: document.body.scrollHeight, left: 0 });
    return;
  }
  (target || window).scrollBy({ left: args.deltaX, top: args.deltaY });
}
"""

EVALUATE_SCRIPT = """
(source) => {
  const fn = new Function(`return (${source});`);
  const value = fn();
  return typeof value === "function" ? value() : value;
}
"""

WAIT_FOR_TEXT_SCRIPT = """
(wanted) => Boolean(document.body && document.body.innerText.toLowerCase().includes(wanted.toLowerCase()))
"""

_MODIFIERS = {
    "alt": "Alt",
    "control": "Control",
    "ctrl": "Control",
    "meta": "Meta",
    "cmd": "Meta",
    "command": "Meta",
    "shift": "Shift",
}


def normalize_modifiers(values: list[str]) -> list[str]:
    result: list[str] = []
    for value in values:
        normalized = _MODIFIERS.get(value.strip().lower())
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def fill_field(
    page: LivePage,
    selector: str,
    form_index: int,
    field_name: str,
    value: str,
    *,
    timeout_ms: int,
    errors: tuple[type[BaseException], ...],
) -> bool:
    """Fill a form field in the page; returns whether the page accepted it."""

    try:
        page.locator(selector).first.fill(value, timeout=timeout_ms)
        return True
    except errors:
        LOGGER.debug("Locator fill failed for %s, falling back to DOM assignment", selector)
    try:
        return bool(
            page.evaluate(
                FILL_FIELD_SCRIPT,
                {"formIndex": form_index, "fieldName": field_name, "value": value},
            )
        )
    except errors:
        LOGGER.debug("DOM fill failed for %s", field_name)
        return False


def submit_form(
    page: LivePage,
    form_index: int,
    values: dict[str, str],
    *,
    timeout_ms: int,
    errors: tuple[type[BaseException], ...],
) -> str:
    method = str(page.evaluate(SUBMIT_FORM_SCRIPT, {"formIndex": form_index, "values": values}))
    try:
        page.wait_for_load_state("domcontentloaded", timeout=min(timeout_ms, 5000))
    except errors:
        LOGGER.debug("No navigation observed after submitting form %s", form_index)
    page.wait_for_timeout(250)
    return method


def click_with_popup(
    page: LivePage,
    selector: str,
    *,
    timeout_ms: int,
    popup_wait_ms: int,
    button: str,
    click_count: int,
    modifiers: list[str],
    timeout_error: type[BaseException],
    errors: tuple[type[BaseException], ...],
) -> Optional[LivePage]:
    """Click ``selector`` and return the popup page it opened, if any."""

    options: dict[str, Any] = {"timeout": timeout_ms, "button": button, "click_count": click_count}
    if modifiers:
        options["modifiers"] = modifiers
    before_url = page.url
    locator = page.locator(selector).first
    clicked = False
    popup: Optional[LivePage] = None
    try:
        with page.expect_popup(timeout=popup_wait_ms) as popup_info:
            locator.click(**options)
            clicked = True
        popup = popup_info.value
    except timeout_error:
        if not clicked:
            raise
    try:
        if page.url != before_url:
            page.wait_for_load_state("domcontentloaded", timeout=min(timeout_ms, 10_000))
        else:
            page.wait_for_load_state("domcontentloaded", timeout=min(timeout_ms, 1200))
    except errors:
        LOGGER.debug("Page did not settle after click on %s", selector)
    return popup


def scroll(
    page: LivePage,
    *,
    selector: Optional[str],
    delta_x: float,
    delta_y: float,
    to_top: bool,
    to_bottom: bool,
) -> None:
    page.evaluate(
        SCROLL_SCRIPT,
        {
            "selector": selector or "",
            "deltaX": delta_x,
            "deltaY": delta_y,
            "toTop": to_top,
            "toBottom": to_bottom,
        },
    )


def evaluate_expression(page: LivePage, expression: str) -> Any:
    return page.evaluate(EVALUATE_SCRIPT, expression)


def wait_on_page(
    page: LivePage,
    *,
    selector: Optional[str],
    text: Optional[str],
    url_contains: Optional[str],
    state: str,
    delay_ms: int,
    timeout_ms: int,
) -> str:
    if selector:
        if state not in {"attached", "detached", "visible", "hidden"}:
            state = "visible"
        page.locator(selector).first.wait_for(state=state, timeout=timeout_ms)
        return "selector"
    if text:
        page.wait_for_function(WAIT_FOR_TEXT_SCRIPT, arg=text, timeout=timeout_ms)
        return "text"
    if url_contains:
        page.wait_for_url(lambda url: url_contains in url, timeout=timeout_ms)
        return "url"
    page.wait_for_timeout(delay_ms)
    return "delay"
