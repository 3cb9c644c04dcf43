"""Heuristic credential login and MFA code entry.

Element discovery is guesswork: each known service gets an ordered list of
selectors for the identifier, password and button controls, tried in turn
until one matches. Nothing here ever invents an MFA code; a detected
challenge is reported back so the caller can supply the code via ``mfa``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import Form, FormField
from .credentials import Credential

LOGGER = logging.getLogger(__name__)

MFA_KEYWORDS_RE = re.compile(
    r"verification code|enter (?:the )?code|2-step|2 step|two-factor|two factor|\b2fa\b|"
    r"authentication code|authenticator app|one-time (?:pass)?code|security code|\botp\b",
    re.IGNORECASE,
)

OTP_SELECTORS = [
    'input[autocomplete="one-time-code"]',
    'input[name="totpPin"]',
    'input[name*="otp" i]',
    'input[name*="code" i]',
    'input[id*="otp" i]',
    'input[aria-label*="code" i]',
    'input[aria-label*="verification" i]',
]
OTP_BOX_SELECTOR = 'input[maxlength="1"]'
MFA_SUBMIT_SELECTORS = [
    'button:has-text("Verify")',
    'button:has-text("Confirm")',
    '[role="button"]:has-text("Next")',
    'button:has-text("Next")',
    'button:has-text("Continue")',
    'button:has-text("Submit")',
    'button[type="submit"]',
    'input[type="submit"]',
]

_OTP_NAME_RE = re.compile(
    r"(?:^|[_\-\[.])(?:otp|totp|mfa|2fa|pin|verification)(?:$|[_\-\].\d]|(?-i:[A-Z]))"
    r"|one.?time|passcode|verification.?code|^code\d*$|\[code\]",
    re.IGNORECASE,
)
_IDENTIFIER_NAME_RE = re.compile(r"user|email|login|ident|account|phone|session\[|^text$", re.IGNORECASE)


@dataclass(frozen=True)
class ServiceSelectors:
    identifier: list[str]
    password: list[str]
    next: list[str]
    submit: list[str]


_DEFAULT_SELECTORS = ServiceSelectors(
    identifier=[
        'input[autocomplete="username"]',
        'input[type="email"]',
        'input[name="email"]',
        'input[name="username"]',
        'input[name="login"]',
        'input[id="username"]',
        'input[type="text"]',
    ],
    password=[
        'input[autocomplete="current-password"]',
        'input[type="password"]',
        'input[name="password"]',
        'input[name="pass"]',
    ],
    next=[
        '[role="button"]:has-text("Next")',
        'button:has-text("Next")',
        'button:has-text("Continue")',
    ],
    submit=[
        'button:has-text("Log in")',
        'button:has-text("Sign in")',
        'button[type="submit"]',
        'input[type="submit"]',
    ],
)

SERVICE_SELECTORS: dict[str, ServiceSelectors] = {
    "x.com": ServiceSelectors(
        identifier=['input[autocomplete="username"]', 'input[name="text"]', 'input[type="text"]'],
        password=[
            'input[type="password"]',
            'input[name="password"]',
            'input[autocomplete="current-password"]',
        ],
        next=['[role="button"]:has-text("Next")', 'button:has-text("Next")'],
        submit=[
            '[data-testid="LoginForm_Login_Button"]',
            '[role="button"]:has-text("Log in")',
            'button:has-text("Log in")',
        ],
    ),
    "google": ServiceSelectors(
        identifier=['input[type="email"]', 'input[name="identifier"]', 'input[id="identifierId"]'],
        password=['input[type="password"]', 'input[name="Passwd"]'],
        next=['#identifierNext button', 'button:has-text("Next")'],
        submit=['#passwordNext button', 'button:has-text("Next")'],
    ),
    "github": ServiceSelectors(
        identifier=['input[name="login"]', 'input[id="login_field"]'],
        password=['input[name="password"]', 'input[id="password"]'],
        next=[],
        submit=['input[type="submit"][name="commit"]', 'input[type="submit"]', 'button[type="submit"]'],
    ),
    "microsoft": ServiceSelectors(
        identifier=['input[name="loginfmt"]', 'input[type="email"]'],
        password=['input[name="passwd"]', 'input[type="password"]'],
        next=['input[type="submit"][value="Next"]', 'button:has-text("Next")', 'input[id="idSIButton9"]'],
        submit=['input[id="idSIButton9"]', 'button:has-text("Sign in")', 'input[type="submit"]'],
    ),
}


def selectors_for(service: Optional[str]) -> ServiceSelectors:
    if service:
        for key, selectors in SERVICE_SELECTORS.items():
            if service == key or service.startswith(f"{key}.") or service.endswith(f".{key}"):
                return selectors
            if key == "google" and "google" in service:
                return selectors
            if key == "microsoft" and ("microsoft" in service or "live.com" in service):
                return selectors
    return _DEFAULT_SELECTORS


@dataclass
class LoginOutcome:
    service: str
    identifier_filled: bool = False
    password_filled: bool = False
    submitted: bool = False
    requires_mfa: bool = False
    steps: list[str] = field(default_factory=list)


def text_mentions_mfa(text: str) -> bool:
    return bool(MFA_KEYWORDS_RE.search(text or ""))


class LiveLoginFlow:
    """Drive a login page on the live engine through selector guesses."""

    def __init__(self, page: Any, *, timeout_ms: int, errors: tuple[type[BaseException], ...]) -> None:
        self._page = page
        self._timeout = timeout_ms
        self._probe_timeout = min(timeout_ms, 3000)
        self._errors = errors

    def _first_present(self, selectors: list[str]) -> Optional[str]:
        for selector in selectors:
            try:
                if self._page.locator(selector).count() > 0:
                    return selector
            except self._errors:
                continue
        return None

    def _fill_first(self, selectors: list[str], value: str) -> Optional[str]:
        for selector in selectors:
            try:
                locator = self._page.locator(selector)
                if locator.count() == 0:
                    continue
                locator.first.fill(value, timeout=self._probe_timeout)
                return selector
            except self._errors:
                LOGGER.debug("Login selector %s did not accept input", selector)
        return None

    def _click_first(self, selectors: list[str]) -> Optional[str]:
        for selector in selectors:
            try:
                locator = self._page.locator(selector)
                if locator.count() == 0:
                    continue
                locator.first.click(timeout=self._probe_timeout)
                return selector
            except self._errors:
                LOGGER.debug("Login button %s could not be clicked", selector)
        return None

    def _settle(self) -> None:
        try:
            self._page.wait_for_load_state("domcontentloaded", timeout=min(self._timeout, 5000))
        except self._errors:
            LOGGER.debug("Page did not settle after a login step")

    def _continue(self, selectors: list[str], steps: list[str]) -> bool:
        clicked = self._click_first(selectors)
        if clicked:
            steps.append(f"clicked {clicked}")
        else:
            try:
                self._page.keyboard.press("Enter")
                steps.append("pressed Enter")
            except self._errors:
                return False
        self._settle()
        return True

    def login(self, credential: Credential, service: str) -> LoginOutcome:
        selectors = selectors_for(service)
        outcome = LoginOutcome(service=service)
        identifier_selector = self._fill_first(selectors.identifier, credential.identifier)
        if identifier_selector:
            outcome.identifier_filled = True
            outcome.steps.append(f"filled identifier via {identifier_selector}")

        if credential.auth_mode == "passwordless_mfa_code":
            if outcome.identifier_filled:
                outcome.submitted = self._continue(selectors.next + selectors.submit, outcome.steps)
            outcome.requires_mfa = self.detect_mfa()
            return outcome

        if self._first_present(selectors.password) is None and outcome.identifier_filled:
            self._continue(selectors.next, outcome.steps)
            try:
                self._page.wait_for_selector(
                    ", ".join(selectors.password),
                    timeout=self._probe_timeout,
                    state="visible",
                )
            except self._errors:
                LOGGER.debug("Password field did not appear after identifier step")
        password_selector = self._fill_first(selectors.password, credential.secret)
        if password_selector:
            outcome.password_filled = True
            outcome.steps.append(f"filled password via {password_selector}")
            outcome.submitted = self._continue(selectors.submit, outcome.steps)
        outcome.requires_mfa = self.detect_mfa()
        return outcome

    def detect_mfa(self) -> bool:
        if self._first_present(OTP_SELECTORS) is not None:
            return True
        try:
            if self._page.locator(OTP_BOX_SELECTOR).count() >= 4:
                return True
            body = self._page.evaluate("() => document.body ? document.body.innerText : ''")
        except self._errors:
            return False
        return text_mentions_mfa(str(body or ""))

    def submit_code(self, code: str) -> dict[str, Any]:
        layout = "single"
        boxes = self._page.locator(OTP_BOX_SELECTOR)
        box_count = boxes.count()
        if box_count >= len(code) > 1:
            layout = "multi"
            for index, digit in enumerate(code):
                boxes.nth(index).fill(digit, timeout=self._probe_timeout)
        elif self._fill_first(OTP_SELECTORS, code) is None:
            return {"layout": "none", "submitMethod": None, "requiresMfa": self.detect_mfa()}
        clicked = self._click_first(MFA_SUBMIT_SELECTORS)
        method = "click"
        if clicked is None:
            method = "enter"
            self._page.keyboard.press("Enter")
        self._settle()
        return {"layout": layout, "submitMethod": method, "requiresMfa": self.detect_mfa()}


def _is_otp_field(entry: FormField) -> bool:
    if entry.type in {"hidden", "password", "checkbox", "radio", "select", "textarea"}:
        return False
    return bool(_OTP_NAME_RE.search(entry.name))


def otp_fields(form: Form) -> list[FormField]:
    return [entry for entry in form.fields if _is_otp_field(entry)]


def find_mfa_form(forms: list[Form]) -> Optional[Form]:
    for form in forms:
        if otp_fields(form):
            return form
    return None


def detect_mfa_in_document(forms: list[Form], text: str) -> bool:
    return find_mfa_form(forms) is not None or text_mentions_mfa(text)


def plan_mfa_values(form: Form, code: str) -> tuple[dict[str, str], str]:
    """Map ``code`` onto the OTP field(s) of ``form``; returns values and layout."""

    fields = otp_fields(form)
    if len(fields) >= len(code) > 1:
        return {entry.name: digit for entry, digit in zip(fields, code)}, "multi"
    return {fields[0].name: code}, "single"


@dataclass
class FetchLoginPlan:
    form: Form
    values: dict[str, str]
    identifier_field: Optional[str]
    password_field: Optional[str]


def plan_fetch_login(forms: list[Form], credential: Credential) -> Optional[FetchLoginPlan]:
    """Pick the login form and the values to fill into it."""

    best: Optional[FetchLoginPlan] = None
    for form in forms:
        password = next((entry for entry in form.fields if entry.type == "password"), None)
        identifier = next(
            (
                entry
                for entry in form.fields
                if entry.type == "email"
                or (entry.type in {"text", "tel"} and _IDENTIFIER_NAME_RE.search(entry.name))
            ),
            None,
        )
        if identifier is None:
            identifier = next(
                (entry for entry in form.fields if entry.type in {"text", "email", "tel"}),
                None,
            )
        if password is None and identifier is None:
            continue
        values: dict[str, str] = {}
        if identifier is not None:
            values[identifier.name] = credential.identifier
        if password is not None and credential.auth_mode == "password":
            values[password.name] = credential.secret
        plan = FetchLoginPlan(
            form=form,
            values=values,
            identifier_field=identifier.name if identifier else None,
            password_field=password.name if password and credential.auth_mode == "password" else None,
        )
        if password is not None:
            return plan
        if best is None:
            best = plan
    return best
