"""Credential records and lookup used by the login flow."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable, Literal, Optional
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, field_validator

from ..errors import CredentialNotFoundError

LOGGER = logging.getLogger(__name__)

AuthMode = Literal["password", "passwordless_mfa_code"]

_SERVICE_ALIASES = {
    "mail": "email",
    "email": "email",
    "x": "x.com",
    "x.com": "x.com",
    "twitter": "x.com",
    "twitter.com": "x.com",
}

_HOST_ALIASES = {
    "twitter.com": "x.com",
    "mobile.twitter.com": "x.com",
    "accounts.google.com": "google",
    "mail.google.com": "google",
    "login.microsoftonline.com": "microsoft",
    "login.live.com": "microsoft",
    "outlook.live.com": "microsoft",
}


class Credential(BaseModel):
    """A stored login for one service."""

    service: str
    identifier: str
    secret: str = Field(default="", repr=False)
    auth_mode: AuthMode = "password"

    @field_validator("auth_mode", mode="before")
    @classmethod
    def _coerce_mode(cls, value: Any) -> str:
        raw = str(value or "").strip().lower()
        return "passwordless_mfa_code" if raw == "passwordless_mfa_code" else "password"


CredentialLookup = Callable[[str], Optional[Credential]]


def normalize_service(value: Optional[str]) -> Optional[str]:
    """Normalize a service name, domain or URL to a credential key."""

    raw = str(value or "").strip().lower()
    if not raw:
        return None
    if raw in _SERVICE_ALIASES:
        return _SERVICE_ALIASES[raw]
    candidate = raw
    if "://" in candidate:
        try:
            candidate = (urlsplit(candidate).hostname or candidate).lower()
        except ValueError:
            pass
    if candidate.startswith("www."):
        candidate = candidate[4:]
    if candidate in _SERVICE_ALIASES:
        return _SERVICE_ALIASES[candidate]
    sanitized = re.sub(r"[^a-z0-9._-]+", "-", candidate).strip("-")
    if not sanitized or len(sanitized) > 80:
        return None
    return sanitized


def service_candidates(explicit: Optional[str], page_url: Optional[str]) -> list[str]:
    """Return lookup keys in priority order: explicit, hostname, short alias."""

    candidates: list[str] = []

    def add(value: Optional[str]) -> None:
        normalized = normalize_service(value)
        if normalized and normalized not in candidates:
            candidates.append(normalized)

    add(explicit)
    host = ""
    if page_url:
        try:
            host = (urlsplit(page_url).hostname or "").lower()
        except ValueError:
            host = ""
    if host.startswith("www."):
        host = host[4:]
    if host:
        add(host)
        add(_HOST_ALIASES.get(host))
        labels = [label for label in host.split(".") if label]
        if len(labels) >= 2:
            add(labels[-2])
    return candidates


def find_credential(lookup: CredentialLookup, candidates: list[str]) -> Credential:
    for candidate in candidates:
        credential = lookup(candidate)
        if credential is not None:
            LOGGER.debug("Using stored credential for service %s", candidate)
            return credential
    tried = ", ".join(candidates) or "(none)"
    raise CredentialNotFoundError(f"no stored credential for service candidates: {tried}")


class YamlCredentialStore:
    """Read-only credential lookup backed by a YAML file.

    The file holds either a mapping of service to record or a list of records
    with a ``service`` key::

        x.com:
          identifier: someone@example.com
          secret: hunter2
        email:
          identifier: someone@example.com
          auth_mode: passwordless_mfa_code
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._records: Optional[dict[str, Credential]] = None

    def _load(self) -> dict[str, Credential]:
        if self._records is not None:
            return self._records
        records: dict[str, Credential] = {}
        if self._path.exists():
            data = yaml.safe_load(self._path.read_text()) or {}
            entries: list[dict[str, Any]]
            if isinstance(data, dict):
                entries = [
                    {"service": key, **(value or {})}
                    for key, value in data.items()
                    if isinstance(value, dict) or value is None
                ]
            else:
                entries = [entry for entry in data if isinstance(entry, dict)]
            for entry in entries:
                service = normalize_service(entry.get("service"))
                identifier = str(entry.get("identifier") or "").strip()
                if not service or not identifier:
                    continue
                credential = Credential(
                    service=service,
                    identifier=identifier,
                    secret=str(entry.get("secret") or ""),
                    auth_mode=entry.get("auth_mode") or entry.get("authMode"),
                )
                if credential.auth_mode == "password" and not credential.secret:
                    LOGGER.warning("Skipping credential for %s without a secret", service)
                    continue
                records[service] = credential
        else:
            LOGGER.warning("Credential file %s does not exist", self._path)
        self._records = records
        return records

    def __call__(self, service: str) -> Optional[Credential]:
        normalized = normalize_service(service)
        if normalized is None:
            return None
        return self._load().get(normalized)
