"""Per-tab cookie storage for the fetch engine."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Mapping, Optional
from urllib.parse import urlsplit

LOGGER = logging.getLogger(__name__)

_EXPIRES_COMMA_RE = re.compile(r"(expires\s*=\s*[A-Za-z]{3}),", re.IGNORECASE)


@dataclass
class StoredCookie:
    name: str
    value: str
    domain: str
    host_only: bool = True

    def matches(self, host: str) -> bool:
        host = host.lower()
        if self.host_only or not self.domain:
            return not self.domain or host == self.domain
        return host == self.domain or host.endswith("." + self.domain)


def split_set_cookie_header(value: str) -> list[str]:
    """Split a comma-joined ``Set-Cookie`` header into individual cookies.

    Commas inside ``Expires=Wed, 21 Oct ...`` dates are preserved.
    """

    if not value:
        return []
    protected = _EXPIRES_COMMA_RE.sub(lambda m: m.group(1) + "\x00", value)
    parts = [part.replace("\x00", ",").strip() for part in protected.split(",")]
    return [part for part in parts if part]


def _expired(attrs: Mapping[str, str], now: datetime) -> bool:
    max_age = attrs.get("max-age")
    if max_age is not None:
        try:
            return int(max_age) <= 0
        except ValueError:
            LOGGER.debug("Ignoring malformed Max-Age %r", max_age)
    expires = attrs.get("expires")
    if expires:
        try:
            when = parsedate_to_datetime(expires)
        except (TypeError, ValueError):
            return False
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when <= now
    return False


class CookieJar:
    """Cookie store keyed by domain and name, with origin-scoped forwarding."""

    def __init__(self) -> None:
        self._cookies: dict[tuple[str, str], StoredCookie] = {}

    def __len__(self) -> int:
        return len(self._cookies)

    def clear(self) -> None:
        self._cookies.clear()

    def as_dict(self) -> dict[str, str]:
        return {cookie.name: cookie.value for cookie in self._cookies.values()}

    def update_from_headers(self, headers: Iterable[str], url: str) -> None:
        host = (urlsplit(url).hostname or "").lower()
        now = datetime.now(timezone.utc)
        for header in headers:
            for raw in split_set_cookie_header(header):
                self._apply(raw, host, now)

    def update_from_responses(self, responses: Iterable[tuple[str, str]]) -> None:
        """Apply ``(url, Set-Cookie header)`` pairs, each scoped to its own URL."""

        for url, header in responses:
            self.update_from_headers([header], url)

    def _apply(self, raw: str, host: str, now: datetime) -> None:
        pieces = [piece.strip() for piece in raw.split(";")]
        if not pieces or "=" not in pieces[0]:
            return
        name, value = pieces[0].split("=", 1)
        name = name.strip()
        if not name:
            return
        attrs: dict[str, str] = {}
        for piece in pieces[1:]:
            key, _, attr_value = piece.partition("=")
            attrs[key.strip().lower()] = attr_value.strip()
        domain = attrs.get("domain", "").lstrip(".").lower()
        if domain and host != domain and not host.endswith("." + domain):
            LOGGER.debug("Rejecting cookie %s from %s for domain %s", name, host, domain)
            return
        key = (domain or host, name)
        if _expired(attrs, now):
            self._cookies.pop(key, None)
            return
        self._cookies[key] = StoredCookie(
            name=name,
            value=value.strip(),
            domain=domain or host,
            host_only=not domain,
        )

    def header_for(self, url: str) -> Optional[str]:
        """Return the ``Cookie`` header to send to ``url`` or ``None``."""

        host = (urlsplit(url).hostname or "").lower()
        pairs = [
            f"{cookie.name}={cookie.value}"
            for cookie in self._cookies.values()
            if cookie.matches(host)
        ]
        return "; ".join(pairs) if pairs else None

    def replace_from_live(self, cookies: Iterable[Mapping[str, object]]) -> None:
        """Replace the jar with cookies reported by a live browser context."""

        self._cookies.clear()
        for cookie in cookies:
            name = str(cookie.get("name") or "")
            if not name:
                continue
            domain = str(cookie.get("domain") or "")
            self._cookies[(domain.lstrip(".").lower(), name)] = StoredCookie(
                name=name,
                value=str(cookie.get("value") or ""),
                domain=domain.lstrip(".").lower(),
                host_only=not domain.startswith("."),
            )
