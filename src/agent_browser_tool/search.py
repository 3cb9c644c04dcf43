"""DuckDuckGo web search over the HTML endpoints."""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
from pydantic import BaseModel

from .config import DEFAULT_USER_AGENT
from .errors import FetchError
from .fetch.html_parser import strip_tags

LOGGER = logging.getLogger(__name__)

SEARCH_ENDPOINTS = ("https://duckduckgo.com/html/", "https://lite.duckduckgo.com/lite/")

_ANCHOR_RE = re.compile(r"<a\b([^>]*?)href=\"([^\"]+)\"([^>]*)>([\s\S]*?)</a>", re.IGNORECASE)
_SNIPPET_RES = [
    re.compile(r"class=\"[^\"]*result__snippet[^\"]*\"[^>]*>([\s\S]*?)</[^>]+>", re.IGNORECASE),
    re.compile(r"class=\"[^\"]*result-snippet[^\"]*\"[^>]*>([\s\S]*?)</[^>]+>", re.IGNORECASE),
    re.compile(r"class=\"[^\"]*snippet[^\"]*\"[^>]*>([\s\S]*?)</[^>]+>", re.IGNORECASE),
]


class SearchResult(BaseModel):
    title: str
    url: str
    description: str = ""


def resolve_result_url(href: str) -> str:
    """Turn a result anchor into its destination, unwrapping ``uddg`` redirects."""

    raw = (href or "").strip()
    if not raw:
        return ""
    if raw.startswith("//"):
        raw = f"https:{raw}"
    elif raw.startswith("/"):
        raw = f"https://duckduckgo.com{raw}"
    try:
        parts = urlsplit(raw)
    except ValueError:
        return ""
    host = (parts.hostname or "").lower()
    if "duckduckgo.com" in host:
        redirected = parse_qs(parts.query).get("uddg")
        if redirected and re.match(r"^https?://", redirected[0], re.IGNORECASE):
            return redirected[0]
        if parts.path in {"/l", "/l/"}:
            return ""
    if parts.scheme.lower() not in {"http", "https"}:
        return ""
    return raw


def _snippet_near(markup: str, start: int, end: int) -> str:
    nearby = markup[max(0, start - 220) : min(len(markup), end + 900)]
    for pattern in _SNIPPET_RES:
        match = pattern.search(nearby)
        if match:
            text = strip_tags(match.group(1))
            if text:
                return text
    generic = strip_tags(re.sub(r"<(script|style)[\s\S]*?</\1>", " ", nearby, flags=re.IGNORECASE))
    return f"{generic[:280]}..." if len(generic) > 280 else generic


def parse_results(markup: str, count: int = 8) -> list[SearchResult]:
    results: list[SearchResult] = []
    seen: set[str] = set()
    for match in _ANCHOR_RE.finditer(markup or ""):
        if len(results) >= count:
            break
        title = strip_tags(match.group(4))
        if len(title) < 2:
            continue
        url = resolve_result_url(match.group(2))
        if not url or url in seen:
            continue
        seen.add(url)
        results.append(
            SearchResult(
                title=title,
                url=url,
                description=_snippet_near(markup, match.start(), match.end()),
            )
        )
    return results


class DuckDuckGoSearch:
    """Query DuckDuckGo's HTML endpoint, then the lite endpoint."""

    def __init__(self, client: Optional[httpx.Client] = None, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self._client = client or httpx.Client(follow_redirects=True)
        self._user_agent = user_agent

    def search(self, query: str, *, count: int = 8, region: str = "wt-wt", timeout_ms: int = 15_000) -> list[SearchResult]:
        last_error: Optional[Exception] = None
        params = urlencode({"q": query, "kl": region or "wt-wt", "kp": "-1"})
        for endpoint in SEARCH_ENDPOINTS:
            url = f"{endpoint}?{params}"
            try:
                response = self._client.get(
                    url,
                    headers={
                        "Accept": "text/html,application/xhtml+xml",
                        "Accept-Language": "en-US,en;q=0.9",
                        "User-Agent": self._user_agent,
                    },
                    timeout=timeout_ms / 1000,
                )
            except httpx.HTTPError as exc:
                LOGGER.warning("Search request to %s failed: %s", endpoint, exc)
                last_error = FetchError(f"search request failed: {exc}")
                continue
            if not response.is_success:
                last_error = FetchError(f"DuckDuckGo search error (status {response.status_code})")
                continue
            results = parse_results(response.text, count)
            if results:
                return results[:count]
            LOGGER.debug("No results parsed from %s", endpoint)
        if last_error is not None:
            raise last_error
        return []
