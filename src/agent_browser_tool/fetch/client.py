"""HTTP transport for the fetch engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence
from urllib.parse import urlencode

import httpx

from ..config import FetchConfig
from ..errors import FetchError

LOGGER = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of a single (possibly redirected) HTTP request."""

    url: str
    status: int
    ok: bool
    content_type: str
    text: str
    truncated: bool
    bytes: int
    set_cookies: list[tuple[str, str]] = field(default_factory=list)


class PageFetcher:
    """Fetch pages with byte-capped streaming over an injectable ``httpx.Client``."""

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._config = config or FetchConfig()
        self._client = client or httpx.Client(follow_redirects=True)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        body: Optional[Sequence[tuple[str, str]]] = None,
        cookie_header: Optional[str] = None,
        timeout_ms: int = 20_000,
        max_bytes: int = 300_000,
    ) -> FetchResult:
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept": self._config.accept,
        }
        if cookie_header:
            headers["Cookie"] = cookie_header
        method = method.upper()
        content: Optional[str] = None
        if body is not None and method == "POST":
            content = urlencode(list(body))
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        LOGGER.debug("Fetching %s %s", method, url)
        try:
            with self._client.stream(
                method,
                url,
                headers=headers,
                content=content,
                timeout=timeout_ms / 1000,
                follow_redirects=True,
            ) as response:
                chunks: list[bytes] = []
                total = 0
                truncated = False
                for chunk in response.iter_bytes():
                    remaining = max_bytes - total
                    if len(chunk) > remaining:
                        chunks.append(chunk[:remaining])
                        total += remaining
                        truncated = True
                        break
                    chunks.append(chunk)
                    total += len(chunk)
                set_cookies = [
                    (str(hop.url), header)
                    for hop in [*response.history, response]
                    for header in hop.headers.get_list("set-cookie")
                ]
                result = FetchResult(
                    url=str(response.url),
                    status=response.status_code,
                    ok=response.is_success,
                    content_type=response.headers.get("content-type", ""),
                    text=b"".join(chunks).decode("utf-8", errors="replace"),
                    truncated=truncated,
                    bytes=total,
                    set_cookies=set_cookies,
                )
        except httpx.TimeoutException as exc:
            raise FetchError(f"request to {url} timed out after {timeout_ms}ms") from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"request to {url} failed: {exc}") from exc
        finally:
            # Tabs keep their own jars; never let the shared client carry cookies over.
            self._client.cookies.clear()
        return result
