from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from agent_browser_tool.errors import FetchError
from agent_browser_tool.search import DuckDuckGoSearch, parse_results, resolve_result_url
from agent_browser_tool.tool.service import BrowserTool

from browser_fakes import Site

RESULTS_PAGE = """
<html><body>
<div class="result">
  <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fdocs.python.org%2F3%2F&amp;rut=abc">Python <b>Docs</b></a>
  <div class="result__snippet">The official Python documentation.</div>
</div>
<div class="result">
  <a class="result__a" href="/l/?kh=-1">Ad link</a>
  <a href="https://a.test/">x</a>
</div>
<div class="result">
  <a class="result__a" href="https://example.org/py">Example tutorial</a>
</div>
<div class="result">
  <a class="result__a" href="https://example.org/py">Example tutorial again</a>
</div>
</body></html>
"""
LITE_PAGE = """
<html><body><table>
<tr><td><a rel="nofollow" href="https://example.org/lite" class="result-link">Lite result</a></td></tr>
<tr><td class="result-snippet">Found through the lite endpoint.</td></tr>
</table></body></html>
"""


def test_resolve_result_url() -> None:
    wrapped = "https://duckduckgo.com/l/?uddg=https%3A%2F%2Fexample.org%2Fa%3Fb%3D1"

    assert resolve_result_url(wrapped) == "https://example.org/a?b=1"
    assert resolve_result_url("/l/?kh=-1") == ""
    assert resolve_result_url("javascript:void(0)") == ""
    assert resolve_result_url("https://example.org/") == "https://example.org/"


def test_parse_results_unwraps_and_dedupes() -> None:
    results = parse_results(RESULTS_PAGE, count=5)

    assert [(result.title, result.url) for result in results] == [
        ("Python Docs", "https://docs.python.org/3/"),
        ("Example tutorial", "https://example.org/py"),
    ]
    assert results[0].description == "The official Python documentation."


def test_search_queries_html_endpoint_first(site: Site) -> None:
    queries: list[dict[str, list[str]]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        queries.append(parse_qs(request.url.query.decode()))
        return httpx.Response(200, html=RESULTS_PAGE)

    site.route("https://duckduckgo.com/html/", handler)
    search = DuckDuckGoSearch(client=site.client())

    results = search.search("python docs", count=1, region="de-de")

    assert len(results) == 1
    assert queries == [{"q": ["python docs"], "kl": ["de-de"], "kp": ["-1"]}]


def test_search_falls_back_to_lite_endpoint(site: Site) -> None:
    site.page("https://duckduckgo.com/html/", "<html>unavailable</html>", status=503)
    site.page("https://lite.duckduckgo.com/lite/", LITE_PAGE)

    results = DuckDuckGoSearch(client=site.client()).search("python")

    assert [result.url for result in results] == ["https://example.org/lite"]
    assert results[0].description == "Found through the lite endpoint."


def test_search_errors_when_every_endpoint_fails(site: Site) -> None:
    site.page("https://duckduckgo.com/html/", "<html>down</html>", status=503)
    site.page("https://lite.duckduckgo.com/lite/", "<html>down</html>", status=503)

    with pytest.raises(FetchError, match="status 503"):
        DuckDuckGoSearch(client=site.client()).search("python")


def test_search_without_results_is_empty(tool: BrowserTool, site: Site) -> None:
    site.page("https://duckduckgo.com/html/", "<html><body>No results.</body></html>")
    site.page("https://lite.duckduckgo.com/lite/", "<html><body>No results.</body></html>")

    result = tool.execute("c1", {"action": "search", "query": "zzzz", "openFirstResult": True})

    assert result["count"] == 0
    assert result["results"] == []
    assert result["openedTab"] is None
    assert result["activeTabId"] is None


def test_search_can_open_first_result(tool: BrowserTool, site: Site) -> None:
    site.page("https://duckduckgo.com/html/", RESULTS_PAGE)
    site.page("https://docs.python.org/3/", "<html><head><title>Docs</title></head><body>Welcome</body></html>")

    result = tool.execute("c1", {"action": "search", "query": "python docs", "openFirstResult": True})

    assert result["count"] == 2
    assert result["results"][0] == {
        "title": "Python Docs",
        "url": "https://docs.python.org/3/",
        "description": "The official Python documentation.",
    }
    assert result["openedTab"]["id"] == "tab-1"
    assert result["openedEngine"] == "fetch"
    assert result["activeTabId"] == "tab-1"
    assert result["snapshot"]["title"] == "Docs"
