"""Regex-based HTML extraction used by the fetch engine.

The fetch engine never builds a DOM. These helpers pull out just enough
structure (title, links, forms, readable text) to drive the tool's element
model from raw markup, tolerating unclosed and oddly nested tags.
"""

from __future__ import annotations

import html
import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

from ..errors import InvalidRequestError
from ..models import Form, FormField, Link

TRUNCATION_MARKER = "\n\n[truncated for model context]"

_TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.IGNORECASE)
_LINK_RE = re.compile(
    r"<a\b([^>]*?)href\s*=\s*(?:\"([^\"]+)\"|'([^']+)'|([^\s\"'<>`]+))([^>]*)>([\s\S]*?)</a>",
    re.IGNORECASE,
)
_ATTR_RE = re.compile(r"([^\s\"'=<>`/]+)(?:\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'=<>`]+)))?")
_FORM_RE = re.compile(r"<form\b([^>]*)>([\s\S]*?)</form>", re.IGNORECASE)
_INPUT_RE = re.compile(r"<input\b([^>]*?)/?>", re.IGNORECASE)
_TEXTAREA_RE = re.compile(r"<textarea\b([^>]*)>([\s\S]*?)</textarea>", re.IGNORECASE)
_SELECT_RE = re.compile(r"<select\b([^>]*)>([\s\S]*?)</select>", re.IGNORECASE)
_OPTION_RE = re.compile(r"<option\b([^>]*)>([\s\S]*?)(?:</option>|(?=<option\b)|$)", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

NON_EDITABLE_INPUT_TYPES = frozenset({"submit", "button", "image", "reset", "file"})


def decode_entities(value: str) -> str:
    return html.unescape(value or "")


def collapse_whitespace(value: str) -> str:
    return _WS_RE.sub(" ", value).strip()


def strip_tags(value: str) -> str:
    return collapse_whitespace(decode_entities(_TAG_RE.sub(" ", value or "")))


def normalize_http_url(value: object, base: Optional[str] = None) -> str:
    """Resolve ``value`` (optionally against ``base``) and require http(s)."""

    raw = str(value if value is not None else "").strip()
    if not raw:
        raise InvalidRequestError("url is required.")
    resolved = urljoin(base, raw) if base else raw
    try:
        parts = urlsplit(resolved)
    except ValueError as exc:
        raise InvalidRequestError("invalid url.") from exc
    if parts.scheme.lower() not in {"http", "https"}:
        raise InvalidRequestError("only http(s) URLs are supported.")
    if not parts.netloc:
        raise InvalidRequestError("invalid url.")
    path = parts.path or "/"
    normalized = f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}"
    if parts.query:
        normalized += f"?{parts.query}"
    if parts.fragment:
        normalized += f"#{parts.fragment}"
    return normalized


def normalize_http_url_or(value: object, fallback: str) -> str:
    try:
        return normalize_http_url(value)
    except InvalidRequestError:
        return fallback


def title_from_url(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return url
    return host or url


def extract_title(markup: str) -> str:
    match = _TITLE_RE.search(markup or "")
    if not match:
        return ""
    return collapse_whitespace(decode_entities(match.group(1)))


def trim_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def html_to_readable_text(markup: str) -> str:
    text = re.sub(r"<!--[\s\S]*?-->", " ", markup or "")
    for tag in ("script", "style", "noscript"):
        text = re.sub(rf"<{tag}[\s\S]*?</{tag}>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<(br|hr)\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(
        r"</(p|div|section|article|header|footer|li|ul|ol|h[1-6]|table|tr)>",
        "\n",
        text,
        flags=re.IGNORECASE,
    )
    text = decode_entities(_TAG_RE.sub(" ", text))
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def choose_readable_text(content_type: str, decoded: str) -> str:
    lowered = (content_type or "").lower()
    if "text/html" in lowered or "application/xhtml+xml" in lowered:
        return html_to_readable_text(decoded)
    return decoded


def is_markup(content_type: str) -> bool:
    return bool(re.search(r"html|xml", content_type or "", re.IGNORECASE))


def parse_attributes(raw: str) -> dict[str, str]:
    """Parse a tag's attribute string; valueless attributes map to ``""``."""

    attrs: dict[str, str] = {}
    for match in _ATTR_RE.finditer(raw or ""):
        key = match.group(1).strip().lower()
        if not key:
            continue
        value = next((group for group in match.group(2, 3, 4) if group is not None), "")
        attrs.setdefault(key, decode_entities(value))
    return attrs


def extract_links(markup: str, page_url: str, max_links: int) -> list[Link]:
    links: list[Link] = []
    seen: set[str] = set()
    for match in _LINK_RE.finditer(markup or ""):
        if len(links) >= max_links:
            break
        href = decode_entities(next((g for g in match.group(2, 3, 4) if g), "").strip())
        if not href:
            continue
        try:
            resolved = normalize_http_url(href, page_url)
        except InvalidRequestError:
            continue
        if resolved in seen:
            continue
        seen.add(resolved)
        text = strip_tags(match.group(6))
        if len(text) < 2:
            continue
        links.append(Link(index=len(links) + 1, text=text, url=resolved))
    return links


def _select_value(select_markup: str) -> str:
    fallback: Optional[str] = None
    for match in _OPTION_RE.finditer(select_markup):
        attrs = parse_attributes(match.group(1))
        value = attrs.get("value", strip_tags(match.group(2)))
        if fallback is None:
            fallback = value
        if "selected" in attrs:
            return value
    return fallback or ""


def parse_form_fields(form_markup: str) -> list[FormField]:
    fields: list[FormField] = []
    for match in _INPUT_RE.finditer(form_markup):
        attrs = parse_attributes(match.group(1))
        name = attrs.get("name", "").strip()
        if not name:
            continue
        input_type = attrs.get("type", "text").strip().lower() or "text"
        if input_type in NON_EDITABLE_INPUT_TYPES:
            continue
        if input_type in {"checkbox", "radio"} and "checked" not in attrs:
            value = ""
        else:
            value = attrs.get("value", "")
        if input_type in {"checkbox", "radio"} and "checked" in attrs and "value" not in attrs:
            value = "on"
        fields.append(
            FormField(name=name, type=input_type, value=value, required="required" in attrs)
        )
    for match in _TEXTAREA_RE.finditer(form_markup):
        attrs = parse_attributes(match.group(1))
        name = attrs.get("name", "").strip()
        if not name:
            continue
        fields.append(
            FormField(
                name=name,
                type="textarea",
                value=decode_entities(match.group(2)),
                required="required" in attrs,
            )
        )
    for match in _SELECT_RE.finditer(form_markup):
        attrs = parse_attributes(match.group(1))
        name = attrs.get("name", "").strip()
        if not name:
            continue
        fields.append(
            FormField(
                name=name,
                type="select",
                value=_select_value(match.group(2)),
                required="required" in attrs,
            )
        )
    return fields


def parse_forms(markup: str, page_url: str) -> list[Form]:
    forms: list[Form] = []
    for match in _FORM_RE.finditer(markup or ""):
        attrs = parse_attributes(match.group(1))
        method = "post" if attrs.get("method", "get").strip().lower() == "post" else "get"
        try:
            action = normalize_http_url(attrs.get("action") or page_url, page_url)
        except InvalidRequestError:
            action = page_url
        forms.append(
            Form(
                index=len(forms) + 1,
                method=method,
                action=action,
                fields=parse_form_fields(match.group(2)),
            )
        )
    return forms
