"""Build snapshots and element refs from fetched or rendered markup."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from ..config import LimitsConfig
from ..fetch.client import FetchResult
from ..fetch.html_parser import (
    choose_readable_text,
    extract_links,
    extract_title,
    is_markup,
    parse_forms,
    title_from_url,
    trim_text,
)
from ..models import ElementRef, Form, FormField, Link, RefKind, Snapshot


@dataclass
class SnapshotBuild:
    snapshot: Snapshot
    forms: list[Form]
    next_ref: int
    html: str


def field_role(field: FormField) -> str:
    if field.type in {"checkbox", "radio"}:
        return field.type
    if field.type == "select":
        return "combobox"
    return "textbox"


def build_refs(links: list[Link], forms: list[Form], start: int = 1) -> tuple[list[ElementRef], int]:
    """Return refs for links, then each form, its fields and its submit control.

    Numbering continues from ``start`` so refs handed out by earlier snapshots
    of the same tab are never reused.
    """

    refs: list[ElementRef] = []
    counter = start

    def next_id() -> str:
        nonlocal counter
        value = f"e{counter}"
        counter += 1
        return value

    for link in links:
        refs.append(
            ElementRef(ref=next_id(), kind=RefKind.LINK, role="link", name=link.text, url=link.url)
        )
    for form in forms:
        refs.append(
            ElementRef(
                ref=next_id(),
                kind=RefKind.FORM,
                role="form",
                name=f"form {form.index} ({form.method.upper()} {form.action})",
                url=form.action,
                form_index=form.index,
                method=form.method,
            )
        )
        for entry in form.fields:
            refs.append(
                ElementRef(
                    ref=next_id(),
                    kind=RefKind.FIELD,
                    role=field_role(entry),
                    name=f"form {form.index}: {entry.name}",
                    form_index=form.index,
                    field_name=entry.name,
                    method=form.method,
                )
            )
        refs.append(
            ElementRef(
                ref=next_id(),
                kind=RefKind.SUBMIT,
                role="button",
                name=f"submit form {form.index}",
                url=form.action,
                form_index=form.index,
                method=form.method,
            )
        )
    return refs, counter


def readable_body(
    raw: str,
    content_type: str,
    limits: LimitsConfig,
    *,
    max_bytes: Optional[int] = None,
    max_chars: Optional[int] = None,
) -> tuple[str, bool, int]:
    """Apply byte truncation, readable-text projection and char truncation in order."""

    byte_cap = max_bytes or limits.max_bytes
    char_cap = max_chars or limits.max_chars
    encoded = raw.encode("utf-8")
    truncated = len(encoded) > byte_cap
    if truncated:
        raw = encoded[:byte_cap].decode("utf-8", errors="ignore")
    text = choose_readable_text(content_type, raw)
    trimmed = trim_text(text, char_cap)
    return trimmed, truncated or trimmed != text, min(len(encoded), byte_cap)


def build_fetch_snapshot(
    result: FetchResult,
    limits: LimitsConfig,
    *,
    start_ref: int = 1,
    max_chars: Optional[int] = None,
    max_links: Optional[int] = None,
) -> SnapshotBuild:
    markup = result.text if is_markup(result.content_type) else ""
    link_cap = max_links or limits.max_links
    links = extract_links(markup, result.url, link_cap) if markup else []
    forms = parse_forms(markup, result.url) if markup else []
    refs, next_ref = build_refs(links, forms, start_ref)
    text = choose_readable_text(result.content_type, result.text)
    trimmed = trim_text(text, max_chars or limits.max_chars)
    snapshot = Snapshot(
        url=result.url,
        title=extract_title(markup) or title_from_url(result.url),
        status=result.status,
        ok=result.ok,
        content_type=result.content_type,
        truncated=result.truncated or trimmed != text,
        bytes=result.bytes,
        text=trimmed,
        links=links,
        refs=refs,
    )
    return SnapshotBuild(snapshot=snapshot, forms=forms, next_ref=next_ref, html=result.text)


def form_selector(form_index: int) -> str:
    return f"form >> nth={form_index - 1}"


def field_selector(form_index: int, field_name: str) -> str:
    return f"{form_selector(form_index)} >> [name={json.dumps(field_name)}] >> nth=0"


def selector_for_ref(ref: ElementRef) -> Optional[str]:
    """Derive a Playwright selector for refs built from markup.

    Link refs without a probed selector return ``None``; callers navigate to
    ``ref.url`` instead.
    """

    if ref.selector:
        return ref.selector
    if ref.form_index is None:
        return None
    form = form_selector(ref.form_index)
    if ref.kind == RefKind.FORM:
        return form
    if ref.kind == RefKind.FIELD and ref.field_name:
        return field_selector(ref.form_index, ref.field_name)
    if ref.kind == RefKind.SUBMIT:
        return (
            f"{form} >> button:not([type=button]):not([type=reset]), "
            f"input[type=submit], input[type=image] >> nth=0"
        )
    return None
