"""Element discovery on rendered pages for the live engine."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..config import LimitsConfig
from ..fetch.html_parser import extract_links, parse_forms, title_from_url
from ..models import ElementRef, LivePageMeta, RefKind, Snapshot
from .builder import SnapshotBuild, build_refs, readable_body

LOGGER = logging.getLogger(__name__)

PROBE_SCRIPT = r"""
() => {
  const query = [
    "a[href]", "button", "input", "select", "textarea",
    "[role=button]", "[role=link]", "[role=textbox]", "[role=combobox]",
    "[contenteditable=''], [contenteditable=true]",
  ].join(",");
  const forms = Array.from(document.forms);
  const selectorFor = (el) => {
    if (el.id) return "#" + CSS.escape(el.id);
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && parts.length < 8) {
      const tag = node.tagName.toLowerCase();
      if (node.id) { parts.unshift("#" + CSS.escape(node.id)); break; }
      let nth = 1;
      let sib = node.previousElementSibling;
      while (sib) { if (sib.tagName === node.tagName) nth++; sib = sib.previousElementSibling; }
      parts.unshift(tag + ":nth-of-type(" + nth + ")");
      if (tag === "html") break;
      node = node.parentElement;
    }
    return parts.join(" > ");
  };
  const labelFor = (el) => {
    const aria = el.getAttribute("aria-label");
    if (aria) return aria;
    if (el.labels && el.labels.length) return el.labels[0].innerText;
    return el.innerText || el.value || el.getAttribute("placeholder")
      || el.getAttribute("name") || el.getAttribute("title") || "";
  };
  const rows = [];
  for (const el of document.querySelectorAll(query)) {
    const rect = el.getBoundingClientRect();
    if (!rect.width || !rect.height) continue;
    const form = el.form || el.closest("form");
    rows.push({
      tag: el.tagName.toLowerCase(),
      type: (el.getAttribute("type") || "").toLowerCase(),
      role: (el.getAttribute("role") || "").toLowerCase(),
      name: labelFor(el).replace(/\s+/g, " ").trim().slice(0, 120),
      fieldName: el.getAttribute("name") || "",
      href: el.href || "",
      selector: selectorFor(el),
      formIndex: form ? forms.indexOf(form) + 1 : 0,
      formMethod: form ? (form.getAttribute("method") || "get").toLowerCase() : "",
      formAction: form ? form.action : "",
    });
  }
  return rows;
}
"""

_BUTTON_INPUT_TYPES = {"submit", "button", "image", "reset"}


def classify_row(row: Mapping[str, Any]) -> tuple[RefKind, str]:
    """Map a probed element to a ref kind and role."""

    tag = str(row.get("tag") or "")
    input_type = str(row.get("type") or "")
    role = str(row.get("role") or "")
    in_form = bool(row.get("formIndex"))
    if tag == "a" or role == "link":
        return RefKind.LINK, role or "link"
    if tag == "select":
        return RefKind.FIELD, role or "combobox"
    if tag == "input":
        if input_type in {"submit", "image"}:
            return RefKind.SUBMIT, role or "button"
        if input_type in _BUTTON_INPUT_TYPES:
            return RefKind.BUTTON, role or "button"
        if input_type in {"checkbox", "radio"}:
            return RefKind.FIELD, role or input_type
        return RefKind.FIELD, role or "textbox"
    if tag == "button" or role == "button":
        native_type = (input_type or "submit") if tag == "button" else "button"
        kind = RefKind.SUBMIT if native_type == "submit" and in_form else RefKind.BUTTON
        return kind, role or "button"
    if role == "combobox":
        return RefKind.FIELD, role
    return RefKind.FIELD, role or "textbox"


def refs_from_rows(rows: list[Mapping[str, Any]], start: int) -> tuple[list[ElementRef], int]:
    refs: list[ElementRef] = []
    seen: set[str] = set()
    counter = start
    for row in rows:
        selector = str(row.get("selector") or "")
        if selector and selector in seen:
            continue
        seen.add(selector)
        kind, role = classify_row(row)
        form_index = int(row.get("formIndex") or 0) or None
        method = row.get("formMethod") if row.get("formMethod") in {"get", "post"} else None
        url: Optional[str] = None
        if kind == RefKind.LINK:
            url = str(row.get("href") or "") or None
        elif form_index:
            url = str(row.get("formAction") or "") or None
        refs.append(
            ElementRef(
                ref=f"e{counter}",
                kind=kind,
                role=role,
                name=str(row.get("name") or row.get("fieldName") or row.get("tag") or ""),
                url=url,
                form_index=form_index,
                field_name=(str(row.get("fieldName") or "") or None) if kind == RefKind.FIELD else None,
                method=method if form_index else None,
                selector=selector or None,
            )
        )
        counter += 1
    return refs, counter


def probe_elements(page: Any) -> list[Mapping[str, Any]]:
    try:
        rows = page.evaluate(PROBE_SCRIPT)
    except Exception as exc:
        LOGGER.debug("Element probe failed, using markup refs: %s", exc)
        return []
    return list(rows or [])


def build_live_snapshot(
    page: Any,
    meta: LivePageMeta,
    limits: LimitsConfig,
    *,
    start_ref: int = 1,
    max_bytes: Optional[int] = None,
    max_chars: Optional[int] = None,
    max_links: Optional[int] = None,
    url: Optional[str] = None,
) -> SnapshotBuild:
    url = url or page.url
    markup = page.content()
    title = page.title() or title_from_url(url)
    links = extract_links(markup, url, max_links or limits.max_links)
    forms = parse_forms(markup, url)
    rows = probe_elements(page)
    if rows:
        refs, next_ref = refs_from_rows(rows, start_ref)
    else:
        refs, next_ref = build_refs(links, forms, start_ref)
    text, truncated, size = readable_body(
        markup,
        meta.content_type or "text/html",
        limits,
        max_bytes=max_bytes,
        max_chars=max_chars,
    )
    snapshot = Snapshot(
        url=url,
        title=title,
        status=meta.status,
        ok=meta.ok,
        content_type=meta.content_type,
        truncated=truncated,
        bytes=size,
        text=text,
        links=links,
        refs=refs,
    )
    return SnapshotBuild(snapshot=snapshot, forms=forms, next_ref=next_ref, html=markup)
