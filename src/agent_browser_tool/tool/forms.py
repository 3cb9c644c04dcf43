"""Ref, form and link resolution against a tab's current snapshot."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from ..errors import (
    FieldNotFoundError,
    FormNotFoundError,
    InvalidRequestError,
    NotFoundError,
    RefNotFoundError,
    SnapshotMissingError,
)
from ..models import ElementRef, Form, FormField, Link, RefKind
from ..tabs.registry import Tab


def resolve_ref(tab: Tab, ref: Optional[str]) -> Optional[ElementRef]:
    """Look ``ref`` up in the tab's current snapshot; exact, case-sensitive match."""

    wanted = (ref or "").strip()
    if not wanted:
        return None
    if tab.last_snapshot is None:
        raise SnapshotMissingError("no snapshot available for ref lookup. run snapshot first.")
    found = tab.last_snapshot.find_ref(wanted)
    if found is None:
        raise RefNotFoundError(f"ref not found: {wanted}")
    return found


def resolve_form(tab: Tab, form_index: Optional[int], ref: Optional[ElementRef] = None) -> Form:
    if not tab.forms:
        raise FormNotFoundError("no forms available. run snapshot on a page containing a form.")
    index = ref.form_index if ref is not None and ref.form_index else form_index or 1
    for form in tab.forms:
        if form.index == index:
            return form
    raise FormNotFoundError(f"form index {index} not found.")


def resolve_field(
    form: Form,
    field_name: Optional[str],
    ref: Optional[ElementRef] = None,
) -> FormField:
    if ref is not None:
        if ref.kind != RefKind.FIELD:
            raise InvalidRequestError(f"ref {ref.ref} is not an input field.")
        if not ref.field_name or ref.form_index != form.index:
            raise InvalidRequestError(f"ref {ref.ref} does not belong to form {form.index}.")
        found = form.field(ref.field_name)
        if found is None:
            raise FieldNotFoundError(f"field from ref {ref.ref} is no longer available.")
        return found
    name = (field_name or "").strip()
    if not name:
        raise InvalidRequestError("fieldName is required (or provide a field ref).")
    found = form.field(name)
    if found is None:
        found = next((entry for entry in form.fields if entry.name.lower() == name.lower()), None)
    if found is None:
        raise FieldNotFoundError(f'field "{name}" not found on form {form.index}.')
    return found


def set_form_value(tab: Tab, form: Form, field: FormField, value: str) -> dict[str, str]:
    values = tab.form_values.setdefault(form.index, {})
    values[field.name] = value
    tab.touch()
    return values


def collect_payload(tab: Tab, form: Form) -> list[tuple[str, str]]:
    """Field values in document order, overrides winning over parsed defaults."""

    overrides = tab.form_values.get(form.index, {})
    return [
        (entry.name, overrides.get(entry.name, entry.value))
        for entry in form.fields
        if entry.name
    ]


def get_submission_url(form: Form, payload: list[tuple[str, str]]) -> str:
    parts = urlsplit(form.action)
    query = urlencode(payload)
    if parts.query:
        query = f"{parts.query}&{query}" if query else parts.query
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def find_link(
    tab: Tab,
    *,
    link_index: Optional[int],
    link_text: Optional[str],
    href_contains: Optional[str],
) -> Link:
    """Legacy click targeting by link index, text or URL substring."""

    snapshot = tab.last_snapshot
    if snapshot is None:
        raise SnapshotMissingError("no snapshot available for click. run snapshot first.")
    if not snapshot.links:
        raise NotFoundError("snapshot has no clickable links.")
    if link_index is not None:
        for link in snapshot.links:
            if link.index == link_index:
                return link
        raise NotFoundError(f"link index {link_index} not found in snapshot.")
    text = (link_text or "").strip().lower()
    if text:
        for link in snapshot.links:
            if text in link.text.lower():
                return link
    href = (href_contains or "").strip().lower()
    if href:
        for link in snapshot.links:
            if href in link.url.lower():
                return link
    if text or href:
        raise NotFoundError("no link matched the requested text or href.")
    raise InvalidRequestError("click requires selector, ref, linkIndex, linkText or hrefContains.")


def find_link_ref(tab: Tab, link: Link) -> Optional[ElementRef]:
    if tab.last_snapshot is None:
        return None
    link_refs = [entry for entry in tab.last_snapshot.refs if entry.kind == RefKind.LINK]
    for entry in link_refs:
        if entry.url == link.url:
            return entry
    for entry in link_refs:
        if entry.name == link.text:
            return entry
    return None
