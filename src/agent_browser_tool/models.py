"""Shared models used across the agent browser tool."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FormMethod = Literal["get", "post"]


class WireModel(BaseModel):
    """Base model serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EngineMode(str, enum.Enum):
    """Concrete execution engines."""

    FETCH = "fetch"
    LIVE = "live"


class RefKind(str, enum.Enum):
    """Kinds of addressable elements exposed in a snapshot."""

    LINK = "link"
    FORM = "form"
    FIELD = "field"
    SUBMIT = "submit"
    BUTTON = "button"


class Link(WireModel):
    index: int
    text: str
    url: str


class FormField(WireModel):
    name: str
    type: str = "text"
    value: str = ""
    required: bool = False


class Form(WireModel):
    index: int
    method: FormMethod = "get"
    action: str
    fields: list[FormField] = Field(default_factory=list)

    def field(self, name: str) -> Optional[FormField]:
        for entry in self.fields:
            if entry.name == name:
                return entry
        return None


class ElementRef(WireModel):
    """An addressable element, valid only against the snapshot that produced it."""

    model_config = ConfigDict(frozen=True)

    ref: str
    kind: RefKind
    role: str
    name: str
    url: Optional[str] = None
    form_index: Optional[int] = None
    field_name: Optional[str] = None
    method: Optional[FormMethod] = None
    selector: Optional[str] = None


class Snapshot(WireModel):
    """Point-in-time capture of a tab's page content and addressable elements."""

    model_config = ConfigDict(frozen=True)

    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    url: str
    title: str
    status: int = 200
    ok: bool = True
    content_type: str = ""
    truncated: bool = False
    bytes: int = 0
    text: str = ""
    links: list[Link] = Field(default_factory=list)
    refs: list[ElementRef] = Field(default_factory=list)

    def find_ref(self, ref: str) -> Optional[ElementRef]:
        for entry in self.refs:
            if entry.ref == ref:
                return entry
        return None


class ConsoleEntry(WireModel):
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str = "log"
    text: str = ""
    location: str = ""


class DialogEvent(WireModel):
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str = "dialog"
    message: str = ""
    default_value: str = ""
    handled: str = "auto-dismiss"


class DialogPlan(WireModel):
    """Instruction applied to the next dialog(s) raised by a live page."""

    mode: Literal["accept", "dismiss"] = "dismiss"
    prompt_text: Optional[str] = None
    once: bool = True
    armed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LivePageMeta(WireModel):
    status: int = 200
    ok: bool = True
    content_type: str = "text/html; charset=utf-8"


class FileArtifact(WireModel):
    """A screenshot or PDF written to disk."""

    path: str
    bytes: int
    mime_type: str
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    print_background: Optional[bool] = None
