"""Typed action requests accepted by :class:`BrowserTool`.

Each action is a separate pydantic model tagged by ``action``. Numeric knobs
are clamped into their documented range during validation; a missing,
boolean or non-finite value resolves to the configured default, which is
passed in through the validation context as ``{"limits": LimitsConfig}``.
"""

from __future__ import annotations

import math
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
)
from pydantic.alias_generators import to_camel

from ..config import LimitsConfig
from ..errors import InvalidRequestError


def _finite_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _clamped(low: int, high: int, setting: Optional[str] = None, default: Optional[int] = None):
    def validate(value: Any, info: ValidationInfo) -> Optional[int]:
        number = _finite_number(value)
        if number is None:
            fallback: Optional[float] = default
            if setting is not None:
                limits = (info.context or {}).get("limits") or LimitsConfig()
                fallback = getattr(limits, setting)
            if fallback is None:
                return None
            number = fallback
        return int(min(max(number, low), high))

    return BeforeValidator(validate)


def _finite_or_zero(value: Any) -> float:
    return _finite_number(value) or 0.0


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [str(entry).strip() for entry in value if entry is not None and str(entry).strip()]


def _click_button(value: Any) -> str:
    raw = str(value or "left").strip().lower()
    return raw if raw in {"right", "middle"} else "left"


def _fields_batch(value: Any) -> Any:
    if isinstance(value, Mapping):
        return [{"fieldName": key, "value": entry} for key, entry in value.items()]
    return value


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
TimeoutMs = Annotated[int, _clamped(1000, 120_000, "timeout_ms")]
MaxBytes = Annotated[int, _clamped(10_000, 500_000, "max_bytes")]
MaxChars = Annotated[int, _clamped(500, 80_000, "max_chars")]
MaxLinks = Annotated[int, _clamped(1, 200, "max_links")]
SnapshotRetries = Annotated[int, _clamped(0, 3, "snapshot_retries")]
StringList = Annotated[list[str], BeforeValidator(_string_list)]


def _default(**kwargs: Any) -> Any:
    return Field(default=None, validate_default=True, **kwargs)


class BaseRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    engine: Optional[str] = None
    tab_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tabId", "targetId", "tab_id"),
    )
    allow_engine_fallback: Optional[bool] = None
    snapshot_after: Optional[bool] = None
    timeout_ms: TimeoutMs = _default()
    max_bytes: MaxBytes = _default()
    max_chars: MaxChars = _default()
    max_links: MaxLinks = _default()
    snapshot_retries: SnapshotRetries = _default()

    def snapshot_wanted(self, default: bool) -> bool:
        return default if self.snapshot_after is None else self.snapshot_after


class RefRequest(BaseRequest):
    ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("ref", "inputRef"))
    selector: Optional[str] = None


class StatusRequest(BaseRequest):
    action: Literal["status"]


class TabsRequest(BaseRequest):
    action: Literal["tabs"]


class ResetRequest(BaseRequest):
    action: Literal["reset"]


class OpenRequest(BaseRequest):
    action: Literal["open"]
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("url", "targetUrl"))


class LaunchRequest(BaseRequest):
    action: Literal["launch"]
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("url", "targetUrl"))


class FocusRequest(BaseRequest):
    action: Literal["focus"]


class CloseRequest(BaseRequest):
    action: Literal["close"]


class NavigateRequest(BaseRequest):
    action: Literal["navigate"]
    url: NonEmptyStr = Field(validation_alias=AliasChoices("url", "targetUrl"))


class ReloadRequest(BaseRequest):
    action: Literal["reload"]


class HistoryRequest(BaseRequest):
    action: Literal["back", "forward"]


class SnapshotRequest(BaseRequest):
    action: Literal["snapshot"]


class FormsRequest(BaseRequest):
    action: Literal["forms"]


class SearchRequest(BaseRequest):
    action: Literal["search"]
    query: NonEmptyStr
    region: str = "wt-wt"
    count: Annotated[int, _clamped(1, 20, "search_count")] = _default()
    open_first_result: bool = False


class ClickRequest(RefRequest):
    action: Literal["click"]
    button: Annotated[Literal["left", "right", "middle"], BeforeValidator(_click_button)] = "left"
    double_click: bool = False
    click_count: Annotated[int, _clamped(1, 5, default=1)] = _default()
    modifiers: StringList = Field(default_factory=list)
    focus_popup: bool = True
    popup_wait_ms: Annotated[int, _clamped(100, 10_000, "popup_wait_ms")] = _default()
    link_index: Optional[int] = Field(default=None, ge=1)
    link_text: Optional[str] = None
    href_contains: Optional[str] = None

    def effective_click_count(self) -> int:
        return 2 if self.double_click else self.click_count


class FieldFill(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("ref", "inputRef"))
    field_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("fieldName", "field_name", "name"),
    )
    value: str = ""


class FillRequest(RefRequest):
    action: Literal["type", "fill"]
    form_index: Optional[int] = Field(default=None, ge=1)
    field_name: Optional[str] = None
    value: str = ""
    fields: Annotated[Optional[list[FieldFill]], BeforeValidator(_fields_batch)] = None


class SubmitRequest(RefRequest):
    action: Literal["submit"]
    form_index: Optional[int] = Field(default=None, ge=1)


class HoverRequest(RefRequest):
    action: Literal["hover"]


class PressRequest(RefRequest):
    action: Literal["press"]
    key: NonEmptyStr


class SelectRequest(RefRequest):
    action: Literal["select"]
    form_index: Optional[int] = Field(default=None, ge=1)
    field_name: Optional[str] = None
    value: Optional[str] = None
    values: StringList = Field(default_factory=list)

    def selected_values(self) -> list[str]:
        if self.values:
            return self.values
        return [self.value] if self.value else []


class DragRequest(RefRequest):
    action: Literal["drag"]
    start_ref: Optional[str] = None
    end_ref: Optional[str] = None
    start_selector: Optional[str] = None
    end_selector: Optional[str] = None


class EvaluateRequest(BaseRequest):
    action: Literal["evaluate"]
    expression: NonEmptyStr


class UploadRequest(RefRequest):
    action: Literal["upload"]
    path: Optional[str] = None
    paths: StringList = Field(default_factory=list)

    def upload_paths(self) -> list[str]:
        if self.paths:
            return self.paths
        return [self.path] if self.path else []


class DialogRequest(BaseRequest):
    action: Literal["dialog"]
    accept: Optional[bool] = None
    once: Optional[bool] = None
    prompt_text: Optional[str] = None
    clear: bool = False
    limit: Annotated[int, _clamped(1, 500, default=20)] = _default()

    def wants_arming(self) -> bool:
        return self.accept is not None or self.once is not None or bool(self.prompt_text)


class ConsoleRequest(BaseRequest):
    action: Literal["console"]
    clear: bool = False
    limit: Annotated[int, _clamped(1, 500, default=80)] = _default()


class PdfRequest(BaseRequest):
    action: Literal["pdf"]
    format: str = "A4"
    print_background: bool = True


class ScrollRequest(BaseRequest):
    action: Literal["scroll"]
    selector: Optional[str] = None
    delta_x: Annotated[float, BeforeValidator(_finite_or_zero)] = 0.0
    delta_y: Annotated[float, BeforeValidator(_finite_or_zero)] = 0.0
    to_top: bool = False
    to_bottom: bool = False


class ResizeRequest(BaseRequest):
    action: Literal["resize"]
    width: Annotated[Optional[int], _clamped(320, 4096)] = _default()
    height: Annotated[Optional[int], _clamped(240, 4096)] = _default()


class WaitRequest(BaseRequest):
    action: Literal["wait"]
    time_ms: Annotated[int, _clamped(0, 120_000, "wait_ms")] = _default()
    wait_for_selector: Optional[str] = None
    wait_for_text: Optional[str] = None
    url_contains: Optional[str] = None
    state: str = "visible"


class ScreenshotRequest(BaseRequest):
    action: Literal["screenshot"]
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("url", "targetUrl"))
    width: Annotated[int, _clamped(320, 4096, "screenshot_width")] = _default()
    height: Annotated[int, _clamped(240, 4096, "screenshot_height")] = _default()


class LoginRequest(BaseRequest):
    action: Literal["login"]
    service: Optional[str] = None
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("url", "targetUrl"))


class MfaRequest(BaseRequest):
    action: Literal["mfa"]
    code: NonEmptyStr
    service: Optional[str] = None


class ActRequest(BaseRequest):
    action: Literal["act"]
    kind: str = "click"
    request: dict[str, Any] = Field(default_factory=dict)


ActionRequest = Annotated[
    Union[
        StatusRequest,
        TabsRequest,
        ResetRequest,
        OpenRequest,
        LaunchRequest,
        FocusRequest,
        CloseRequest,
        NavigateRequest,
        ReloadRequest,
        HistoryRequest,
        SnapshotRequest,
        FormsRequest,
        SearchRequest,
        ClickRequest,
        FillRequest,
        SubmitRequest,
        HoverRequest,
        PressRequest,
        SelectRequest,
        DragRequest,
        EvaluateRequest,
        UploadRequest,
        DialogRequest,
        ConsoleRequest,
        PdfRequest,
        ScrollRequest,
        ResizeRequest,
        WaitRequest,
        ScreenshotRequest,
        LoginRequest,
        MfaRequest,
        ActRequest,
    ],
    Field(discriminator="action"),
]

ACTIONS = frozenset(
    {
        "status", "tabs", "reset", "open", "launch", "focus", "close", "navigate",
        "reload", "back", "forward", "snapshot", "forms", "search", "click", "type",
        "fill", "submit", "hover", "press", "select", "drag", "evaluate", "upload",
        "dialog", "console", "pdf", "scroll", "resize", "wait", "screenshot",
        "login", "mfa", "act",
    }
)

ACT_KINDS = frozenset(
    {
        "click", "type", "fill", "submit", "navigate", "wait", "hover", "press",
        "select", "drag", "evaluate", "upload", "dialog", "console", "pdf",
        "scroll", "resize", "close",
    }
)

_ADAPTER: TypeAdapter[Any] = TypeAdapter(ActionRequest)


def normalize_action(params: Mapping[str, Any]) -> str:
    action = str(params.get("action") or "").strip().lower()
    if not action:
        raise InvalidRequestError("action is required.")
    if action not in ACTIONS:
        raise InvalidRequestError(f"unsupported browser action: {action}")
    return action


def parse_request(params: Mapping[str, Any], limits: Optional[LimitsConfig] = None) -> BaseRequest:
    """Validate raw tool parameters into the request model for their action."""

    action = normalize_action(params)
    data = dict(params)
    data["action"] = action
    try:
        return _ADAPTER.validate_python(data, context={"limits": limits or LimitsConfig()})
    except ValidationError as exc:
        raise InvalidRequestError(_describe(action, exc)) from exc


def _describe(action: str, exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"][1:]) or "request"
        if error["type"] in {"missing", "string_too_short"}:
            messages.append(f"{location} is required for {action}.")
        else:
            messages.append(f"invalid {location} for {action}: {error['msg']}")
    return " ".join(messages)
