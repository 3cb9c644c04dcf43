"""The browser tool: one ``execute`` entry point over the fetch and live engines."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

from ..auth.credentials import CredentialLookup, find_credential, normalize_service, service_candidates
from ..auth.login_flow import (
    LiveLoginFlow,
    detect_mfa_in_document,
    find_mfa_form,
    plan_fetch_login,
    plan_mfa_values,
)
from ..browser.base import LivePage
from ..browser.live_session import LiveSessionManager
from ..config import ToolConfig
from ..engine.policy import EngineDecision, RequestedEngine, normalize_engine, resolve_engine
from ..errors import (
    BrowserToolError,
    FieldNotFoundError,
    FormNotFoundError,
    InvalidRequestError,
    LiveActionError,
)
from ..fetch.client import PageFetcher
from ..fetch.html_parser import normalize_http_url, normalize_http_url_or, title_from_url
from ..launcher import ExternalLauncher, FirefoxScreenshotter, open_in_system_browser
from ..models import DialogPlan, ElementRef, EngineMode, FileArtifact, Form, RefKind, Snapshot
from ..search import DuckDuckGoSearch
from ..snapshot.builder import SnapshotBuild, build_fetch_snapshot, field_selector, selector_for_ref
from ..snapshot.live_probe import build_live_snapshot
from ..tabs.registry import StepResult, Tab, TabRegistry
from . import live_actions
from .forms import (
    collect_payload,
    find_link,
    find_link_ref,
    get_submission_url,
    resolve_field,
    resolve_form,
    resolve_ref,
    set_form_value,
)
from .requests import (
    ACT_KINDS,
    ActRequest,
    BaseRequest,
    ClickRequest,
    CloseRequest,
    ConsoleRequest,
    DialogRequest,
    DragRequest,
    EvaluateRequest,
    FieldFill,
    FillRequest,
    FocusRequest,
    FormsRequest,
    HistoryRequest,
    HoverRequest,
    LaunchRequest,
    LoginRequest,
    MfaRequest,
    NavigateRequest,
    OpenRequest,
    PdfRequest,
    PressRequest,
    RefRequest,
    ReloadRequest,
    ResetRequest,
    ResizeRequest,
    ScreenshotRequest,
    ScrollRequest,
    SearchRequest,
    SelectRequest,
    SnapshotRequest,
    StatusRequest,
    SubmitRequest,
    TabsRequest,
    UploadRequest,
    WaitRequest,
    parse_request,
)

LOGGER = logging.getLogger(__name__)

CAPABILITIES = [
    "tabs",
    "snapshot",
    "refs",
    "search",
    "click",
    "forms",
    "fill",
    "submit",
    "hover",
    "press",
    "select",
    "drag",
    "evaluate",
    "upload",
    "dialog",
    "console",
    "pdf",
    "scroll",
    "resize",
    "wait",
    "screenshot",
    "launch",
    "login",
    "mfa",
]

_ANY_KIND = frozenset(RefKind)
_HISTORY_LIMIT_REASONS = {-1: "no previous history entry.", 1: "no next history entry."}

Step = Callable[[], Optional[Snapshot]]


def _no_credentials(service: str) -> None:
    return None


class BrowserTool:
    """Stateful browser for agents, backed by the fetch and live engines.

    Collaborators are injected so several instances can coexist and tests can
    replace the network, the browser driver and the credential store.
    """

    def __init__(
        self,
        config: Optional[ToolConfig] = None,
        *,
        registry: Optional[TabRegistry] = None,
        fetcher: Optional[PageFetcher] = None,
        live: Optional[LiveSessionManager] = None,
        credentials: Optional[CredentialLookup] = None,
        launcher: Optional[ExternalLauncher] = None,
        search: Optional[DuckDuckGoSearch] = None,
        screenshotter: Optional[FirefoxScreenshotter] = None,
    ) -> None:
        self.config = config or ToolConfig()
        self.limits = self.config.limits
        self.registry = registry or TabRegistry()
        self.fetcher = fetcher or PageFetcher(self.config.fetch)
        self.live = live or LiveSessionManager(None, config=self.config.live, limits=self.limits)
        self.credentials: CredentialLookup = credentials or _no_credentials
        self.launcher: ExternalLauncher = launcher or open_in_system_browser
        self.search_client = search or DuckDuckGoSearch(user_agent=self.config.fetch.user_agent)
        self.screenshotter = screenshotter or FirefoxScreenshotter(output_dir=self.config.artifacts_dir)
        self._handlers: dict[str, Callable[[Any], dict[str, Any]]] = {
            "status": self._status,
            "tabs": self._tabs,
            "reset": self._reset,
            "open": self._open,
            "launch": self._launch,
            "focus": self._focus,
            "close": self._close,
            "navigate": self._navigate,
            "reload": self._reload,
            "back": self._history,
            "forward": self._history,
            "snapshot": self._snapshot,
            "forms": self._forms,
            "search": self._search,
            "click": self._click,
            "type": self._fill,
            "fill": self._fill,
            "submit": self._submit,
            "hover": self._hover,
            "press": self._press,
            "select": self._select,
            "drag": self._drag,
            "evaluate": self._evaluate,
            "upload": self._upload,
            "dialog": self._dialog,
            "console": self._console,
            "pdf": self._pdf,
            "scroll": self._scroll,
            "resize": self._resize,
            "wait": self._wait,
            "screenshot": self._screenshot,
            "login": self._login,
            "mfa": self._mfa,
        }

    # -- entry point -------------------------------------------------------

    def execute(self, call_id: str, params: Mapping[str, Any]) -> dict[str, Any]:
        """Run one browser action and return its JSON-shaped result."""

        request = parse_request(params, self.limits)
        LOGGER.debug("Executing %s for call %s", request.action, call_id)
        if isinstance(request, ActRequest):
            return self._act(call_id, request, params)
        handler = self._handlers[request.action]
        try:
            return handler(request)
        except BrowserToolError:
            raise
        except self._live_errors as exc:
            raise LiveActionError(f"{request.action} failed: {exc}") from exc

    def close(self) -> None:
        self.live.reset()
        self.fetcher.close()

    def _act(self, call_id: str, request: ActRequest, params: Mapping[str, Any]) -> dict[str, Any]:
        kind = request.kind.strip().lower()
        if kind not in ACT_KINDS:
            raise InvalidRequestError(f"unsupported act kind: {kind}")
        delegated = {
            key: value for key, value in params.items() if key not in {"action", "kind", "request"}
        }
        delegated.update(request.request)
        delegated["action"] = kind
        result = self.execute(call_id, delegated)
        if "kind" in result:
            return result
        return {"kind": kind, **result}

    # -- engine plumbing ---------------------------------------------------

    @property
    def _live_errors(self) -> tuple[type[BaseException], ...]:
        return (self.live.driver_error, self.live.timeout_error)

    def _is_live_failure(self, exc: BaseException) -> bool:
        if isinstance(exc, LiveActionError):
            return True
        if isinstance(exc, BrowserToolError):
            return False
        return isinstance(exc, self._live_errors)

    def _live_available(self) -> bool:
        return self.config.live.enabled and self.live.is_available()

    def _unavailable_reason(self) -> str:
        if not self.config.live.enabled:
            return "live engine disabled by configuration"
        if self.live.launch_error:
            return f"live browser launch failed: {self.live.launch_error}"
        return "no live browser driver available"

    def _fallback_allowed(self, request: BaseRequest) -> bool:
        if request.allow_engine_fallback is None:
            return self.config.allow_engine_fallback
        return request.allow_engine_fallback

    def _decide(self, request: BaseRequest, tab: Optional[Tab]) -> EngineDecision:
        return resolve_engine(
            normalize_engine(request.engine),
            tab_has_live_page=tab is not None and self.live.has_page(tab.id),
            tab_exists=tab is not None,
            live_available=self._live_available(),
            allow_fallback=self._fallback_allowed(request),
            unavailable_reason=self._unavailable_reason(),
        )

    def _resolve_tab(self, request: BaseRequest) -> Tab:
        tab = self.registry.resolve(request.tab_id)
        self.registry.set_active(tab)
        return tab

    def _require_live(self, request: BaseRequest, decision: EngineDecision) -> None:
        if decision.engine is not EngineMode.LIVE:
            raise InvalidRequestError(f"{request.action} requires engine=live.")

    # -- envelopes ---------------------------------------------------------

    def _tab_view(self, tab: Tab) -> dict[str, Any]:
        view = self.registry.summary(tab)
        view["engine"] = EngineMode.LIVE.value if self.live.has_page(tab.id) else EngineMode.FETCH.value
        view["formsCount"] = len(tab.forms)
        view["consoleCount"] = len(self.live.console_entries(tab.id))
        view["dialogArmed"] = self.live.dialog_plan(tab.id) is not None
        return view

    def _envelope(
        self,
        decision: EngineDecision,
        tab: Optional[Tab],
        snapshot: Optional[Snapshot] = None,
        **extra: Any,
    ) -> dict[str, Any]:
        result: dict[str, Any] = {
            "ok": True,
            "engine": decision.engine.value,
            "activeTabId": self.registry.active_tab_id,
        }
        if tab is not None:
            result["tab"] = self._tab_view(tab)
        result["snapshot"] = snapshot.to_wire() if snapshot is not None else None
        if decision.fallback_from is not None:
            result["fallbackFrom"] = decision.fallback_from.value
            result["fallbackReason"] = decision.reason
        result.update(extra)
        return result

    # -- snapshot capture --------------------------------------------------

    def _apply_build(self, tab: Tab, build: SnapshotBuild) -> Snapshot:
        snapshot = build.snapshot
        tab.last_snapshot = snapshot
        tab.last_html = build.html
        tab.forms = build.forms
        tab.form_values = {}
        tab.next_ref = build.next_ref
        self.registry.record_redirect(tab, normalize_http_url_or(snapshot.url, tab.url))
        tab.title = snapshot.title or tab.title
        tab.touch()
        return snapshot

    def _capture_fetch(
        self,
        tab: Tab,
        request: BaseRequest,
        *,
        method: str = "GET",
        body: Optional[list[tuple[str, str]]] = None,
    ) -> Snapshot:
        target = tab.url
        attempts = 1 + request.snapshot_retries if method == "GET" else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                result = self.fetcher.fetch(
                    target,
                    method=method,
                    body=body,
                    cookie_header=tab.cookies.header_for(target),
                    timeout_ms=request.timeout_ms,
                    max_bytes=request.max_bytes,
                )
                break
            except BrowserToolError as exc:
                LOGGER.warning(
                    "Fetching %s for %s failed (attempt %d/%d): %s",
                    target,
                    tab.id,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt >= attempts:
                    raise
        tab.cookies.update_from_responses(result.set_cookies)
        build = build_fetch_snapshot(
            result,
            self.limits,
            start_ref=tab.next_ref,
            max_chars=request.max_chars,
            max_links=request.max_links,
        )
        return self._apply_build(tab, build)

    def _capture_live(self, tab: Tab, request: BaseRequest) -> Snapshot:
        page = self.live.require(tab.id)
        try:
            page.wait_for_load_state("domcontentloaded", timeout=request.timeout_ms)
        except self._live_errors:
            LOGGER.debug("Capturing %s before the page finished loading", tab.id)
        url = normalize_http_url_or(page.url, tab.url)
        build = build_live_snapshot(
            page,
            self.live.page_meta(tab.id),
            self.limits,
            start_ref=tab.next_ref,
            max_bytes=request.max_bytes,
            max_chars=request.max_chars,
            max_links=request.max_links,
            url=url,
        )
        snapshot = self._apply_build(tab, build)
        self._sync_live_cookies(tab, page, url)
        return snapshot

    def _capture(self, tab: Tab, decision: EngineDecision, request: BaseRequest) -> Snapshot:
        if decision.engine is EngineMode.LIVE:
            self._ensure_live_page(tab, request)
            return self._capture_live(tab, request)
        return self._capture_fetch(tab, request)

    def _ensure_snapshot(self, tab: Tab, decision: EngineDecision, request: BaseRequest) -> None:
        if tab.last_snapshot is None:
            self._capture(tab, decision, request)

    def _sync_live_cookies(self, tab: Tab, page: LivePage, url: str) -> None:
        try:
            cookies = page.context.cookies([url])
        except self._live_errors as exc:
            LOGGER.debug("Could not read live cookies for %s: %s", tab.id, exc)
            return
        tab.cookies.replace_from_live(cookies)

    def _sync_live_metadata(self, tab: Tab, page: LivePage) -> None:
        url = normalize_http_url_or(page.url, tab.url)
        self.registry.record_redirect(tab, url)
        tab.title = page.title() or title_from_url(url)
        tab.touch()

    def _follow_live_url(self, tab: Tab, page: LivePage, before: str) -> None:
        current = normalize_http_url_or(page.url, tab.url)
        if current != before:
            self.registry.append_history(tab, current)
            tab.clear_page_state()

    def _finish_live(self, tab: Tab, page: LivePage, request: BaseRequest, want: bool) -> Optional[Snapshot]:
        if want:
            return self._capture_live(tab, request)
        self._sync_live_metadata(tab, page)
        return None

    # -- live pages --------------------------------------------------------

    def _goto(self, tab: Tab, page: LivePage, url: str, request: BaseRequest) -> None:
        response = page.goto(url, timeout=request.timeout_ms, wait_until="domcontentloaded")
        self.live.record_response(tab.id, response)

    def _ensure_live_page(self, tab: Tab, request: BaseRequest) -> LivePage:
        page = self.live.get(tab.id)
        if page is None:
            LOGGER.info("Opening a live page for %s at %s", tab.id, tab.url)
            page = self.live.open_page(tab.id)
            self._goto(tab, page, tab.url, request)
        return page

    def _register_popup(
        self,
        parent: Tab,
        popup: LivePage,
        request: BaseRequest,
        want: bool,
    ) -> tuple[Tab, Optional[Snapshot]]:
        fallback = normalize_http_url_or(parent.url, self.config.default_url)
        popup_tab = self.registry.create_background_tab(normalize_http_url_or(popup.url, fallback))
        self.live.attach(popup_tab.id, popup)
        LOGGER.info("Click on %s opened popup tab %s", parent.id, popup_tab.id)
        try:
            popup.wait_for_load_state("domcontentloaded", timeout=min(request.timeout_ms, 10_000))
        except self._live_errors:
            LOGGER.debug("Popup %s did not finish loading", popup_tab.id)
        if want:
            try:
                return popup_tab, self._capture_live(popup_tab, request)
            except self._live_errors as exc:
                LOGGER.debug("Popup snapshot for %s failed: %s", popup_tab.id, exc)
        self._sync_live_metadata(popup_tab, popup)
        return popup_tab, None

    def _run_navigation(
        self,
        tab: Tab,
        decision: EngineDecision,
        request: BaseRequest,
        live_step: Step,
        fetch_step: Step,
    ) -> tuple[EngineDecision, Optional[Snapshot]]:
        """Run a navigation, retrying a failed live attempt on the fetch engine."""

        if decision.engine is EngineMode.FETCH:
            return decision, fetch_step()
        try:
            return decision, live_step()
        except Exception as exc:
            if not self._is_live_failure(exc) or not self._fallback_allowed(request):
                raise
            reason = str(exc) or exc.__class__.__name__
            LOGGER.warning("Live %s failed for %s, retrying on fetch: %s", request.action, tab.id, reason)
            self.live.close(tab.id)
            fallback = EngineDecision(EngineMode.FETCH, fallback_from=EngineMode.LIVE, reason=reason)
            return fallback, fetch_step()

    def _load_new_tab(
        self,
        tab: Tab,
        decision: EngineDecision,
        request: BaseRequest,
        want: bool,
    ) -> tuple[EngineDecision, Optional[Snapshot]]:
        def live_step() -> Optional[Snapshot]:
            page = self.live.open_page(tab.id)
            self._goto(tab, page, tab.url, request)
            return self._finish_live(tab, page, request, want)

        def fetch_step() -> Optional[Snapshot]:
            return self._capture_fetch(tab, request) if want else None

        return self._run_navigation(tab, decision, request, live_step, fetch_step)

    # -- session and tabs --------------------------------------------------

    def _status(self, request: StatusRequest) -> dict[str, Any]:
        requested = normalize_engine(request.engine)
        live_available = self._live_available()
        prefers_live = requested is not RequestedEngine.FETCH and live_available
        result: dict[str, Any] = {
            "ok": True,
            "engine": EngineMode.LIVE.value if prefers_live else EngineMode.FETCH.value,
            "requestedEngine": requested.value,
            "liveAvailable": live_available,
            "liveRunning": self.live.running,
            "liveTabCount": self.live.page_count,
            "capabilities": list(CAPABILITIES),
            "activeTabId": self.registry.active_tab_id,
            "tabCount": len(self.registry.tabs),
            "createdAt": self.registry.created_at.isoformat(),
        }
        if not live_available:
            result["liveUnavailableReason"] = self._unavailable_reason()
        return result

    def _tabs(self, request: TabsRequest) -> dict[str, Any]:
        return {
            "ok": True,
            "activeTabId": self.registry.active_tab_id,
            "tabs": [self._tab_view(tab) for tab in self.registry.tabs],
        }

    def _reset(self, request: ResetRequest) -> dict[str, Any]:
        LOGGER.info("Resetting browser state")
        self.live.reset()
        self.registry.reset()
        return {"ok": True, "reset": True}

    def _open(self, request: OpenRequest) -> dict[str, Any]:
        url = normalize_http_url(request.url or self.config.default_url)
        decision = self._decide(request, None)
        tab = self.registry.create_tab(url)
        decision, snapshot = self._load_new_tab(tab, decision, request, request.snapshot_wanted(True))
        return self._envelope(decision, tab, snapshot)

    def _launch(self, request: LaunchRequest) -> dict[str, Any]:
        tab = self.registry.find(request.tab_id or self.registry.active_tab_id)
        if request.url:
            url = normalize_http_url(request.url)
        else:
            url = tab.url if tab is not None else normalize_http_url(self.config.default_url)
        result = self.launcher(url, request.timeout_ms)
        if not result.launched:
            LOGGER.warning("No system browser opened %s", url)
        return {
            "ok": result.launched,
            "engine": "external",
            "activeTabId": self.registry.active_tab_id,
            "url": url,
            "launched": result.launched,
            "command": result.command or None,
        }

    def _focus(self, request: FocusRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        return {"ok": True, "activeTabId": tab.id, "tab": self._tab_view(tab)}

    def _close(self, request: CloseRequest) -> dict[str, Any]:
        tab = self.registry.resolve(request.tab_id)
        self.live.close(tab.id)
        self.registry.close(tab)
        return {
            "ok": True,
            "closedTabId": tab.id,
            "activeTabId": self.registry.active_tab_id,
            "tabs": [self._tab_view(entry) for entry in self.registry.tabs],
        }

    # -- navigation --------------------------------------------------------

    def _navigate(self, request: NavigateRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        url = normalize_http_url(request.url)
        decision = self._decide(request, tab)
        self.registry.navigate(tab, url)
        want = request.snapshot_wanted(True)

        def live_step() -> Optional[Snapshot]:
            page = self.live.get(tab.id) or self.live.open_page(tab.id)
            self._goto(tab, page, tab.url, request)
            return self._finish_live(tab, page, request, want)

        def fetch_step() -> Optional[Snapshot]:
            return self._capture_fetch(tab, request) if want else None

        decision, snapshot = self._run_navigation(tab, decision, request, live_step, fetch_step)
        return self._envelope(decision, tab, snapshot)

    def _reload(self, request: ReloadRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        want = request.snapshot_wanted(True)

        def live_step() -> Optional[Snapshot]:
            page = self.live.get(tab.id)
            if page is None:
                page = self.live.open_page(tab.id)
                self._goto(tab, page, tab.url, request)
            else:
                response = page.reload(timeout=request.timeout_ms, wait_until="domcontentloaded")
                self.live.record_response(tab.id, response)
            return self._finish_live(tab, page, request, want)

        def fetch_step() -> Optional[Snapshot]:
            return self._capture_fetch(tab, request) if want else None

        decision, snapshot = self._run_navigation(tab, decision, request, live_step, fetch_step)
        return self._envelope(decision, tab, snapshot)

    def _history(self, request: HistoryRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        delta = -1 if request.action == "back" else 1
        want = request.snapshot_wanted(True)
        outcome: Optional[StepResult] = None

        def fetch_step() -> Optional[Snapshot]:
            nonlocal outcome
            if outcome is None:
                outcome = self.registry.step(tab, delta)
            if outcome.moved and want:
                return self._capture_fetch(tab, request)
            return None

        def live_step() -> Optional[Snapshot]:
            nonlocal outcome
            page = self.live.get(tab.id)
            if page is None:
                outcome = self.registry.step(tab, delta)
                if not outcome.moved:
                    return None
                page = self.live.open_page(tab.id)
                self._goto(tab, page, tab.url, request)
                return self._finish_live(tab, page, request, want)
            move = page.go_back if delta < 0 else page.go_forward
            response = move(timeout=request.timeout_ms, wait_until="domcontentloaded")
            if response is None:
                outcome = StepResult(moved=False, url=tab.url, reason=_HISTORY_LIMIT_REASONS[delta])
                return None
            self.live.record_response(tab.id, response)
            if not self.registry.step(tab, delta).moved:
                LOGGER.debug("Live history of %s moved past the recorded history", tab.id)
                tab.clear_page_state()
            current = normalize_http_url_or(page.url, tab.url)
            self.registry.record_redirect(tab, current)
            outcome = StepResult(moved=True, url=current)
            return self._finish_live(tab, page, request, want)

        decision, snapshot = self._run_navigation(tab, decision, request, live_step, fetch_step)
        moved = outcome is not None and outcome.moved
        extra: dict[str, Any] = {"moved": moved}
        if outcome is not None and not moved:
            extra["reason"] = outcome.reason
        return self._envelope(decision, tab, snapshot, **extra)

    def _snapshot(self, request: SnapshotRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        snapshot = self._capture(tab, decision, request)
        return self._envelope(
            decision,
            tab,
            snapshot,
            forms=[form.to_wire() for form in tab.forms],
            refs=[ref.to_wire() for ref in snapshot.refs],
        )

    def _forms(self, request: FormsRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        self._ensure_snapshot(tab, decision, request)
        return self._envelope(
            decision,
            tab,
            forms=[form.to_wire() for form in tab.forms],
            formValues={str(form.index): dict(collect_payload(tab, form)) for form in tab.forms},
            refs=[ref.to_wire() for ref in tab.last_snapshot.refs] if tab.last_snapshot else [],
        )

    def _search(self, request: SearchRequest) -> dict[str, Any]:
        results = self.search_client.search(
            request.query,
            count=request.count,
            region=request.region,
            timeout_ms=request.timeout_ms,
        )
        payload: dict[str, Any] = {
            "ok": True,
            "query": request.query,
            "region": request.region,
            "count": len(results),
            "results": [result.model_dump() for result in results],
            "activeTabId": self.registry.active_tab_id,
            "openedTab": None,
            "openedEngine": None,
            "snapshot": None,
        }
        if not (request.open_first_result and results):
            return payload
        decision = self._decide(request, None)
        tab = self.registry.create_tab(results[0].url)
        decision, snapshot = self._load_new_tab(tab, decision, request, True)
        payload.update(
            activeTabId=self.registry.active_tab_id,
            openedTab=self._tab_view(tab),
            openedEngine=decision.engine.value,
            snapshot=snapshot.to_wire() if snapshot is not None else None,
        )
        if decision.fallback_from is not None:
            payload["fallbackFrom"] = decision.fallback_from.value
            payload["fallbackReason"] = decision.reason
        return payload

    # -- clicks and forms --------------------------------------------------

    def _click(self, request: ClickRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        self._ensure_snapshot(tab, decision, request)
        ref = resolve_ref(tab, request.ref)
        want = request.snapshot_wanted(True)
        if decision.engine is EngineMode.LIVE:
            return self._click_live(tab, decision, request, ref, want)
        if request.selector:
            raise InvalidRequestError("selector-based click requires engine=live.")
        if ref is not None and ref.kind is RefKind.SUBMIT:
            form = resolve_form(tab, ref.form_index, ref)
            snapshot, extra = self._submit_fetch(tab, form, request, want)
            return self._envelope(
                decision,
                tab,
                snapshot,
                clicked={"ref": ref.ref, "kind": ref.kind.value, "name": ref.name},
                method=form.method,
                formIndex=form.index,
                **extra,
            )
        if ref is not None:
            if ref.kind is not RefKind.LINK or not ref.url:
                raise InvalidRequestError(
                    f"ref {ref.ref} ({ref.kind.value}) is not clickable on the fetch engine."
                )
            clicked: dict[str, Any] = {"ref": ref.ref, "kind": ref.kind.value, "text": ref.name, "url": ref.url}
            target = ref.url
        else:
            link = find_link(
                tab,
                link_index=request.link_index,
                link_text=request.link_text,
                href_contains=request.href_contains,
            )
            clicked = link.to_wire()
            target = link.url
        self.registry.navigate(tab, target)
        snapshot = self._capture_fetch(tab, request) if want else None
        return self._envelope(decision, tab, snapshot, clicked=clicked)

    def _click_live(
        self,
        tab: Tab,
        decision: EngineDecision,
        request: ClickRequest,
        ref: Optional[ElementRef],
        want: bool,
    ) -> dict[str, Any]:
        page = self._ensure_live_page(tab, request)
        selector = request.selector
        resolved = ref
        target_url: Optional[str] = None
        if not selector and ref is not None:
            selector = selector_for_ref(ref)
            if selector is None:
                if ref.kind is not RefKind.LINK or not ref.url:
                    raise InvalidRequestError(f"could not resolve selector for ref {ref.ref}.")
                target_url = ref.url
        elif not selector:
            link = find_link(
                tab,
                link_index=request.link_index,
                link_text=request.link_text,
                href_contains=request.href_contains,
            )
            resolved = find_link_ref(tab, link)
            selector = selector_for_ref(resolved) if resolved is not None else None
            if selector is None:
                target_url = link.url

        before = normalize_http_url_or(page.url, tab.url)
        popup: Optional[LivePage] = None
        button = request.button
        click_count = request.effective_click_count()
        if selector:
            modifiers = live_actions.normalize_modifiers(request.modifiers)
            popup = live_actions.click_with_popup(
                page,
                selector,
                timeout_ms=request.timeout_ms,
                popup_wait_ms=request.popup_wait_ms,
                button=button,
                click_count=click_count,
                modifiers=modifiers,
                timeout_error=self.live.timeout_error,
                errors=self._live_errors,
            )
            clicked: dict[str, Any] = {
                "selector": selector,
                "ref": resolved.ref if resolved else None,
                "kind": resolved.kind.value if resolved else None,
                "name": resolved.name if resolved else None,
                "button": button,
                "clickCount": click_count,
                "modifiers": modifiers,
            }
        elif target_url is None:
            raise InvalidRequestError("click requires selector, ref, or a link to follow.")
        else:
            self.registry.navigate(tab, target_url)
            self._goto(tab, page, tab.url, request)
            before = normalize_http_url_or(page.url, tab.url)
            self.registry.record_redirect(tab, before)
            clicked = {"url": tab.url, "ref": resolved.ref if resolved else None}

        opened: Optional[Tab] = None
        popup_snapshot: Optional[Snapshot] = None
        if popup is not None:
            opened, popup_snapshot = self._register_popup(tab, popup, request, want)

        self._follow_live_url(tab, page, before)
        active = tab
        snapshot: Optional[Snapshot] = None
        opened_snapshot: Optional[Snapshot] = None
        if opened is not None and request.focus_popup:
            self.registry.set_active(opened)
            active = opened
            if want:
                snapshot = popup_snapshot or self._capture_live(opened, request)
        else:
            self.registry.set_active(tab)
            snapshot = self._finish_live(tab, page, request, want)
            opened_snapshot = popup_snapshot
        return self._envelope(
            decision,
            active,
            snapshot,
            clicked=clicked,
            openedTab=self._tab_view(opened) if opened is not None else None,
            openedSnapshot=opened_snapshot.to_wire() if opened_snapshot is not None else None,
        )

    def _submit_fetch(
        self,
        tab: Tab,
        form: Form,
        request: BaseRequest,
        want: bool,
    ) -> tuple[Optional[Snapshot], dict[str, Any]]:
        payload = collect_payload(tab, form)
        if form.method == "get":
            target = get_submission_url(form, payload)
            self.registry.navigate(tab, target)
            snapshot = self._capture_fetch(tab, request) if want else None
            return snapshot, {"actionUrl": form.action, "submittedUrl": tab.url}
        self.registry.navigate(tab, form.action)
        LOGGER.debug("Posting form %s of %s with %d fields", form.index, tab.id, len(payload))
        snapshot = self._capture_fetch(tab, request, method="POST", body=payload)
        extra = {"actionUrl": form.action, "submittedBytes": len(urlencode(payload))}
        return (snapshot if want else None), extra

    def _fill(self, request: FillRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        self._ensure_snapshot(tab, decision, request)
        page = self._ensure_live_page(tab, request) if decision.engine is EngineMode.LIVE else None
        batch = request.fields is not None
        entries = request.fields or [
            FieldFill(ref=request.ref, field_name=request.field_name, value=request.value)
        ]
        filled: list[dict[str, Any]] = []
        for entry in entries:
            selector = None if batch else request.selector
            filled.append(self._fill_one(tab, request, page, entry, selector))
        if batch:
            return self._envelope(
                decision,
                tab,
                action=request.action,
                batch=True,
                filled=filled,
                formValues={str(index): values for index, values in tab.form_values.items()},
            )
        return self._envelope(decision, tab, action=request.action, **filled[0])

    def _fill_one(
        self,
        tab: Tab,
        request: FillRequest,
        page: Optional[LivePage],
        entry: FieldFill,
        selector: Optional[str],
    ) -> dict[str, Any]:
        ref = resolve_ref(tab, entry.ref)
        if page is not None and (selector or (ref is not None and ref.form_index is None)):
            # Elements outside any form are typed into directly.
            target = selector or (ref.selector if ref is not None else None)
            if not target:
                raise InvalidRequestError(f"could not resolve selector for ref {entry.ref}.")
            page.locator(target).first.fill(entry.value, timeout=request.timeout_ms)
            return {"selector": target, "ref": ref.ref if ref else None, "value": entry.value}
        form = resolve_form(tab, request.form_index, ref)
        field = resolve_field(form, entry.field_name, ref)
        values = set_form_value(tab, form, field, entry.value)
        result: dict[str, Any] = {
            "formIndex": form.index,
            "fieldName": field.name,
            "value": entry.value,
            "formValues": dict(values),
        }
        if page is not None:
            target = ref.selector if ref is not None and ref.selector else field_selector(form.index, field.name)
            result["applied"] = live_actions.fill_field(
                page,
                target,
                form.index,
                field.name,
                entry.value,
                timeout_ms=request.timeout_ms,
                errors=self._live_errors,
            )
        return result

    def _submit(self, request: SubmitRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        self._ensure_snapshot(tab, decision, request)
        ref = resolve_ref(tab, request.ref)
        form = resolve_form(tab, request.form_index, ref)
        want = request.snapshot_wanted(True)
        if decision.engine is EngineMode.LIVE:
            page = self._ensure_live_page(tab, request)
            before = normalize_http_url_or(page.url, tab.url)
            payload = collect_payload(tab, form)
            submit_method = live_actions.submit_form(
                page,
                form.index,
                dict(tab.form_values.get(form.index, {})),
                timeout_ms=request.timeout_ms,
                errors=self._live_errors,
            )
            if submit_method == "missing":
                raise FormNotFoundError(f"form index {form.index} not found on the live page.")
            self._follow_live_url(tab, page, before)
            snapshot = self._finish_live(tab, page, request, want)
            return self._envelope(
                decision,
                tab,
                snapshot,
                method=form.method,
                actionUrl=form.action,
                submittedBytes=len(urlencode(payload)),
                formIndex=form.index,
                submitMethod=submit_method,
            )
        snapshot, extra = self._submit_fetch(tab, form, request, want)
        return self._envelope(decision, tab, snapshot, method=form.method, formIndex=form.index, **extra)

    # -- render-only actions -----------------------------------------------

    def _live_target(self, request: BaseRequest) -> tuple[Tab, EngineDecision, LivePage]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        self._require_live(request, decision)
        return tab, decision, self._ensure_live_page(tab, request)

    def _element(
        self,
        tab: Tab,
        decision: EngineDecision,
        request: RefRequest,
        kinds: frozenset[RefKind] = _ANY_KIND,
        *,
        ref_value: Optional[str] = None,
    ) -> tuple[str, Optional[ElementRef]]:
        if request.selector and ref_value is None:
            return request.selector, None
        wanted = ref_value if ref_value is not None else request.ref
        if not wanted:
            raise InvalidRequestError(f"{request.action} requires selector or ref.")
        self._ensure_snapshot(tab, decision, request)
        ref = resolve_ref(tab, wanted)
        if ref is None:
            raise InvalidRequestError(f"{request.action} requires selector or ref.")
        if ref.kind not in kinds:
            raise InvalidRequestError(f"ref {ref.ref} ({ref.kind.value}) cannot be used for {request.action}.")
        selector = selector_for_ref(ref)
        if not selector:
            raise InvalidRequestError(f"could not resolve selector for ref {ref.ref}.")
        return selector, ref

    def _after_render_action(
        self,
        tab: Tab,
        decision: EngineDecision,
        request: BaseRequest,
        default_snapshot: bool = False,
        **extra: Any,
    ) -> dict[str, Any]:
        snapshot = self._capture_live(tab, request) if request.snapshot_wanted(default_snapshot) else None
        return self._envelope(decision, tab, snapshot, **extra)

    def _hover(self, request: HoverRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        selector, ref = self._element(tab, decision, request)
        page.locator(selector).first.hover(timeout=request.timeout_ms)
        return self._after_render_action(tab, decision, request, selector=selector, ref=ref.ref if ref else None)

    def _press(self, request: PressRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        selector: Optional[str] = None
        ref: Optional[ElementRef] = None
        if request.selector or request.ref:
            selector, ref = self._element(tab, decision, request)
            page.locator(selector).first.press(request.key, timeout=request.timeout_ms)
        else:
            page.keyboard.press(request.key)
        return self._after_render_action(
            tab,
            decision,
            request,
            key=request.key,
            selector=selector,
            ref=ref.ref if ref else None,
        )

    def _select(self, request: SelectRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        values = request.selected_values()
        if not values:
            raise InvalidRequestError("select requires value or values.")
        ref: Optional[ElementRef] = None
        form_index: Optional[int] = None
        field_name: Optional[str] = None
        if request.selector or request.ref:
            selector, ref = self._element(tab, decision, request, frozenset({RefKind.FIELD}))
            if ref is not None:
                form_index, field_name = ref.form_index, ref.field_name
        else:
            self._ensure_snapshot(tab, decision, request)
            form = resolve_form(tab, request.form_index)
            field = resolve_field(form, request.field_name)
            if field.type != "select":
                raise InvalidRequestError(f'field "{field.name}" is not a select field.')
            selector = field_selector(form.index, field.name)
            form_index, field_name = form.index, field.name
        selected = page.locator(selector).first.select_option(values, timeout=request.timeout_ms)
        if form_index and field_name:
            tab.form_values.setdefault(form_index, {})[field_name] = values[0]
        tab.touch()
        return self._after_render_action(
            tab,
            decision,
            request,
            selector=selector,
            ref=ref.ref if ref else None,
            values=values,
            selected=list(selected or []),
        )

    def _drag(self, request: DragRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        start_ref_value = request.start_ref or request.ref
        start_selector, start_ref = request.start_selector, None
        end_selector, end_ref = request.end_selector, None
        if not start_selector and start_ref_value:
            start_selector, start_ref = self._element(tab, decision, request, ref_value=start_ref_value)
        if not end_selector and request.end_ref:
            end_selector, end_ref = self._element(tab, decision, request, ref_value=request.end_ref)
        if not start_selector or not end_selector:
            raise InvalidRequestError("drag requires startSelector/endSelector or startRef/endRef.")
        page.locator(start_selector).first.drag_to(
            page.locator(end_selector).first,
            timeout=request.timeout_ms,
        )
        return self._after_render_action(
            tab,
            decision,
            request,
            startSelector=start_selector,
            endSelector=end_selector,
            startRef=start_ref.ref if start_ref else None,
            endRef=end_ref.ref if end_ref else None,
        )

    def _evaluate(self, request: EvaluateRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        result = live_actions.evaluate_expression(page, request.expression)
        return self._after_render_action(tab, decision, request, result=result)

    def _upload(self, request: UploadRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        paths = request.upload_paths()
        if not paths:
            raise InvalidRequestError("upload requires path or paths.")
        missing = [entry for entry in paths if not Path(entry).is_file()]
        if missing:
            raise InvalidRequestError(f"upload file not found: {missing[0]}")
        selector, ref = self._element(tab, decision, request, frozenset({RefKind.FIELD}))
        page.locator(selector).first.set_input_files(paths, timeout=request.timeout_ms)
        return self._after_render_action(
            tab,
            decision,
            request,
            True,
            selector=selector,
            ref=ref.ref if ref else None,
            uploaded=paths,
        )

    def _dialog(self, request: DialogRequest) -> dict[str, Any]:
        tab, decision, _page = self._live_target(request)
        armed: Optional[dict[str, Any]] = None
        if request.wants_arming():
            prompt = (request.prompt_text or "").strip() or None
            plan = DialogPlan(
                mode="accept" if request.accept else "dismiss",
                prompt_text=prompt,
                once=request.once is not False,
            )
            self.live.arm_dialog(tab.id, plan)
            armed = {"mode": plan.mode, "once": plan.once, "promptText": prompt}
        events = self.live.dialog_events(tab.id)[-request.limit :]
        if request.clear:
            self.live.clear_dialogs(tab.id)
        return self._envelope(
            decision,
            tab,
            armed=armed,
            armedActive=self.live.dialog_plan(tab.id) is not None,
            clear=request.clear,
            events=[event.to_wire() for event in events],
        )

    def _console(self, request: ConsoleRequest) -> dict[str, Any]:
        tab, decision, _page = self._live_target(request)
        rows = self.live.console_entries(tab.id)
        messages = rows[-request.limit :]
        if request.clear:
            self.live.clear_console(tab.id)
        return self._envelope(
            decision,
            tab,
            count=len(messages),
            total=len(rows),
            clear=request.clear,
            messages=[message.to_wire() for message in messages],
        )

    def _artifact_path(self, prefix: str, suffix: str) -> Path:
        directory = Path(self.config.artifacts_dir)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}{suffix}"

    def _pdf(self, request: PdfRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        path = self._artifact_path("browser-pdf", ".pdf")
        page_format = request.format.strip() or "A4"
        page.pdf(path=str(path), format=page_format, print_background=request.print_background)
        artifact = FileArtifact(
            path=str(path),
            bytes=path.stat().st_size,
            mime_type="application/pdf",
            url=normalize_http_url_or(page.url, tab.url),
            format=page_format,
            print_background=request.print_background,
        )
        return self._envelope(decision, tab, pdf=artifact.to_wire())

    def _scroll(self, request: ScrollRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        live_actions.scroll(
            page,
            selector=request.selector,
            delta_x=request.delta_x,
            delta_y=request.delta_y,
            to_top=request.to_top,
            to_bottom=request.to_bottom,
        )
        return self._after_render_action(
            tab,
            decision,
            request,
            selector=request.selector or None,
            deltaX=request.delta_x,
            deltaY=request.delta_y,
            toTop=request.to_top,
            toBottom=request.to_bottom,
        )

    def _resize(self, request: ResizeRequest) -> dict[str, Any]:
        tab, decision, page = self._live_target(request)
        width = request.width or self.config.live.viewport_width
        height = request.height or self.config.live.viewport_height
        page.set_viewport_size({"width": width, "height": height})
        tab.touch()
        return self._after_render_action(tab, decision, request, width=width, height=height)

    # -- waiting and artifacts ---------------------------------------------

    def _wait(self, request: WaitRequest) -> dict[str, Any]:
        if request.tab_id:
            tab: Optional[Tab] = self._resolve_tab(request)
        else:
            tab = self.registry.find(self.registry.active_tab_id)
        decision = self._decide(request, tab)
        waited_for = "delay"
        if tab is not None and decision.engine is EngineMode.LIVE and self.live.has_page(tab.id):
            page = self.live.require(tab.id)
            before = normalize_http_url_or(page.url, tab.url)
            waited_for = live_actions.wait_on_page(
                page,
                selector=request.wait_for_selector,
                text=request.wait_for_text,
                url_contains=request.url_contains,
                state=request.state.strip().lower(),
                delay_ms=request.time_ms,
                timeout_ms=request.timeout_ms,
            )
            self._follow_live_url(tab, page, before)
        else:
            time.sleep(request.time_ms / 1000)
        if tab is None:
            return {
                "ok": True,
                "engine": decision.engine.value,
                "activeTabId": self.registry.active_tab_id,
                "waitedMs": request.time_ms,
                "waitedFor": waited_for,
            }
        snapshot = None
        if request.snapshot_wanted(False):
            snapshot = self._capture(tab, decision, request)
        return self._envelope(decision, tab, snapshot, waitedMs=request.time_ms, waitedFor=waited_for)

    def _screenshot(self, request: ScreenshotRequest) -> dict[str, Any]:
        tab: Optional[Tab] = None
        if request.tab_id or not request.url:
            tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        if tab is not None and decision.engine is EngineMode.LIVE:
            page = self._ensure_live_page(tab, request)
            path = self._artifact_path("browser-live-shot", ".png")
            page.set_viewport_size({"width": request.width, "height": request.height})
            page.screenshot(path=str(path), type="png", timeout=request.timeout_ms, full_page=False)
            url = normalize_http_url_or(page.url, tab.url)
        else:
            url = tab.url if tab is not None else normalize_http_url(request.url)
            if not self.screenshotter.available():
                raise BrowserToolError(
                    "screenshot needs a live browser page or a firefox executable on PATH."
                )
            path = self.screenshotter.capture(
                url,
                width=request.width,
                height=request.height,
                timeout_ms=request.timeout_ms,
            )
            decision = EngineDecision(EngineMode.FETCH, decision.fallback_from, decision.reason)
        artifact = FileArtifact(
            path=str(path),
            bytes=path.stat().st_size,
            mime_type="image/png",
            url=url,
            width=request.width,
            height=request.height,
        )
        result = self._envelope(decision, None, screenshot=artifact.to_wire())
        result.pop("snapshot")
        return result

    # -- credentials -------------------------------------------------------

    def _login_tab(self, request: LoginRequest) -> tuple[Tab, EngineDecision]:
        if request.url and not request.tab_id:
            url = normalize_http_url(request.url)
            decision = self._decide(request, None)
            tab = self.registry.create_tab(url)
            decision, _snapshot = self._load_new_tab(tab, decision, request, True)
            return tab, decision
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        if request.url:
            self.registry.navigate(tab, normalize_http_url(request.url))
            if decision.engine is EngineMode.LIVE:
                page = self._ensure_live_page(tab, request)
                self._goto(tab, page, tab.url, request)
        return tab, decision

    def _login(self, request: LoginRequest) -> dict[str, Any]:
        tab, decision = self._login_tab(request)
        candidates = service_candidates(request.service, tab.url)
        credential = find_credential(self.credentials, candidates)
        LOGGER.info("Logging in to %s on %s", credential.service, tab.id)
        want = request.snapshot_wanted(True)
        if decision.engine is EngineMode.LIVE:
            page = self._ensure_live_page(tab, request)
            before = normalize_http_url_or(page.url, tab.url)
            flow = LiveLoginFlow(page, timeout_ms=request.timeout_ms, errors=self._live_errors)
            outcome = flow.login(credential, credential.service)
            self._follow_live_url(tab, page, before)
            snapshot = self._finish_live(tab, page, request, want)
            return self._envelope(
                decision,
                tab,
                snapshot,
                service=credential.service,
                authMode=credential.auth_mode,
                candidates=candidates,
                identifierFilled=outcome.identifier_filled,
                passwordFilled=outcome.password_filled,
                submitted=outcome.submitted,
                requiresMfa=outcome.requires_mfa,
                steps=outcome.steps,
            )
        self._ensure_snapshot(tab, decision, request)
        plan = plan_fetch_login(tab.forms, credential)
        if plan is None:
            raise FormNotFoundError("no login form found on the page.")
        steps: list[str] = []
        for name, value in plan.values.items():
            field = plan.form.field(name)
            if field is None:
                continue
            set_form_value(tab, plan.form, field, value)
            steps.append(f"filled {name}")
        snapshot, _extra = self._submit_fetch(tab, plan.form, request, True)
        steps.append(f"submitted form {plan.form.index}")
        text = snapshot.text if snapshot is not None else ""
        return self._envelope(
            decision,
            tab,
            snapshot if want else None,
            service=credential.service,
            authMode=credential.auth_mode,
            candidates=candidates,
            identifierFilled=plan.identifier_field is not None,
            passwordFilled=plan.password_field is not None,
            submitted=True,
            requiresMfa=detect_mfa_in_document(tab.forms, text),
            steps=steps,
        )

    def _mfa(self, request: MfaRequest) -> dict[str, Any]:
        tab = self._resolve_tab(request)
        decision = self._decide(request, tab)
        want = request.snapshot_wanted(True)
        service = normalize_service(request.service)
        if decision.engine is EngineMode.LIVE:
            page = self._ensure_live_page(tab, request)
            before = normalize_http_url_or(page.url, tab.url)
            flow = LiveLoginFlow(page, timeout_ms=request.timeout_ms, errors=self._live_errors)
            result = flow.submit_code(request.code)
            if result["layout"] == "none":
                raise FieldNotFoundError("no one-time code field found on the page.")
            self._follow_live_url(tab, page, before)
            snapshot = self._finish_live(tab, page, request, want)
            return self._envelope(decision, tab, snapshot, service=service, **result)
        self._ensure_snapshot(tab, decision, request)
        form = find_mfa_form(tab.forms)
        if form is None:
            raise FieldNotFoundError("no one-time code field found on the page.")
        values, layout = plan_mfa_values(form, request.code)
        for name, value in values.items():
            field = form.field(name)
            if field is not None:
                set_form_value(tab, form, field, value)
        snapshot, _extra = self._submit_fetch(tab, form, request, True)
        text = snapshot.text if snapshot is not None else ""
        return self._envelope(
            decision,
            tab,
            snapshot if want else None,
            service=service,
            layout=layout,
            submitMethod="form",
            requiresMfa=detect_mfa_in_document(tab.forms, text),
        )
