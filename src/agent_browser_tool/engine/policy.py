"""Per-call choice between the fetch and live engines."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import EngineUnavailableError, InvalidRequestError
from ..models import EngineMode

LOGGER = logging.getLogger(__name__)


class RequestedEngine(str, enum.Enum):
    AUTO = "auto"
    FETCH = "fetch"
    LIVE = "live"


@dataclass(frozen=True)
class EngineDecision:
    engine: EngineMode
    fallback_from: Optional[EngineMode] = None
    reason: Optional[str] = None


def normalize_engine(value: object) -> RequestedEngine:
    if value is None:
        return RequestedEngine.AUTO
    if isinstance(value, RequestedEngine):
        return value
    if isinstance(value, EngineMode):
        return RequestedEngine(value.value)
    raw = str(value).strip().lower()
    if not raw:
        return RequestedEngine.AUTO
    try:
        return RequestedEngine(raw)
    except ValueError as exc:
        raise InvalidRequestError(f"engine must be auto, fetch or live (got {value!r}).") from exc


def resolve_engine(
    requested: RequestedEngine,
    *,
    tab_has_live_page: bool,
    tab_exists: bool,
    live_available: bool,
    allow_fallback: bool,
    unavailable_reason: Optional[str] = None,
) -> EngineDecision:
    """Pick the concrete engine for one call.

    A tab that already owns a live page stays live whatever was requested, and an
    existing fetch-backed tab is never upgraded by ``auto``.
    """

    if tab_has_live_page:
        return EngineDecision(EngineMode.LIVE)
    if requested is RequestedEngine.FETCH:
        return EngineDecision(EngineMode.FETCH)
    if requested is RequestedEngine.LIVE:
        if live_available:
            return EngineDecision(EngineMode.LIVE)
        reason = unavailable_reason or "live engine unavailable"
        if not allow_fallback:
            raise EngineUnavailableError(
                f"engine=live requested but unavailable ({reason}) and fallback is disabled."
            )
        LOGGER.info("engine=live unavailable, falling back to fetch: %s", reason)
        return EngineDecision(EngineMode.FETCH, fallback_from=EngineMode.LIVE, reason=reason)
    if tab_exists:
        return EngineDecision(EngineMode.FETCH)
    return EngineDecision(EngineMode.LIVE if live_available else EngineMode.FETCH)
