"""Exception hierarchy raised by the browser tool."""

from __future__ import annotations


class BrowserToolError(RuntimeError):
    """Base class for every error surfaced by the browser tool."""


class InvalidRequestError(BrowserToolError):
    """Raised for malformed parameters or unsupported action/engine combinations."""


class EngineUnavailableError(BrowserToolError):
    """Raised when the live engine is requested, unavailable and fallback is off."""


class LiveActionError(BrowserToolError):
    """Raised when executing an operation against a live page fails."""


class FetchError(BrowserToolError):
    """Raised when an HTTP request made by the fetch engine fails."""


class NotFoundError(BrowserToolError):
    """Raised when a referenced resource does not exist."""


class TabNotFoundError(NotFoundError):
    pass


class SnapshotMissingError(NotFoundError):
    pass


class RefNotFoundError(NotFoundError):
    pass


class FormNotFoundError(NotFoundError):
    pass


class FieldNotFoundError(NotFoundError):
    pass


class CredentialNotFoundError(NotFoundError):
    pass
