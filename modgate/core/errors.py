"""Project error hierarchy."""

from __future__ import annotations

from typing import Any


class ModGateError(Exception):
    """Base error."""

    code: str | int | None = None
    type: str = "internal_error"
    status: int | None = None


class InvalidAuthKeyError(ModGateError):
    """Raised when the caller's bearer key does not match the configured key."""

    code = "invalid_auth_key"
    type = "invalid_request_error"
    status = 401

    def __init__(self, message: str = "Invalid authentication key") -> None:
        super().__init__(message)


class ContentViolationError(ModGateError):
    """Raised when the moderation verdict blocks the request."""

    code = "content_violation"
    type = "content_filter_error"
    status = 403

    def __init__(self, message: str = "Content violation detected") -> None:
        super().__init__(message)


class InvalidRequestError(ModGateError):
    """Raised when the inbound payload is not a usable completion request."""

    type = "invalid_request_error"
    status = 400

    def __init__(self, message: str, *, status: int = 400, param: str | None = None) -> None:
        super().__init__(message)
        self.code = status
        self.status = status
        self.param = param


class ModerationFormatError(ModGateError):
    """Raised when the moderation reply cannot be read as a boolean verdict."""

    def __init__(self, message: str = "Invalid moderation response format") -> None:
        super().__init__(message)


class UpstreamHTTPError(ModGateError):
    """Upstream answered with an HTTP error status."""

    def __init__(self, provider: str, status: int, payload: Any) -> None:
        super().__init__(f"Request failed with status code {status}")
        self.provider = provider
        self.status = status
        self.payload = payload


class UpstreamConnectionError(ModGateError):
    """Upstream could not be reached (refused, reset or timed out)."""

    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(f"{provider} upstream unreachable: {detail}")
        self.provider = provider
        self.detail = detail
