"""Map every failure of a gated call onto one error envelope."""

from __future__ import annotations

from typing import Any, Mapping

from modgate.core.errors import UpstreamConnectionError, UpstreamHTTPError
from modgate.core.models import ErrorDetail, ErrorEnvelope


PRESERVED_CODES = frozenset({"invalid_auth_key", "content_violation"})
CONNECTION_ERROR_MESSAGE = "Service temporarily unavailable, please retry later"
INTERNAL_ERROR_MESSAGE = "Internal server error"

_RESERVED_STATUS = {"content_violation": 403, "invalid_auth_key": 401}


def _from_upstream_payload(exc: UpstreamHTTPError) -> ErrorEnvelope:
    payload = exc.payload
    provider_error: Any = payload
    if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
        provider_error = payload["error"]
    if not isinstance(provider_error, Mapping):
        provider_error = {}

    code = provider_error.get("code")
    if not isinstance(code, (str, int)) or isinstance(code, bool) or code == "":
        code = exc.status
    param = provider_error.get("param")
    return ErrorEnvelope(
        error=ErrorDetail(
            message=str(provider_error.get("message") or exc),
            type=str(provider_error.get("type") or "api_error"),
            code=code,
            param=param if isinstance(param, str) else None,
            provider_details=payload,
        )
    )


def normalize_error(exc: BaseException) -> ErrorEnvelope:
    """Priority order: upstream payload, reserved codes, connection failure, internal."""
    if isinstance(exc, UpstreamHTTPError) and exc.payload:
        return _from_upstream_payload(exc)

    code = getattr(exc, "code", None)
    if code in PRESERVED_CODES:
        return ErrorEnvelope(
            error=ErrorDetail(
                message=str(exc),
                type=getattr(exc, "type", None) or "invalid_request_error",
                code=code,
            )
        )

    if isinstance(exc, UpstreamConnectionError):
        return ErrorEnvelope(
            error=ErrorDetail(message=CONNECTION_ERROR_MESSAGE, type="connection_error", code=503)
        )

    status = getattr(exc, "status", None)
    error_type = getattr(exc, "type", None)
    param = getattr(exc, "param", None)
    return ErrorEnvelope(
        error=ErrorDetail(
            message=str(exc) or INTERNAL_ERROR_MESSAGE,
            type=error_type if error_type == "invalid_request_error" else "internal_error",
            code=status if isinstance(status, int) and not isinstance(status, bool) else 500,
            param=param if isinstance(param, str) else None,
        )
    )


def resolve_status(envelope: ErrorEnvelope, exc: BaseException | None = None) -> int:
    """HTTP status for a buffered error response."""
    code = envelope.error.code
    if isinstance(code, int) and 400 <= code <= 599:
        return code
    if isinstance(code, str) and code in _RESERVED_STATUS:
        return _RESERVED_STATUS[code]
    status = getattr(exc, "status", None)
    if isinstance(status, int) and 400 <= status <= 599:
        return status
    return 500
