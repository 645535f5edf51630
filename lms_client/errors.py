from typing import Any

import httpx

from shared.errors import (
    AuthError,
    ConflictError,
    ForbiddenError,
    LmsError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)

__all__ = [
    "ApiError",
    "AuthError",
    "ConflictError",
    "ForbiddenError",
    "IncorrectPasswordError",
    "LmsError",
    "NotFoundError",
    "PayloadTooLargeError",
    "TransportError",
    "ValidationError",
    "error_from_response",
]


class ApiError(LmsError):
    """Any status the client has no dedicated error for (5xx, unexpected 4xx)."""

    def __init__(self, message: str, *, status_code: int, field: str | None = None):
        super().__init__(message, field=field)
        self.status_code = status_code


class IncorrectPasswordError(AuthError):
    pass


class TransportError(LmsError):
    """The request never got an HTTP answer (connection refused, timeout, ...)."""

    status_code = 0

    def __init__(self, message: str, *, cause: httpx.TransportError | None = None):
        super().__init__(message)
        self.cause = cause


_BY_STATUS = {
    400: ValidationError,
    401: AuthError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    413: PayloadTooLargeError,
    422: ValidationError,
}


def _detail(body: Any, fallback: str) -> tuple[str, str | None]:
    if not isinstance(body, dict):
        return fallback, None

    detail = body.get("detail") or body.get("message")
    field = body.get("field")
    # FastAPI request validation: a list of {"loc": [...], "msg": ...}
    if isinstance(detail, list) and detail:
        first = detail[0] if isinstance(detail[0], dict) else {}
        loc = [str(p) for p in first.get("loc", []) if p not in ("body", "query", "path")]
        field = field or (".".join(loc) or None)
        detail = "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
    return str(detail or fallback), field


def error_from_response(response: httpx.Response) -> LmsError:
    try:
        body = response.json()
    except ValueError:
        body = None

    fallback = response.reason_phrase or f"Request failed with status {response.status_code}"
    message, field = _detail(body, fallback)

    cls = _BY_STATUS.get(response.status_code)
    if cls is None:
        return ApiError(message, status_code=response.status_code, field=field)
    return cls(message, field=field)
