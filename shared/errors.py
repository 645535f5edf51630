import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LmsError(Exception):
    """Base for errors the data layer raises and the web layer turns into responses."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        out: dict = {"detail": self.message}
        if self.field:
            out["field"] = self.field
        return out


class ValidationError(LmsError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(LmsError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str, *, field: Optional[str] = None, login_required: bool = False):
        super().__init__(message, field=field)
        self.login_required = login_required


class ForbiddenError(LmsError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(LmsError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LmsError):
    status_code = status.HTTP_409_CONFLICT


class PayloadTooLargeError(LmsError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


async def lms_error_handler(request: Request, exc: LmsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LmsError, lms_error_handler)
