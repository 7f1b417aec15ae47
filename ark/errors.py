"""Error taxonomy shared by services and the HTTP layer.

Every client-visible failure is rendered as ``{"detail": "<message>"}``.
"""

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ArkError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidArgument(ArkError):
    status_code = 400
    default_detail = "Invalid argument"


class NotFound(ArkError):
    status_code = 404
    default_detail = "Not found"


class Conflict(ArkError):
    status_code = 409
    default_detail = "Conflict"


class FailedPrecondition(ArkError):
    status_code = 412
    default_detail = "Failed precondition"


class Unavailable(ArkError):
    status_code = 502
    default_detail = "Upstream service unavailable"


class Internal(ArkError):
    status_code = 500


def _error_payload(detail: str) -> dict:
    return {"detail": detail}


def _validation_detail(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(loc)
        msg = error.get("msg", "invalid value")
        messages.append(f"{field}: {msg}" if field else msg)
    return "; ".join(messages) or "Invalid request"


def register_error_handlers(app) -> None:
    @app.exception_handler(ArkError)
    async def ark_error_handler(request: Request, exc: ArkError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        if not isinstance(detail, str):
            detail = str(detail) if detail is not None else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(detail),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=InvalidArgument.status_code,
            content=_error_payload(_validation_detail(exc)),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload("Internal server error"),
        )
