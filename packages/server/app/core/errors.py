"""
Error taxonomy for the access engine and its HTTP rendering.

Every engine failure is an ``AccessEngineError``; the route layer turns
it into the standard error envelope::

    {"error": {"code": "...", "message": "...", "status": 403}}
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

log = structlog.get_logger()


class AccessEngineError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message()
        self.extra = {k: v for k, v in extra.items() if v is not None}
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return "Internal server error"

    def to_dict(self) -> dict[str, Any]:
        body = {"code": self.code, "message": self.message, "status": self.status_code}
        body.update(self.extra)
        return body


class NotFound(AccessEngineError):
    status_code = 404
    code = "not_found"

    @classmethod
    def default_message(cls) -> str:
        return "Resource not found"


class Forbidden(AccessEngineError):
    status_code = 403
    code = "forbidden"

    @classmethod
    def default_message(cls) -> str:
        return "Forbidden"


class Conflict(AccessEngineError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: Optional[str] = None, *, department_name: Optional[str] = None, **extra: Any):
        super().__init__(message, department_name=department_name, **extra)
        self.department_name = department_name

    @classmethod
    def default_message(cls) -> str:
        return "Conflict"


class ValidationError(AccessEngineError):
    status_code = 400
    code = "validation_error"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid request"


class InternalError(AccessEngineError):
    kind = "internal"


class LookupFailed(InternalError):
    """A store read failed while resolving access."""

    code = "lookup_failed"
    kind = "lookup_failed"

    @classmethod
    def default_message(cls) -> str:
        return "Access lookup failed"


async def _engine_error_handler(request: Request, exc: AccessEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request.failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    body = {"code": "http_error", "message": str(exc.detail), "status": exc.status_code}
    return JSONResponse(status_code=exc.status_code, content={"error": body}, headers=exc.headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccessEngineError, _engine_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
