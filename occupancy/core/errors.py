import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base for every rejection the approval engine surfaces to callers.

    Each rejection carries a stable machine-readable ``code`` plus a human
    message. None of them are retried automatically.
    """

    status_code = 400
    category = "engine"

    def __init__(self, code: str, message: str, *, status_code: Optional[int] = None, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code, "category": self.category}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(EngineError):
    """Malformed input, rejected before any state is read."""

    status_code = 400
    category = "validation"


class InvariantViolation(EngineError):
    """Request content breaks an occupancy or percentage rule."""

    status_code = 409
    category = "invariant"


class AuthorizationError(EngineError):
    """Missing capability or an unresolved conflict of interest."""

    status_code = 403
    category = "authorization"


class StateError(EngineError):
    """Missing entity or a request that was already decided."""

    status_code = 400
    category = "state"


class NotFound(StateError):
    status_code = 404


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:  # type: ignore[override]
        content = exc.to_payload()
        content["path"] = str(request.url)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation failed.",
                "code": "VALIDATION_ERROR",
                "errors": jsonable_errors(exc),
                "path": str(request.url),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error.",
                "path": str(request.url),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)


def jsonable_errors(exc: RequestValidationError) -> list:
    errors = []
    for error in exc.errors():
        item = {key: value for key, value in error.items() if key in {"loc", "msg", "type"}}
        errors.append(item)
    return errors
