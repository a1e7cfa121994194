"""Global error handlers.

Every error body is ``{"detail": str, "kind": ErrorKind}``. Engine errors
carry their own kind; malformed query or path parameters are reported as
``validation`` with a 400, same as the engine's own argument checks.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from progression.errors import ErrorKind, ProgressionError

logger = structlog.get_logger()

STATUS_FOR_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


def _error(status_code: int, kind: ErrorKind, detail: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "kind": kind, **extra})


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(ProgressionError)
    async def progression_exception_handler(request: Request, exc: ProgressionError) -> JSONResponse:
        status_code = STATUS_FOR_KIND.get(exc.kind, 500)
        if status_code >= 500:
            # Storage details stay in the log.
            logger.error("progression_error", path=request.url.path, kind=str(exc.kind), error=exc.message)
            return _error(status_code, exc.kind, "Internal server error")
        return _error(status_code, exc.kind, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        kind = ErrorKind.NOT_FOUND if exc.status_code == 404 else ErrorKind.VALIDATION
        return _error(exc.status_code, kind, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
        return _error(400, ErrorKind.VALIDATION, "Validation error", errors=errors)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return _error(500, ErrorKind.INTERNAL, "Internal server error")
