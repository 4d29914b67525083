"""Global error handlers: domain errors and HTTP errors as uniform JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from famquest.errors import (
    GamificationError,
    InsufficientPointsError,
    IntegrityError,
    LeaderboardDisabledError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger()

# Most specific first; the first isinstance match wins
_STATUS_BY_ERROR: list[tuple[type[GamificationError], int]] = [
    (InsufficientPointsError, 422),
    (ValidationError, 422),
    (IntegrityError, 409),
    (NotFoundError, 404),
    (LeaderboardDisabledError, 403),
]


def status_for(exc: GamificationError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(GamificationError)
    async def gamification_exception_handler(request: Request, exc: GamificationError) -> JSONResponse:
        """Map domain errors to status codes."""
        status = status_for(exc)
        content: dict[str, object] = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, InsufficientPointsError):
            content["balance"] = exc.balance
            content["shortfall"] = exc.shortfall
        if status >= 500 or isinstance(exc, IntegrityError):
            logger.error("gamification_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent JSON format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle validation errors with consistent JSON format."""
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions. Always returns JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
