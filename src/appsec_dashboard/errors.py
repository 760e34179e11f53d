"""Domain error taxonomy and its HTTP rendering.

Services raise these; the exception handlers registered in main.py turn
them into `{"error": <reason>, "message": <detail>}` JSON bodies. The
`error` field is short and stable (clients switch on it), `message` is
free text and only present when there is something to add.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class AppError(Exception):
    """Base for every error that maps to a client-visible response."""

    status_code = 500
    default_error = "Internal server error"

    def __init__(self, error: Optional[str] = None, message: Optional[str] = None):
        self.error = error or self.default_error
        self.message = message
        super().__init__(message or self.error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class Unauthenticated(AppError):
    """No bearer token, or a header that isn't `Bearer <token>`."""

    status_code = 401
    default_error = "Access token required"


class InvalidCredentials(Unauthenticated):
    """Unknown user or wrong password; the two are deliberately indistinguishable."""

    default_error = "Invalid credentials"


class Forbidden(AppError):
    """Token present but bad signature or expired."""

    status_code = 403
    default_error = "Invalid or expired token"


class NotFound(AppError):
    status_code = 404
    default_error = "Not found"


class Conflict(AppError):
    status_code = 409
    default_error = "Conflict"


class InvalidInput(AppError):
    status_code = 400
    default_error = "Invalid input"


class AgentExecutionFailed(AppError):
    status_code = 500
    default_error = "Agent execution failed"


class ConfigurationError(AppError):
    status_code = 500
    default_error = "Configuration error"


# ─── Handlers ────────────────────────────────────────────


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request.failed",
        path=request.url.path,
        status=exc.status_code,
        error=exc.error,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Missing or mistyped body fields are plain 400s, not FastAPI's 422."""
    fields = sorted(
        {str(err["loc"][-1]) for err in exc.errors() if err.get("loc")}
    )
    message = f"Invalid or missing fields: {', '.join(fields)}" if fields else None
    return await app_error_handler(request, InvalidInput(message=message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc) or type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
