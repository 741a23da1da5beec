# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import logging

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "the server encountered a problem and could not process your request"


# ── Exception hierarchy ──────────────────────────────────────────────────────


class GreenlightError(Exception):
    """Base exception for all gatekeeper and catalog errors.

    ``log_level`` is the stdlib level the failure is logged at. Client-side
    problems stay at INFO so floods of bad credentials don't page anyone.
    """

    log_level = logging.INFO
    headers: dict[str, str] | None = None

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceededError(GreenlightError):
    """Client exhausted its token bucket. Retryable after backoff."""

    log_level = logging.DEBUG

    def __init__(self, retry_after_seconds: int = 1):
        self.retry_after_seconds = retry_after_seconds
        self.headers = {"Retry-After": str(retry_after_seconds)}
        super().__init__("rate limit exceeded", status_code=429)


# ── Credential problems (401) ────────────────────────────────────────────────


class CredentialsError(GreenlightError):
    """A presented bearer token could not be turned into a user."""

    def __init__(self, message: str = "invalid or missing authentication token"):
        self.headers = {"WWW-Authenticate": "Bearer"}
        super().__init__(message, status_code=401)


class MalformedAuthHeaderError(CredentialsError):
    """Authorization header is present but not exactly ``Bearer <token>``."""


class InvalidTokenError(CredentialsError):
    """No live token record matches the presented plaintext."""


class ExpiredTokenError(CredentialsError):
    """Token record exists but is past its expiry."""


class InvalidCredentialsError(GreenlightError):
    """Email/password pair rejected. Deliberately says nothing about which."""

    def __init__(self) -> None:
        super().__init__("invalid authentication credentials", status_code=401)


# ── Authorization failures ───────────────────────────────────────────────────


class AuthenticationRequiredError(GreenlightError):
    def __init__(self) -> None:
        super().__init__("you must be authenticated to access this resource", status_code=401)


class AccountNotActivatedError(GreenlightError):
    def __init__(self) -> None:
        super().__init__(
            "your user account must be activated to access this resource", status_code=403
        )


class PermissionDeniedError(GreenlightError):
    def __init__(self) -> None:
        super().__init__(
            "your user account doesn't have the necessary permissions to access this resource",
            status_code=403,
        )


# ── Catalog / store errors ───────────────────────────────────────────────────


class RecordNotFoundError(GreenlightError):
    def __init__(self, message: str = "the requested resource could not be found"):
        super().__init__(message, status_code=404)


class EditConflictError(GreenlightError):
    """Optimistic version check failed: someone else updated the record first."""

    def __init__(self) -> None:
        super().__init__(
            "unable to update the record due to an edit conflict, please try again",
            status_code=409,
        )


class DuplicateEmailError(GreenlightError):
    def __init__(self) -> None:
        super().__init__("a user with this email address already exists", status_code=422)


class StoreUnavailableError(GreenlightError):
    """Persistence call failed or ran past its deadline.

    ``detail`` is logged; the caller only ever sees the generic message.
    """

    log_level = logging.ERROR

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(INTERNAL_ERROR_MESSAGE, status_code=500)


# ── Rendering ────────────────────────────────────────────────────────────────


def log_error(request: Request, exc: GreenlightError) -> None:
    """Log a GreenlightError at its class's level with request context."""
    fields = {
        "error": exc.message,
        "error_type": type(exc).__name__,
        "method": request.method,
        "path": request.url.path,
    }
    if isinstance(exc, StoreUnavailableError):
        fields["detail"] = exc.detail
    logger.log(exc.log_level, "request_failed", **fields)


def error_response(exc: GreenlightError) -> JSONResponse:
    """Render a GreenlightError as ``{"error": ..., "type": ...}``.

    Shared by the exception handlers and by middleware, which runs outside
    FastAPI's exception handling and must build its own responses.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "type": type(exc).__name__},
        headers=exc.headers,
    )


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    Endpoints and dependencies raise GreenlightError subclasses; these
    handlers catch them and return structured JSON. Anything else falls
    through to RecoverPanicMiddleware.
    """

    @app.exception_handler(GreenlightError)
    async def greenlight_error_handler(request: Request, exc: GreenlightError) -> JSONResponse:
        log_error(request, exc)
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            message = "the requested resource could not be found"
        elif exc.status_code == 405:
            message = f"the {request.method} method is not supported for this resource"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": message, "type": "HTTPError"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = {
            ".".join(str(p) for p in err["loc"] if p != "body") or "body": err["msg"]
            for err in exc.errors()
        }
        return JSONResponse(
            status_code=422,
            content={"error": errors, "type": "ValidationError"},
        )
