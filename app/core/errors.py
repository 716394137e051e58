# app/core/errors.py
"""
Domain error taxonomy and its HTTP rendering.

Services raise these instead of HTTPException so the same rules hold for
every caller (routers, tests, background jobs). The API boundary turns each
one into a structured response:

    {"error": "<kind>", "detail": "<human readable message>"}

ForbiddenError is always rendered with the same message so an unauthorized
caller learns nothing about the order it tried to touch.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

FORBIDDEN_MESSAGE = "Forbidden"

_HTTP_ERROR_KINDS = {
    status.HTTP_401_UNAUTHORIZED: "AuthenticationError",
    status.HTTP_403_FORBIDDEN: "ForbiddenError",
    status.HTTP_404_NOT_FOUND: "NotFoundError",
}


class DomainError(Exception):
    """Base class for expected business outcomes."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def public_message(self) -> str:
        return self.message


class ValidationError(DomainError):
    """Malformed input: missing items, bad address, non-positive weight."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(DomainError):
    """Unknown order, driver, vehicle or ping."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(DomainError):
    """Requested status edge is not part of the lifecycle graph."""

    status_code = status.HTTP_409_CONFLICT


class ForbiddenError(DomainError):
    """Actor lacks authority for the change, or driver mismatch on a ping."""

    status_code = status.HTTP_403_FORBIDDEN

    @property
    def public_message(self) -> str:
        return FORBIDDEN_MESSAGE


class ConflictError(DomainError):
    """Concurrent modification, assignment race, duplicate terminal move."""

    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(DomainError):
    """Ping recorded while the order is outside an active tracking state."""

    status_code = status.HTTP_409_CONFLICT


class RateLimitExceeded(DomainError):
    """Admission gate denial."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamUnavailableError(DomainError):
    """Order store, registry or shared counter store is unreachable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def _rate_limit_headers(request: Request) -> dict[str, str]:
    """Headers recorded by the admission gate for this request, if any."""
    return dict(getattr(request.state, "rate_limit_headers", None) or {})


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    headers = _rate_limit_headers(request)
    if isinstance(exc, RateLimitExceeded):
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, UpstreamUnavailableError):
        logger.error("Upstream unavailable on %s %s: %s", request.method, request.url.path, exc.message)
    elif isinstance(exc, ForbiddenError):
        # Real reason stays in the logs only
        logger.info("Forbidden on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.public_message},
        headers=headers,
    )


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Render FastAPI/pydantic shape errors in the same envelope."""
    errors = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": ValidationError.__name__,
            "detail": "Request validation failed",
            "errors": errors,
        },
        headers=_rate_limit_headers(request),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Auth and routing errors raised as HTTPException, same envelope."""
    kind = _HTTP_ERROR_KINDS.get(exc.status_code, "HTTPError")
    headers = {**_rate_limit_headers(request), **(exc.headers or {})}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": kind, "detail": exc.detail},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
