import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = logging.getLogger("centers.errors")


class AppError(Exception):
    status_code = 500
    message = "internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class NotFound(AppError):
    status_code = 404
    message = "record not found"


class Forbidden(AppError):
    status_code = 403
    message = "forbidden"


class Unauthorized(AppError):
    status_code = 401
    message = "unauthorized"


class ValidationFailed(AppError):
    status_code = 400
    message = "validation failed"

    def __init__(self, errors: list[dict[str, str]], message: str | None = None):
        super().__init__(message)
        self.errors = errors


class BadRequest(AppError):
    status_code = 400
    message = "invalid parameters"


class DuplicateUserReference(AppError):
    status_code = 400
    message = "duplicate user reference"


class GeocodeNoResult(AppError):
    status_code = 400
    message = "no results"


class GeocodeTooManyResults(AppError):
    status_code = 400
    message = "too many results"


class ConfigurationError(AppError):
    message = "configuration error"


class StoreUnavailable(AppError):
    message = "store unavailable"


class MailerUnavailable(AppError):
    message = "mailer unavailable"


class GeocoderUnavailable(AppError):
    message = "geocoder unavailable"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_body(message: str, errors: list[dict[str, str]] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"timestamp": _timestamp(), "message": message}
    if errors is not None:
        body["errors"] = errors
    return body


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        message = "internal server error"
    else:
        message = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, getattr(exc, "errors", None)),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(detail),
        headers=getattr(exc, "headers", None),
    )


def _validation_tag(err: dict[str, Any]) -> str:
    kind = str(err.get("type", "invalid"))
    ctx = err.get("ctx") or {}
    # e.g. string_too_long -> max_length=160
    for key in ("max_length", "min_length", "pattern", "le", "ge", "lt", "gt"):
        if key in ctx:
            return f"{key}={ctx[key]}"
    if "expected" in ctx:
        return f"oneof={ctx['expected']}"
    if kind == "missing":
        return "required"
    return kind


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "validation": _validation_tag(err)})
    return JSONResponse(status_code=400, content=error_body("validation failed", errors))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("internal server error"))


async def store_error_handler(request: Request, exc: Exception):
    logger.error("store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return await app_error_handler(request, StoreUnavailable(str(exc)))
