"""
Domain exceptions for the Warehouse service and their HTTP mapping.

The crud layer raises these; the handlers registered by
register_exception_handlers() turn them into the JSON error envelope:

    {"success": false, "error": "<code>", "message": "...", "validationErrors": [...]}
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class WarehouseError(Exception):
    """Base class for errors raised by the service layer."""
    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WarehouseError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(WarehouseError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(WarehouseError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(WarehouseError):
    code = "INVALID_TRANSITION"
    status_code = status.HTTP_400_BAD_REQUEST


class CapacityExceededError(WarehouseError):
    code = "CAPACITY_EXCEEDED"
    status_code = status.HTTP_400_BAD_REQUEST


class NegativeCapacityError(WarehouseError):
    code = "NEGATIVE_CAPACITY"
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(WarehouseError):
    code = "AUTHENTICATION_ERROR"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(WarehouseError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


# Status codes that HTTPException may carry, mapped to an envelope error code
HTTP_ERROR_CODES: Dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_ERROR",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
}


def error_body(code: str, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """
    Build the error envelope returned by every failing endpoint.

    Args:
        code: Machine-readable error code
        message: Human-readable description
        validation_errors: Optional per-field problems

    Returns:
        dict: The JSON body
    """
    body = {"success": False, "error": code, "message": message}
    if validation_errors:
        body["validationErrors"] = validation_errors
    return body


async def warehouse_error_handler(request: Request, exc: WarehouseError) -> JSONResponse:
    errors = getattr(exc, "errors", None)
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message, errors))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_ERROR", "Request validation failed", problems),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded for {request.client.host if request.client else 'unknown'} on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_body("RATE_LIMIT_EXCEEDED", f"Too many requests: {exc.detail}"),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "An unexpected error occurred"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope handlers to the application."""
    app.add_exception_handler(WarehouseError, warehouse_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
