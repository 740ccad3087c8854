"""Custom exception handlers for FastAPI application.

This module registers global exception handlers that convert domain exceptions
and validation errors into the error envelope with a stable code:

    ValidationException      400 VALIDATION_ERROR
    InvalidBoundsError       400 INVALID_BOUNDS
    InvalidCellIdError       400 INVALID_HEX_ID
    MissingParameterError    400 MISSING_BOUNDS / MISSING_COORDINATES
    CellNotFoundError        404 HEX_NOT_FOUND
    TrackNotFoundError       404 TRACK_NOT_FOUND
    EntityNotFoundException  404 NOT_FOUND
    AuthenticationError      401 USER_NOT_FOUND / MISSING_TOKEN
    RateLimitExceededError   429 RATE_LIMIT_EXCEEDED
    ExternalServiceError     502 EXTERNAL_SERVICE_ERROR
    ConfigurationError       503 SERVICE_UNAVAILABLE
    anything else            500 INTERNAL_ERROR
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from soundmate.api.responses import error_response
from soundmate.domain.exceptions import (
    AuthenticationError,
    ConfigurationError,
    EntityNotFoundException,
    ExternalServiceError,
    InvalidBoundsError,
    InvalidCellIdError,
    MissingParameterError,
    RateLimitExceededError,
    UnauthorizedError,
    ValidationException,
)

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_503_SERVICE_UNAVAILABLE: "SERVICE_UNAVAILABLE",
}


def _validation_details(errors: list[Any]) -> list[dict[str, Any]]:
    """Flatten pydantic errors to JSON-safe {field, message, type} dicts.

    Hey future me - exc.errors() can carry the raw input and the original exception
    object under "ctx", neither is JSON-serializable. Only keep the strings.
    """
    details = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append(
            {
                "field": ".".join(loc),
                "message": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
        )
    return details


# Hey future me, Starlette resolves handlers along the exception MRO, so the more specific
# subclasses (InvalidBoundsError, MissingParameterError, ...) win over ValidationException.
# Register this during app setup, before any request arrives.
def register_exception_handlers(app: FastAPI) -> None:
    """Register envelope handlers for domain, validation and HTTP exceptions."""

    @app.exception_handler(ValidationException)
    async def validation_exception_handler(
        request: Request, exc: ValidationException
    ) -> JSONResponse:
        logger.warning(
            "Validation error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return error_response(
            status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", exc.message
        )

    @app.exception_handler(InvalidBoundsError)
    async def invalid_bounds_handler(
        request: Request, exc: InvalidBoundsError
    ) -> JSONResponse:
        logger.info("Invalid bounds at %s: %s", request.url.path, exc.message)
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_BOUNDS",
            exc.message,
            {"north": exc.north, "south": exc.south},
        )

    @app.exception_handler(InvalidCellIdError)
    async def invalid_cell_id_handler(
        request: Request, exc: InvalidCellIdError
    ) -> JSONResponse:
        logger.info("Invalid hex id at %s: %s", request.url.path, exc.cell_id)
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_HEX_ID", exc.message)

    @app.exception_handler(MissingParameterError)
    async def missing_parameter_handler(
        request: Request, exc: MissingParameterError
    ) -> JSONResponse:
        logger.info("Missing parameters at %s: %s", request.url.path, exc.code)
        return error_response(status.HTTP_400_BAD_REQUEST, exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = _validation_details(list(exc.errors()))
        logger.warning(
            "Request validation error at %s: %s",
            request.url.path,
            details,
            extra={"path": request.url.path, "errors": details},
        )
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "VALIDATION_ERROR",
            "Request validation failed",
            details,
        )

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        logger.info(
            "Entity not found at %s: %s %s",
            request.url.path,
            exc.entity_type,
            exc.entity_id,
            extra={
                "path": request.url.path,
                "entity_type": exc.entity_type,
                "entity_id": str(exc.entity_id),
            },
        )
        return error_response(status.HTTP_404_NOT_FOUND, exc.code, exc.message)

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        code = exc.code if isinstance(exc, UnauthorizedError) else "UNAUTHORIZED"
        logger.info("Authentication failed at %s: %s", request.url.path, exc.message)
        return error_response(status.HTTP_401_UNAUTHORIZED, code, exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(
        request: Request, exc: RateLimitExceededError
    ) -> JSONResponse:
        logger.warning(
            "Rate limit exceeded at %s (service=%s, retry_after=%s)",
            request.url.path,
            exc.service,
            exc.retry_after,
        )
        response = error_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "RATE_LIMIT_EXCEEDED",
            exc.message,
            {"retry_after": exc.retry_after} if exc.retry_after else None,
        )
        if exc.retry_after:
            response.headers["Retry-After"] = str(exc.retry_after)
        return response

    @app.exception_handler(ExternalServiceError)
    async def external_service_error_handler(
        request: Request, exc: ExternalServiceError
    ) -> JSONResponse:
        logger.error(
            "External service error at %s: %s (service=%s, status=%s)",
            request.url.path,
            exc.message,
            exc.service,
            exc.status_code,
        )
        return error_response(
            status.HTTP_502_BAD_GATEWAY,
            "EXTERNAL_SERVICE_ERROR",
            exc.message,
            {"service": exc.service},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        logger.error("Configuration error at %s: %s", request.url.path, exc.message)
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE", exc.message
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "HTTP error %d at %s: %s",
            exc.status_code,
            request.url.path,
            exc.detail,
            extra={"path": request.url.path, "status_code": exc.status_code},
        )
        return error_response(
            exc.status_code,
            _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
            str(exc.detail),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unhandled error at %s: %s", request.url.path, exc)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "Internal server error",
        )
