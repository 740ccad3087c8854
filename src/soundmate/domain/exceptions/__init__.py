"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is kept as an attribute so the API handlers can put it
    # straight into the error envelope without parsing str(exc). Never raise this
    # directly, always a subclass, so handlers can map each one to a stable code.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found.

    HTTP Status: 404. Subclasses set ``code`` so the envelope names the entity.
    """

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class CellNotFoundError(EntityNotFoundException):
    """Raised when a grid cell has no aggregate row.

    HTTP Status: 404 (code HEX_NOT_FOUND)
    """

    code = "HEX_NOT_FOUND"

    def __init__(self, cell_id: str) -> None:
        super().__init__("Hex", cell_id)
        self.cell_id = cell_id


class TrackNotFoundError(EntityNotFoundException):
    """Raised when no track matches an internal or Spotify id.

    HTTP Status: 404 (code TRACK_NOT_FOUND)
    """

    code = "TRACK_NOT_FOUND"

    def __init__(self, track_id: str) -> None:
        super().__init__("Track", track_id)
        self.track_id = track_id


class ValidationException(DomainException):
    """Raised when input or entity validation fails.

    HTTP Status: 400 (code VALIDATION_ERROR)
    """

    pass


class InvalidBoundsError(ValidationException):
    """Bounding box is not usable (north must be strictly greater than south).

    HTTP Status: 400 (code INVALID_BOUNDS)
    """

    def __init__(self, north: float, south: float) -> None:
        super().__init__(
            f"Invalid bounds: north ({north}) must be greater than south ({south})"
        )
        self.north = north
        self.south = south


class InvalidCellIdError(ValidationException):
    """Value is not a valid grid cell identifier.

    HTTP Status: 400 (code INVALID_HEX_ID)
    """

    def __init__(self, cell_id: str) -> None:
        super().__init__(f"Invalid hex id: {cell_id}")
        self.cell_id = cell_id


class MissingParameterError(ValidationException):
    """Required query parameters are missing.

    The ``code`` attribute carries the envelope code (MISSING_BOUNDS,
    MISSING_COORDINATES) so the boundary can report which group was absent.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class AuthenticationError(DomainException):
    """User is not authenticated or the token is unknown.

    HTTP Status: 401
    """

    pass


class UnauthorizedError(AuthenticationError):
    """No user matches the supplied bearer token.

    HTTP Status: 401 (code USER_NOT_FOUND, or MISSING_TOKEN without a header)
    """

    def __init__(
        self,
        message: str = "User not found or token invalid",
        code: str = "USER_NOT_FOUND",
    ) -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503
    """

    pass


class ExternalServiceError(DomainException):
    """External service (Spotify) returned an error.

    HTTP Status: 502
    """

    def __init__(
        self, message: str, service: str = "spotify", status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class RateLimitExceededError(ExternalServiceError):
    """External service rate limit was exceeded.

    HTTP Status: 429 (code RATE_LIMIT_EXCEEDED)
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        service: str = "spotify",
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, service=service, status_code=429)
        self.retry_after = retry_after


__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "CellNotFoundError",
    "TrackNotFoundError",
    "ValidationException",
    "InvalidBoundsError",
    "InvalidCellIdError",
    "MissingParameterError",
    "AuthenticationError",
    "UnauthorizedError",
    "ConfigurationError",
    "ExternalServiceError",
    "RateLimitExceededError",
]
