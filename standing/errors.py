"""Error taxonomy shared by the standing services.

Every failure a caller can observe is one of these classes. The API layer
turns them into ``{"detail": ..., "request_id": ...}`` responses using the
``status_code`` and ``detail`` carried on the instance.
"""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class StandingError(Exception):
    """Base class for every domain failure."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "bad_request"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class Unauthenticated(StandingError):
    """No valid session. Callers never learn whether the token was unknown or expired."""

    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "unauthenticated"


class Forbidden(StandingError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "forbidden"


class NotFound(StandingError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "not_found"


class Conflict(StandingError):
    status_code = status.HTTP_409_CONFLICT
    detail = "conflict"


class InvalidTransition(Conflict):
    """Raised when a lifecycle event is not permitted from the member's current state."""

    detail = "invalid_transition"

    def __init__(self, from_state: str, event: str) -> None:
        self.from_state = from_state
        self.event = event
        super().__init__(f"invalid_transition:{from_state}:{event}")


class ValidationError(StandingError):
    """Raised for validation errors not covered by request schema validation."""

    status_code = _HTTP_422
    detail = "validation_error"


class InvalidSignature(StandingError):
    detail = "invalid_signature"


class RateLimited(StandingError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    detail = "rate_limited"


class StorageFailure(StandingError):
    """Transient storage failure; the operation may be retried."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "storage_unavailable"


class CredentialConfigurationError(StandingError):
    """A stored credential hash could not be parsed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "credential_configuration_error"
