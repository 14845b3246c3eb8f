"""Error taxonomy shared by the gateway and both backend services.

Every class maps to exactly one HTTP status. ``details`` is the human-readable
explanation returned to clients; ``extra`` fields are merged into the JSON body.
"""
from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, details: str, *, extra: dict[str, Any] | None = None):
        super().__init__(details)
        self.details = details
        self.extra = extra or {}


class ValidationError(ServiceError):
    status_code = 400
    message = "Invalid request"


class AccessDeniedError(ServiceError):
    status_code = 403
    message = "Access denied"


class NotFoundError(ServiceError):
    status_code = 404
    message = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    message = "Conflict"


class GoneError(ServiceError):
    status_code = 410
    message = "Resource is gone"


class OverloadError(ServiceError):
    status_code = 429
    message = "Service is overloaded, try again later"


class StorageError(ServiceError):
    status_code = 500
    message = "Storage failure"


class InternalError(ServiceError):
    status_code = 500
    message = "Internal server error"


class UpstreamError(ServiceError):
    status_code = 502
    message = "Upstream service error"


class UpstreamUnavailableError(ServiceError):
    status_code = 503
    message = "Upstream service unavailable"
