"""Translation of downstream HTTP outcomes into the shared error taxonomy."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import httpx

from .errors import (
    ConflictError,
    NotFoundError,
    OverloadError,
    ServiceError,
    UpstreamError,
    UpstreamUnavailableError,
    ValidationError,
)

_STATUS_ERRORS: dict[int, type[ServiceError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    416: ValidationError,
    422: ValidationError,
    429: OverloadError,
    503: UpstreamUnavailableError,
}


def error_from_response(response: httpx.Response, service: str) -> ServiceError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}

    details = body.get("details") or body.get("detail")
    if not isinstance(details, str) or not details:
        details = f"{service} returned status {response.status_code}"
    extra = {"reportId": body["reportId"]} if "reportId" in body else None

    error_cls = _STATUS_ERRORS.get(response.status_code, UpstreamError)
    return error_cls(details, extra=extra)


def ensure_success(response: httpx.Response, service: str) -> httpx.Response:
    if response.is_success:
        return response
    raise error_from_response(response, service)


@contextmanager
def upstream_call(service: str) -> Iterator[None]:
    """Turn transport-level httpx failures into ``UpstreamUnavailableError``."""
    try:
        yield
    except httpx.TransportError as e:
        raise UpstreamUnavailableError(f"{service} unavailable: {e.__class__.__name__}") from e
