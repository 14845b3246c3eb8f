import uuid
from contextvars import ContextVar

from fastapi import FastAPI, Request

CORRELATION_HEADER = "X-Correlation-Id"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(value: str | None) -> None:
    _correlation_id.set(value)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def outbound_headers() -> dict[str, str]:
    """Headers to attach to downstream calls made on behalf of the current request."""
    cid = current_correlation_id()
    return {CORRELATION_HEADER: cid} if cid else {}


def install_correlation_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def _correlation(request: Request, call_next):
        cid = (request.headers.get(CORRELATION_HEADER) or "").strip() or new_correlation_id()
        # not reset afterwards: error handlers further out still need it
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response
