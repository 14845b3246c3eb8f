import datetime as dt
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .correlation import CORRELATION_HEADER, current_correlation_id
from .errors import InternalError, ServiceError, ValidationError
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)


def error_response(error: ServiceError) -> JSONResponse:
    cid = current_correlation_id()
    body = ErrorResponse(
        correlation_id=cid,
        message=error.message,
        details=error.details,
        timestamp=dt.datetime.now(dt.timezone.utc),
    ).model_dump(mode="json", by_alias=True)
    body.update(error.extra)
    headers = {CORRELATION_HEADER: cid} if cid else None
    return JSONResponse(status_code=error.status_code, content=body, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.details)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.details)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return error_response(ValidationError(problems or "Malformed request"))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(InternalError("An unexpected error occurred"))
