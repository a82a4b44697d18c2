import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clipdash.domain.publish_errors import PublishError

logger = logging.getLogger(__name__)


def error_payload(*, request: Request, error_code: str, message: str) -> dict:
    return {
        "error_code": error_code,
        "message": message,
        "trace_id": getattr(request.state, "request_id", None),
    }


async def _http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error_code" in exc.detail and "message" in exc.detail:
        error_code = str(exc.detail["error_code"])
        message = str(exc.detail["message"])
    else:
        error_code = str(exc.status_code)
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request=request, error_code=error_code, message=message),
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=error_payload(request=request, error_code="validation_error", message="Request validation failed"),
    )


async def _publish_error(request: Request, exc: PublishError) -> JSONResponse:
    # Publish errors normally stay on the job row; reaching here means one escaped a route.
    logger.error("publish_error_escaped path=%s error_kind=%s error=%s", request.url.path, exc.error_kind, exc)
    return JSONResponse(
        status_code=502,
        content=error_payload(request=request, error_code=exc.error_kind, message=str(exc)),
    )


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return JSONResponse(
        status_code=500,
        content=error_payload(request=request, error_code="internal_server_error", message="Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, _http_exception)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(PublishError, _publish_error)
    app.add_exception_handler(Exception, _unhandled)
