"""Exception handlers rendering domain errors as JSON envelopes."""

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ugc_engine.exceptions import UGCEngineError
from ugc_engine.logging import get_logger

logger = get_logger(__name__)


def error_body(code: str, message: str, details: object | None = None) -> dict[str, object]:
    error: dict[str, object] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, UGCEngineError)
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            code=exc.code,
            error=exc.message,
            path=request.url.path,
            method=request.method,
        )
    else:
        logger.warning(
            "request_rejected",
            code=exc.code,
            error=exc.message,
            path=request.url.path,
            method=request.method,
        )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            "VALIDATION_ERROR", "Validation error", jsonable_encoder(exc.errors())
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UGCEngineError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
