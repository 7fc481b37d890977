# ===========================================================
# logger.py
# ===========================================================
import traceback
import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import central logger from logging_setup
from logging_setup import logger, SENTRY_DSN
from services.types import TransactionFailed


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "InvalidRequest", "details": jsonable_encoder(exc.errors())}, status_code=400)


async def transaction_failed_handler(request: Request, exc: TransactionFailed) -> JSONResponse:
    """
    Storage failure after rollback. The caller may retry; retries are only
    safe for deductions because every deduction carries an idempotency token.
    """
    logger.error(f"❌ {exc.operation} failed on {request.method} {request.url.path}: {exc.__cause__!r}")
    if SENTRY_DSN:
        sentry_sdk.capture_exception(exc)
    return JSONResponse(
        {"error": "TransactionFailed", "message": "Failed to process request. Please try again."},
        status_code=500,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler:
    - Logs the traceback locally (with secrets masked)
    - Sends to Sentry (if configured)
    """
    logger.error(
        "Exception in request %s %s:\n%s",
        request.method,
        request.url.path,
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )
    if SENTRY_DSN:
        sentry_sdk.capture_exception(exc)
    return JSONResponse({"error": "InternalServerError"}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(TransactionFailed, transaction_failed_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
