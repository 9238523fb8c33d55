"""Maps domain errors onto HTTP responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError
from protean.integrations.fastapi import register_exception_handlers

from payments.errors import PaymentError

logger = structlog.get_logger(__name__)


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("Request failed", path=request.url.path, error=exc.code, detail=exc.message, **exc.context)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})


async def version_conflict_handler(request: Request, exc: ExpectedVersionError) -> JSONResponse:
    logger.info("Concurrent update rejected", path=request.url.path, detail=str(exc))
    return JSONResponse(
        status_code=400,
        content={"error": "conflict", "detail": "The resource was updated concurrently, please retry"},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


def register_payment_exception_handlers(app: FastAPI) -> None:
    """Install Protean's handlers plus the payments error mapping."""
    register_exception_handlers(app)
    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(ExpectedVersionError, version_conflict_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
