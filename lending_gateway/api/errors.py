"""Map domain exceptions to HTTP responses"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lending_gateway.api.dependencies import get_request_id
from lending_gateway.domain.exceptions import (
    DomainException,
    InvalidStateTransition,
    LedgerWriteFailed,
    NotEligible,
    NotFound,
    SettlementNetworkError,
    TransferFailed,
    Unauthorized,
    ValidationError,
)

# Caller-fixable errors keep their specific message
STATUS_BY_EXCEPTION = [
    (ValidationError, 422),
    (NotEligible, 403),
    (Unauthorized, 403),
    (NotFound, 404),
    (InvalidStateTransition, 409),
]

PROCESSING_ERROR = "Payment is still processing, retry the request with the same Idempotency-Key"


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    request_id = get_request_id(request)

    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            logging.warning(f"{exc_type.__name__}: {exc}", extra={"request_id": request_id})
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    if isinstance(exc, LedgerWriteFailed):
        logging.error(f"Ledger write pending: {exc}", extra={"request_id": request_id})
        return JSONResponse(
            status_code=503,
            content={"detail": PROCESSING_ERROR, "idempotency_key": exc.idempotency_key},
        )

    if isinstance(exc, TransferFailed) and exc.rejected:
        logging.warning(f"Transfer rejected: {exc}", extra={"request_id": request_id})
        return JSONResponse(status_code=422, content={"detail": f"Transfer rejected: {exc}"})

    if isinstance(exc, SettlementNetworkError):
        logging.error(f"Settlement Network error: {exc}", extra={"request_id": request_id})
        return JSONResponse(status_code=503, content={"detail": "Settlement network unavailable, retry later"})

    logging.error(f"Unexpected domain error: {exc}", extra={"request_id": request_id})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainException, domain_exception_handler)
