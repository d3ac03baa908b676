"""Domain exception to HTTP status mapping"""

import logging
from fastapi import HTTPException
from defi_ledger.domain.exceptions import (
    DomainException,
    InsufficientCollateral,
    InsufficientCredit,
    InsufficientPayment,
    InvalidState,
    NotFound,
    StorageFailure,
    Unauthorized,
    ValidationError,
)


def to_http_exception(error: DomainException, request_id: str) -> HTTPException:
    """Translate a domain error, logging it with the request id"""
    if isinstance(error, Unauthorized):
        logging.warning(f"Unauthorized: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=401, detail=str(error))

    if isinstance(error, ValidationError):
        logging.warning(f"Validation failed: {error}", extra={"request_id": request_id})
        detail = {"message": str(error), "errors": error.details} if error.details else str(error)
        return HTTPException(status_code=400, detail=detail)

    if isinstance(error, InsufficientCredit):
        logging.info(f"Insufficient credit: {error}", extra={"request_id": request_id})
        return HTTPException(
            status_code=400,
            detail={"message": str(error), "current": error.current, "required": error.required},
        )

    if isinstance(error, InsufficientCollateral):
        logging.info(f"Insufficient collateral: {error}", extra={"request_id": request_id})
        return HTTPException(
            status_code=400,
            detail={"message": str(error), "current": str(error.current), "required": str(error.required)},
        )

    if isinstance(error, InsufficientPayment):
        logging.info(f"Insufficient payment: {error}", extra={"request_id": request_id})
        return HTTPException(
            status_code=400,
            detail={
                "message": str(error),
                "amount": str(error.amount),
                "total_due": str(error.total_due),
                "shortfall": str(error.shortfall),
            },
        )

    if isinstance(error, NotFound):
        return HTTPException(status_code=404, detail=str(error))

    if isinstance(error, InvalidState):
        logging.warning(f"Invalid state: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail=str(error))

    if isinstance(error, StorageFailure):
        logging.error(f"Storage failure: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=500, detail="Storage failure, please retry")

    logging.error(f"Unhandled domain error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
