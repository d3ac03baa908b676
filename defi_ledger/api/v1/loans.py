"""POST/GET /v1/loans - Loan origination, repayment and listing"""

import math
import time
import logging
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from defi_ledger.api.dependencies import get_loan_manager, get_request_id
from defi_ledger.api.errors import to_http_exception
from defi_ledger.api.v1.schemas import (
    LoanListResponse,
    LoanRequest,
    LoanResponse,
    PaginationSchema,
    RepayRequest,
    RepayResponse,
)
from defi_ledger.domain.exceptions import (
    DomainException,
    InsufficientCollateral,
    InsufficientCredit,
    InsufficientPayment,
    ValidationError,
)
from defi_ledger.infrastructure.database.models import Loan
from defi_ledger.infrastructure.observability.logging import log_loan_outcome
from defi_ledger.infrastructure.observability.metrics import loan_repayment_counter, loan_request_counter
from defi_ledger.services.lending import LoanLifecycleManager
from defi_ledger.utils.date_utils import days_remaining, ensure_utc

router = APIRouter()

_REQUEST_OUTCOMES = {
    InsufficientCredit: "insufficient_credit",
    InsufficientCollateral: "insufficient_collateral",
    ValidationError: "invalid",
}


def _to_response(loan: Loan, collateral_ratio: Optional[Decimal] = None) -> LoanResponse:
    return LoanResponse(
        loan_id=loan.id,
        user_id=loan.user_id,
        amount=loan.amount,
        interest_rate=loan.interest_rate,
        duration=loan.duration,
        collateral=loan.collateral,
        status=loan.status,
        created_at=ensure_utc(loan.created_at),
        due_date=ensure_utc(loan.due_date) if loan.due_date else None,
        repaid_at=ensure_utc(loan.repaid_at) if loan.repaid_at else None,
        days_remaining=days_remaining(loan.due_date) if loan.status == "active" else None,
        collateral_ratio=collateral_ratio,
    )


@router.post("/loans", response_model=LoanResponse, status_code=201)
def create_loan(
    request_body: LoanRequest,
    request: Request,
    loans: LoanLifecycleManager = Depends(get_loan_manager),
):
    """
    Request a collateralized loan.

    Flow:
    1. Validate duration and amounts
    2. Check the persisted credit score against the tier for the amount
    3. Price the loan from score, size and term
    4. Require collateral of at least 150% of principal
    5. Record the loan as requested
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        loan, terms = loans.request_loan(
            user_id=request_body.user_id,
            amount=request_body.amount,
            duration_seconds=request_body.duration,
            collateral=request_body.collateral,
        )
    except DomainException as e:
        outcome = _REQUEST_OUTCOMES.get(type(e), "failed")
        loan_request_counter.labels(outcome=outcome).inc()
        log_loan_outcome(request_id, request_body.user_id, "loan_request", outcome, (time.time() - start_time) * 1000)
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error creating loan: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    loan_request_counter.labels(outcome="created").inc()
    log_loan_outcome(
        request_id,
        request_body.user_id,
        "loan_request",
        "created",
        (time.time() - start_time) * 1000,
        loan_id=loan.id,
        interest_rate=str(terms.interest_rate),
    )
    return _to_response(loan, terms.collateral_ratio)


@router.get("/loans", response_model=LoanListResponse)
def list_loans(
    request: Request,
    user_id: int = Query(..., ge=1, description="User identifier"),
    status: Optional[str] = Query(None, description="requested | active | repaid | defaulted"),
    page: int = Query(1, description="Page number, from 1"),
    limit: int = Query(20, description="Page size, up to 50"),
    loans: LoanLifecycleManager = Depends(get_loan_manager),
):
    """User's loans, newest first"""
    try:
        items, total = loans.list_loans(user_id, status=status, page=page, limit=limit)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    return LoanListResponse(
        loans=[_to_response(loan) for loan in items],
        pagination=PaginationSchema(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post("/loans/{loan_id}/repay", response_model=RepayResponse)
def repay_loan(
    loan_id: int,
    request_body: RepayRequest,
    request: Request,
    loans: LoanLifecycleManager = Depends(get_loan_manager),
):
    """
    Repay an active loan in full.

    Total due is principal plus simple interest over the original term.
    Overpayment is accepted and reported.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        result = loans.repay_loan(loan_id, request_body.user_id, request_body.amount, request_body.transaction_hash)
    except DomainException as e:
        outcome = "insufficient_payment" if isinstance(e, InsufficientPayment) else "rejected"
        loan_repayment_counter.labels(outcome=outcome).inc()
        log_loan_outcome(request_id, request_body.user_id, "loan_repayment", outcome, (time.time() - start_time) * 1000, loan_id=loan_id)
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error repaying loan: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    outcome = "duplicate" if result.duplicate else "repaid"
    loan_repayment_counter.labels(outcome=outcome).inc()
    log_loan_outcome(request_id, request_body.user_id, "loan_repayment", outcome, (time.time() - start_time) * 1000, loan_id=loan_id)

    return RepayResponse(
        loan_id=result.loan_id,
        amount=result.amount,
        total_due=result.total_due,
        overpayment=result.overpayment,
        transaction_hash=result.external_tx_id,
        repaid_at=result.repaid_at,
        duplicate=result.duplicate,
        new_score=result.score_change.new_score if result.score_change else None,
    )
