"""Loan lifecycle manager - origination, repayment and listing"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from defi_ledger.domain.exceptions import InvalidState, NotFound, ValidationError
from defi_ledger.domain.lending import (
    calculate_total_due,
    check_repayment,
    price_loan,
    quantize_money,
    validate_loan_request,
)
from defi_ledger.domain.models import LoanStatus, LoanTerms, RepaymentResult, TransactionStatus
from defi_ledger.infrastructure.database.models import Loan
from defi_ledger.infrastructure.database.repositories import LoanRepository
from defi_ledger.infrastructure.database.session import atomic
from defi_ledger.services.credit import CreditScoringEngine
from defi_ledger.utils.date_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


class LoanLifecycleManager:
    """requested -> active -> repaid | defaulted"""

    def __init__(self, db: Session, credit: CreditScoringEngine):
        self.db = db
        self.credit = credit
        self.loans = LoanRepository(db)

    def request_loan(
        self,
        user_id: int,
        amount: Decimal,
        duration_seconds: int,
        collateral: Decimal,
    ) -> Tuple[Loan, LoanTerms]:
        """
        Price and record a loan request.

        The interest rate is fixed at creation. The loan starts in
        ``requested``; funding moves it to ``active``.

        Raises:
            ValidationError: duration or amounts out of range
            InsufficientCredit: persisted score below the tier for amount
            InsufficientCollateral: collateral under 150% of principal
        """
        validate_loan_request(amount, duration_seconds, collateral)

        score = self.credit.get_current_score(user_id)
        terms = price_loan(score, amount, duration_seconds, collateral)

        with atomic(self.db):
            loan = self.loans.create_loan(
                user_id=user_id,
                terms=terms,
                due_date=utcnow() + timedelta(seconds=duration_seconds),
            )

        logger.info(
            f"Loan {loan.id} requested by user {user_id}",
            extra={"loan_id": loan.id, "user_id": user_id, "interest_rate": str(terms.interest_rate)},
        )
        return loan, terms

    def repay_loan(self, loan_id: int, user_id: int, amount: Decimal, external_tx_id: str) -> RepaymentResult:
        """
        Repay an active loan in full.

        Total due is simple interest over the whole original term, whenever
        the repayment arrives. The same (loan, external_tx_id) delivered again
        returns the recorded repayment flagged as a duplicate.

        Raises:
            ValidationError: non-positive or over-precise amount, missing external id
            NotFound: loan missing or owned by someone else
            InvalidState: loan is not active
            InsufficientPayment: amount below total due
        """
        if amount <= 0:
            raise ValidationError("Repayment amount must be positive")
        if amount != quantize_money(amount):
            raise ValidationError("Repayment amount has more than 18 decimal places")
        if not external_tx_id:
            raise ValidationError("External transaction id is required")

        with atomic(self.db):
            loan = self.loans.get_loan(loan_id, user_id=user_id, lock=True)
            if loan is None:
                raise NotFound(f"Loan {loan_id} not found")

            total_due = calculate_total_due(Decimal(loan.amount), Decimal(loan.interest_rate), loan.duration)

            existing = self.loans.find_payment(loan.id, external_tx_id)
            if existing is not None and existing.status == TransactionStatus.COMPLETED.value:
                paid = Decimal(existing.amount)
                return RepaymentResult(
                    loan_id=loan.id,
                    amount=paid,
                    total_due=total_due,
                    overpayment=max(paid - total_due, Decimal(0)),
                    external_tx_id=external_tx_id,
                    repaid_at=ensure_utc(loan.repaid_at or existing.created_at),
                    duplicate=True,
                )

            if loan.status != LoanStatus.ACTIVE.value:
                raise InvalidState(f"Loan {loan_id} is {loan.status}, only active loans can be repaid")

            overpayment = check_repayment(amount, total_due)

            repaid_at = utcnow()
            loan.status = LoanStatus.REPAID.value
            loan.repaid_at = repaid_at
            self.loans.create_payment(loan, amount, external_tx_id)

            score_change = self.credit.apply_score_change(user_id, "loan_repaid", external_tx_id)

        return RepaymentResult(
            loan_id=loan_id,
            amount=amount,
            total_due=total_due,
            overpayment=overpayment,
            external_tx_id=external_tx_id,
            repaid_at=repaid_at,
            score_change=score_change,
        )

    def list_loans(
        self,
        user_id: int,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Loan], int]:
        """Page of the user's loans, newest first, and the total matching count"""
        if status is not None and status not in {s.value for s in LoanStatus}:
            raise ValidationError(f"Unknown loan status {status!r}")
        if page < 1:
            raise ValidationError("Page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

        return self.loans.list_loans(user_id, status=status, limit=limit, offset=(page - 1) * limit)
