"""Integration tests for the loan lifecycle manager"""

import pytest
from decimal import Decimal
from sqlalchemy.orm import Session
from defi_ledger.domain.exceptions import (
    InsufficientCollateral,
    InsufficientCredit,
    InsufficientPayment,
    InvalidState,
    NotFound,
    ValidationError,
)
from defi_ledger.infrastructure.database.models import CreditScore, Loan, LoanPayment

THIRTY_DAYS = 30 * 86_400
ONE_YEAR = 365 * 86_400


def test_request_loan_records_priced_loan(db: Session, lending, make_user):
    """Score 600, 1,000 for 30 days against 1,600 prices at the base rate"""
    borrower = make_user(score=600)

    loan, terms = lending.request_loan(borrower.id, Decimal(1000), THIRTY_DAYS, Decimal(1600))

    assert terms.interest_rate == Decimal(10)
    assert terms.collateral_ratio == Decimal(160)
    stored = db.query(Loan).one()
    assert stored.id == loan.id
    assert stored.status == "requested"
    assert stored.interest_rate == Decimal(10)
    assert stored.due_date is not None


def test_request_loan_insufficient_credit_mid_tier(db: Session, lending, make_user):
    """Score 550 asking for 6,000"""
    borrower = make_user(score=550)

    with pytest.raises(InsufficientCredit) as exc_info:
        lending.request_loan(borrower.id, Decimal(6000), THIRTY_DAYS, Decimal(9000))

    assert (exc_info.value.current, exc_info.value.required) == (550, 650)
    assert db.query(Loan).count() == 0


def test_request_loan_good_score_gets_discount(db: Session, lending, make_user):
    borrower = make_user(score=650)

    loan, terms = lending.request_loan(borrower.id, Decimal(1000), 2_592_000, Decimal(1600))

    assert terms.interest_rate == Decimal(9)
    assert terms.collateral_ratio == Decimal(160)
    stored = db.query(Loan).one()
    assert stored.status == "requested"
    assert stored.interest_rate == Decimal(9)


def test_request_loan_below_lowest_tier(db: Session, lending, make_user):
    borrower = make_user(score=400)

    with pytest.raises(InsufficientCredit) as exc_info:
        lending.request_loan(borrower.id, Decimal(1000), 2_592_000, Decimal(1600))

    assert (exc_info.value.current, exc_info.value.required) == (400, 500)
    assert db.query(Loan).count() == 0


def test_request_loan_insufficient_collateral(db: Session, lending, make_user):
    borrower = make_user(score=700)

    with pytest.raises(InsufficientCollateral):
        lending.request_loan(borrower.id, Decimal(1000), THIRTY_DAYS, Decimal(1000))

    assert db.query(Loan).count() == 0


def test_request_loan_validation_runs_first(db: Session, lending, user):
    """Duration is rejected even though the score would also fail"""
    with pytest.raises(ValidationError):
        lending.request_loan(user.id, Decimal(1000), 3600, Decimal(1600))


def test_repay_at_exact_total_due(db: Session, lending, make_user, active_loan):
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=ONE_YEAR)

    result = lending.repay_loan(loan.id, borrower.id, Decimal(1100), "tx_repay")

    assert result.total_due == Decimal(1100)
    assert result.overpayment == Decimal(0)
    assert result.duplicate is False
    assert result.score_change.new_score == 620

    db.refresh(loan)
    assert loan.status == "repaid"
    assert loan.repaid_at is not None
    assert db.query(LoanPayment).filter_by(loan_id=loan.id).one().external_id == "tx_repay"


def test_repay_overpayment_reported(lending, make_user, active_loan):
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=ONE_YEAR)

    result = lending.repay_loan(loan.id, borrower.id, Decimal(1101), "tx_repay")

    assert result.overpayment == Decimal(1)


def test_repay_one_unit_short_is_rejected(db: Session, lending, make_user, active_loan):
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=ONE_YEAR)

    with pytest.raises(InsufficientPayment) as exc_info:
        lending.repay_loan(loan.id, borrower.id, Decimal(1099), "tx_repay")

    assert exc_info.value.shortfall == Decimal(1)
    db.refresh(loan)
    assert loan.status == "active"
    assert db.query(LoanPayment).count() == 0
    assert db.query(CreditScore).filter_by(user_id=borrower.id).one().score == 600


def test_repay_redelivery_returns_recorded_result(db: Session, lending, make_user, active_loan):
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=ONE_YEAR)

    lending.repay_loan(loan.id, borrower.id, Decimal(1100), "tx_repay")
    again = lending.repay_loan(loan.id, borrower.id, Decimal(1100), "tx_repay")

    assert again.duplicate is True
    assert again.amount == Decimal(1100)
    assert db.query(LoanPayment).count() == 1
    assert db.query(CreditScore).filter_by(user_id=borrower.id).one().score == 620


def test_repay_redelivery_keeps_fractional_totals(db: Session, lending, make_user, active_loan):
    """30 days at 10% gives a total due that does not terminate"""
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=THIRTY_DAYS)

    first = lending.repay_loan(loan.id, borrower.id, Decimal(1010), "tx_repay")
    again = lending.repay_loan(loan.id, borrower.id, Decimal(1010), "tx_repay")

    assert first.total_due == Decimal("1008.219178082191780822")
    assert again.duplicate is True
    assert again.total_due == first.total_due
    assert again.overpayment == first.overpayment == Decimal("1.780821917808219178")


def test_repay_rejects_amount_beyond_token_precision(db: Session, lending, make_user, active_loan):
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=THIRTY_DAYS)

    with pytest.raises(ValidationError):
        lending.repay_loan(loan.id, borrower.id, Decimal("1008.2191780821917808219"), "tx_repay")

    db.refresh(loan)
    assert loan.status == "active"


def test_repay_repaid_loan_with_new_id_is_invalid_state(lending, make_user, active_loan):
    borrower = make_user(score=600)
    loan = active_loan(borrower, amount="1000", rate="10", duration=ONE_YEAR)
    lending.repay_loan(loan.id, borrower.id, Decimal(1100), "tx_1")

    with pytest.raises(InvalidState):
        lending.repay_loan(loan.id, borrower.id, Decimal(1100), "tx_2")


def test_repay_requested_loan_is_invalid_state(lending, make_user):
    borrower = make_user(score=600)
    loan, _ = lending.request_loan(borrower.id, Decimal(1000), THIRTY_DAYS, Decimal(1600))

    with pytest.raises(InvalidState):
        lending.repay_loan(loan.id, borrower.id, Decimal(2000), "tx_1")


def test_repay_someone_elses_loan_is_not_found(lending, make_user, active_loan):
    owner = make_user(score=600)
    other = make_user(score=600)
    loan = active_loan(owner)

    with pytest.raises(NotFound):
        lending.repay_loan(loan.id, other.id, Decimal(5000), "tx_1")


def test_list_loans_paginates(lending, make_user):
    borrower = make_user(score=700)
    for _ in range(3):
        lending.request_loan(borrower.id, Decimal(100), THIRTY_DAYS, Decimal(200))

    page, total = lending.list_loans(borrower.id, page=2, limit=2)

    assert total == 3
    assert len(page) == 1


def test_list_loans_filters_by_status(lending, make_user, active_loan):
    borrower = make_user(score=700)
    active_loan(borrower)
    lending.request_loan(borrower.id, Decimal(100), THIRTY_DAYS, Decimal(200))

    loans, total = lending.list_loans(borrower.id, status="active")

    assert total == 1
    assert loans[0].status == "active"


@pytest.mark.parametrize("params", [{"status": "lost"}, {"page": 0}, {"limit": 0}, {"limit": 51}])
def test_list_loans_rejects_bad_params(lending, user, params):
    with pytest.raises(ValidationError):
        lending.list_loans(user.id, **params)
