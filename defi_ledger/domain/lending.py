"""Loan pricing, eligibility and repayment math"""

from decimal import Context, Decimal, ROUND_HALF_UP
from defi_ledger.domain.models import LoanTerms
from defi_ledger.domain.exceptions import (
    InsufficientCollateral,
    InsufficientCredit,
    InsufficientPayment,
    ValidationError,
)

SECONDS_PER_DAY = 86_400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

MIN_DURATION_SECONDS = SECONDS_PER_DAY  # 1 day
MAX_DURATION_SECONDS = SECONDS_PER_YEAR  # 1 year

MIN_COLLATERAL_RATIO = Decimal(150)  # percent

MONEY_QUANTUM = Decimal("1e-18")  # token precision, matches the Money column scale
MONEY_CONTEXT = Context(prec=60)

BASE_RATE = 10
MIN_RATE = 5
MAX_RATE = 25


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP, context=MONEY_CONTEXT)


def validate_loan_request(amount: Decimal, duration_seconds: int, collateral: Decimal) -> None:
    """Reject malformed requests before any storage access"""
    if not MIN_DURATION_SECONDS <= duration_seconds <= MAX_DURATION_SECONDS:
        raise ValidationError(
            f"Duration must be between {MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS} seconds"
        )
    if amount <= 0:
        raise ValidationError("Loan amount must be positive")
    if collateral <= 0:
        raise ValidationError("Collateral amount must be positive")


def min_credit_score(amount: Decimal) -> int:
    """
    Credit score tier required for a principal.

    Tiers: <=1,000 -> 500, <=5,000 -> 600, <=10,000 -> 650, above -> 700.
    """
    if amount <= 1000:
        return 500
    elif amount <= 5000:
        return 600
    elif amount <= 10000:
        return 650
    else:
        return 700


def calculate_interest_rate(credit_score: int, amount: Decimal, duration_seconds: int) -> Decimal:
    """
    Annual interest rate in percent, clamped to [5, 25].

    Adjustments from a 10% base:
    - Score: -3 at 750+, -1 at 650+, +5 below 550
    - Size: +1 above 10,000, another +2 above 50,000
    - Term: +1 beyond 180 days, another +2 beyond 365 days
    """
    rate = BASE_RATE

    if credit_score >= 750:
        rate -= 3
    elif credit_score >= 650:
        rate -= 1
    elif credit_score < 550:
        rate += 5

    if amount > 10000:
        rate += 1
    if amount > 50000:
        rate += 2

    duration_days = Decimal(duration_seconds) / SECONDS_PER_DAY
    if duration_days > 180:
        rate += 1
    if duration_days > 365:
        rate += 2

    return Decimal(max(MIN_RATE, min(MAX_RATE, rate)))


def collateral_ratio(collateral: Decimal, amount: Decimal) -> Decimal:
    """Collateral as a percentage of principal"""
    return collateral / amount * 100


def price_loan(credit_score: int, amount: Decimal, duration_seconds: int, collateral: Decimal) -> LoanTerms:
    """
    Price an already validated loan request.

    Checks run in order: credit tier, then collateral ratio. The rate is
    fixed here and never recomputed for the life of the loan.

    Raises:
        InsufficientCredit: score below the tier for this amount
        InsufficientCollateral: collateral under 150% of principal
    """
    required = min_credit_score(amount)
    if credit_score < required:
        raise InsufficientCredit(current=credit_score, required=required)

    rate = calculate_interest_rate(credit_score, amount, duration_seconds)

    ratio = collateral_ratio(collateral, amount)
    if ratio < MIN_COLLATERAL_RATIO:
        raise InsufficientCollateral(current=ratio, required=MIN_COLLATERAL_RATIO)

    return LoanTerms(
        amount=amount,
        duration_seconds=duration_seconds,
        collateral=collateral,
        credit_score=credit_score,
        min_credit_score=required,
        interest_rate=rate,
        collateral_ratio=ratio,
    )


def calculate_total_due(principal: Decimal, interest_rate: Decimal, duration_seconds: int) -> Decimal:
    """
    Simple interest over the full original term: P * (1 + R/100 * D/year),
    rounded to token precision so the figure survives storage unchanged.
    """
    return quantize_money(principal * (1 + (interest_rate / 100) * (Decimal(duration_seconds) / SECONDS_PER_YEAR)))


def check_repayment(amount: Decimal, total_due: Decimal) -> Decimal:
    """Return the overpayment (>= 0) or raise InsufficientPayment"""
    if amount < total_due:
        raise InsufficientPayment(amount=amount, total_due=total_due)
    return amount - total_due
