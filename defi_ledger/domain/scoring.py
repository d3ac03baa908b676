"""Credit scoring engine - pure business logic for factors, deltas and ratings"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict
from defi_ledger.domain.models import (
    ActivityFactor,
    CreditFactors,
    ImprovementPlan,
    LoanHistoryFactor,
    PaymentHistoryFactor,
    Recommendation,
    SavingsFactor,
)

SCORE_MIN = 0
SCORE_MAX = 850

# Discrete deltas applied to the persisted score
SCORE_DELTAS: Dict[str, int] = {
    "payment": 5,
    "loan_repaid": 20,
    "savings_deposit": 2,
    "default": -50,
}

# Composite weights (sum to 1.0)
FACTOR_WEIGHTS: Dict[str, Decimal] = {
    "payment_history": Decimal("0.35"),
    "loan_history": Decimal("0.30"),
    "savings_behavior": Decimal("0.20"),
    "protocol_activity": Decimal("0.15"),
}


def _round(value: Decimal) -> int:
    """Round half away from zero (0.5 -> 1), not banker's rounding"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def payment_history_score(total_payments: int, on_time_payments: int) -> int:
    """On-time share of loan payments as 0-100. No history is neutral (100), not penalized."""
    if total_payments == 0:
        return 100
    return _round(Decimal(on_time_payments) / Decimal(total_payments) * 100)


def loan_history_score(total_loans: int, repaid_loans: int, defaulted_loans: int) -> int:
    """
    Repayment success as 0-100 with a 20 point penalty per default.

    No loans at all is neutral (100).
    """
    if total_loans == 0:
        return 100
    success = Decimal(repaid_loans) / Decimal(total_loans) * 100
    return max(0, _round(success - 20 * defaulted_loans))


def savings_score(balance: Decimal, account_age_days: int) -> int:
    """
    Savings behavior as 0-100.

    Base 50, +20 above 1,000, +15 more above 10,000, +10 for accounts older
    than 30 days and +5 more past 90 days.
    """
    score = 50
    if balance > 1000:
        score += 20
    if balance > 10000:
        score += 15
    if account_age_days > 30:
        score += 10
    if account_age_days > 90:
        score += 5
    return min(100, score)


def protocol_activity_score(transaction_count: int) -> int:
    """2 points per transaction up to 50, plus bonuses past 10 and 50 transactions"""
    score = min(50, transaction_count * 2)
    if transaction_count > 10:
        score += 10
    if transaction_count > 50:
        score += 10
    return min(100, score)


def build_credit_factors(
    total_payments: int,
    on_time_payments: int,
    total_loans: int,
    repaid_loans: int,
    defaulted_loans: int,
    savings_balance: Decimal,
    account_age_days: int,
    transaction_count: int,
) -> CreditFactors:
    """Assemble the factor breakdown from raw activity counts"""
    payment_ratio = (
        round(on_time_payments / total_payments * 100, 1) if total_payments > 0 else 100.0
    )

    return CreditFactors(
        payment_history=PaymentHistoryFactor(
            score=payment_history_score(total_payments, on_time_payments),
            total_payments=total_payments,
            on_time_payments=on_time_payments,
            payment_ratio=payment_ratio,
        ),
        loan_history=LoanHistoryFactor(
            score=loan_history_score(total_loans, repaid_loans, defaulted_loans),
            total_loans=total_loans,
            repaid_loans=repaid_loans,
            defaulted_loans=defaulted_loans,
        ),
        savings_behavior=SavingsFactor(
            score=savings_score(savings_balance, account_age_days),
            balance=savings_balance,
            account_age_days=account_age_days,
        ),
        protocol_activity=ActivityFactor(
            score=protocol_activity_score(transaction_count),
            total_transactions=transaction_count,
        ),
    )


def calculate_overall_score(factors: CreditFactors) -> int:
    """
    Weighted composite of the four factors, 0-100.

    Advisory only: this is recomputed on every read and never written to the
    persisted score, which moves exclusively through discrete deltas.
    """
    weighted = (
        factors.payment_history.score * FACTOR_WEIGHTS["payment_history"]
        + factors.loan_history.score * FACTOR_WEIGHTS["loan_history"]
        + factors.savings_behavior.score * FACTOR_WEIGHTS["savings_behavior"]
        + factors.protocol_activity.score * FACTOR_WEIGHTS["protocol_activity"]
    )
    return _round(weighted)


def score_delta(action: str) -> int:
    """Delta for a scoring action; unknown actions are a no-op (0)"""
    return SCORE_DELTAS.get(action, 0)


def clamp_score(score: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, score))


def credit_rating(score: int) -> str:
    """Map persisted score to rating band"""
    if score >= 800:
        return "Excellent"
    elif score >= 740:
        return "Very Good"
    elif score >= 670:
        return "Good"
    elif score >= 580:
        return "Fair"
    else:
        return "Poor"


def credit_recommendations(factors: CreditFactors) -> List[Recommendation]:
    """Suggestions for the weakest factors, highest impact first"""
    recommendations = []

    if factors.payment_history.score < 80:
        recommendations.append(
            Recommendation(
                category="Payment History",
                suggestion="Make all loan payments on time to improve your payment history",
                impact="High",
                time_frame="3-6 months",
            )
        )

    if factors.savings_behavior.balance < 1000:
        recommendations.append(
            Recommendation(
                category="Savings",
                suggestion="Increase your savings balance to demonstrate financial stability",
                impact="Medium",
                time_frame="1-3 months",
            )
        )

    if factors.protocol_activity.total_transactions < 10:
        recommendations.append(
            Recommendation(
                category="Protocol Activity",
                suggestion="Engage more with protocol features to show active participation",
                impact="Low",
                time_frame="1-2 months",
            )
        )

    return recommendations


def _time_frame_bounds(time_frame: str) -> set[int]:
    # "3-6 months" -> {3, 6}
    span = time_frame.split()[0]
    return {int(part) for part in span.split("-")}


def build_improvement_plan(current_score: int, factors: CreditFactors) -> ImprovementPlan:
    """
    Group recommendations by horizon.

    A suggestion lands in every horizon (1, 3 or 6 months) that bounds its
    time frame, so "3-6 months" is both short and long term.
    """
    suggestions = credit_recommendations(factors)
    immediate = [s for s in suggestions if 1 in _time_frame_bounds(s.time_frame)]
    short_term = [s for s in suggestions if 3 in _time_frame_bounds(s.time_frame)]
    long_term = [s for s in suggestions if 6 in _time_frame_bounds(s.time_frame)]

    if not suggestions:
        estimate = "1-2 months"
    elif long_term:
        estimate = "6-12 months"
    elif short_term:
        estimate = "3-6 months"
    else:
        estimate = "1-3 months"

    return ImprovementPlan(
        current_score=current_score,
        target_score=min(current_score + 50, SCORE_MAX),
        immediate=immediate,
        short_term=short_term,
        long_term=long_term,
        estimated_time_frame=estimate,
    )
