"""Credit scoring engine - persisted score maintenance and credit read models"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session

from defi_ledger.config import settings
from defi_ledger.domain.exceptions import NotFound, ValidationError
from defi_ledger.domain.models import CreditFactors, CreditReport, ImprovementPlan, ScoreChange, ScoreHistory, ScoreSnapshot
from defi_ledger.domain.scoring import (
    build_credit_factors,
    build_improvement_plan,
    calculate_overall_score,
    clamp_score,
    credit_rating,
    credit_recommendations,
    score_delta,
)
from defi_ledger.infrastructure.cache import Cache, NullCache
from defi_ledger.infrastructure.database.repositories import CreditScoreRepository, LedgerRepository, LoanRepository
from defi_ledger.infrastructure.database.session import atomic, on_commit
from defi_ledger.infrastructure.observability.logging import log_score_change
from defi_ledger.infrastructure.observability.metrics import record_score_change
from defi_ledger.utils.date_utils import HISTORY_PERIODS, days_between, ensure_utc, period_start, utcnow

logger = logging.getLogger(__name__)

NEXT_REVIEW_DAYS = 30


def score_cache_key(user_id: int) -> str:
    return f"credit:score:{user_id}"


class CreditScoringEngine:
    """
    Two-track credit model.

    The persisted score (0-850) only moves through discrete, idempotent
    deltas in apply_score_change. The factor composite is recomputed on every
    read and never written back.
    """

    def __init__(self, db: Session, cache: Optional[Cache] = None):
        self.db = db
        self.cache = cache or NullCache()
        self.scores = CreditScoreRepository(db)
        self.loans = LoanRepository(db)
        self.ledger = LedgerRepository(db)

    def _load_score(self, user_id: int) -> dict:
        key = score_cache_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        row = self.scores.get_score(user_id)
        data = {
            "score": row.score if row else 0,
            "last_updated": ensure_utc(row.last_updated).isoformat() if row else None,
        }
        self.cache.set(key, data, ttl=settings.credit_score_cache_ttl)
        return data

    def get_current_score(self, user_id: int) -> int:
        """Persisted score, 0 for users that have never been scored"""
        return int(self._load_score(user_id)["score"])

    def compute_factors(self, user_id: int) -> CreditFactors:
        """Read-only factor breakdown from payments, loans, savings and activity"""
        total_payments, on_time_payments = self.loans.payment_counts(user_id)
        total_loans, repaid_loans, defaulted_loans = self.loans.loan_counts(user_id)

        account = self.ledger.get_savings_account(user_id)
        balance = Decimal(account.balance) if account else Decimal(0)
        age_days = days_between(account.created_at, utcnow()) if account else 0

        return build_credit_factors(
            total_payments=total_payments,
            on_time_payments=on_time_payments,
            total_loans=total_loans,
            repaid_loans=repaid_loans,
            defaulted_loans=defaulted_loans,
            savings_balance=balance,
            account_age_days=age_days,
            transaction_count=self.ledger.count_transactions(user_id),
        )

    def apply_score_change(self, user_id: int, action: str, correlation_key: Optional[str]) -> ScoreChange:
        """
        Apply the delta for action to the user's persisted score, at most once
        per (correlation_key, action).

        The score row is locked before the duplicate check so concurrent calls
        for the same user serialize; the unique constraint on the update log
        backs this up. Joins the caller's unit of work when there is one.
        """
        delta = score_delta(action)
        if delta == 0:
            current = self.get_current_score(user_id)
            record_score_change(action, delta, duplicate=False)
            logger.warning(f"Ignoring unknown score action {action!r} for user {user_id}")
            return ScoreChange(user_id, action, correlation_key, current, current, 0)

        with atomic(self.db):
            if not self.ledger.user_exists(user_id):
                raise NotFound(f"User {user_id} not found")
            score = self.scores.lock_score(user_id)

            if correlation_key is not None:
                existing = self.scores.find_update(correlation_key, action)
                if existing is not None:
                    record_score_change(action, delta, duplicate=True)
                    return ScoreChange(
                        user_id=existing.user_id,
                        action=action,
                        correlation_key=correlation_key,
                        old_score=existing.old_score,
                        new_score=existing.new_score,
                        delta=existing.score_change,
                        duplicate=True,
                    )

            old_score = score.score
            new_score = clamp_score(old_score + delta)
            self.scores.record_change(score, new_score, delta, action, correlation_key)
            on_commit(self.db, lambda: self.cache.invalidate(score_cache_key(user_id)))

        record_score_change(action, delta, duplicate=False)
        log_score_change(user_id, action, old_score, new_score, correlation_key)
        return ScoreChange(user_id, action, correlation_key, old_score, new_score, delta)

    def get_credit_report(self, user_id: int) -> CreditReport:
        """Score, rating, factor breakdown and recommendations. No mutation."""
        data = self._load_score(user_id)
        factors = self.compute_factors(user_id)
        last_updated = data["last_updated"]

        return CreditReport(
            user_id=user_id,
            score=int(data["score"]),
            rating=credit_rating(int(data["score"])),
            last_updated=ensure_utc(datetime.fromisoformat(last_updated)) if last_updated else None,
            factors=factors,
            overall_score=calculate_overall_score(factors),
            recommendations=credit_recommendations(factors),
            next_review_date=utcnow() + timedelta(days=NEXT_REVIEW_DAYS),
        )

    def get_score_history(self, user_id: int, period: str = "30d") -> ScoreHistory:
        """Snapshots within period (7d, 30d, 90d, 1y) plus summary statistics"""
        if period not in HISTORY_PERIODS:
            raise ValidationError(f"Invalid period {period!r}, expected one of {sorted(HISTORY_PERIODS)}")

        rows = self.scores.get_history(user_id, period_start(period))
        snapshots = [
            ScoreSnapshot(score=r.score, action=r.action, delta=r.score_change, created_at=ensure_utc(r.created_at))
            for r in rows
        ]

        if snapshots:
            values = [s.score for s in snapshots]
            current = values[-1]
            highest, lowest = max(values), min(values)
            average = round(sum(values) / len(values))
        else:
            current = highest = lowest = average = self.get_current_score(user_id)

        return ScoreHistory(
            user_id=user_id,
            period=period,
            snapshots=snapshots,
            current=current,
            highest=highest,
            lowest=lowest,
            average=average,
        )

    def get_improvement_plan(self, user_id: int) -> ImprovementPlan:
        return build_improvement_plan(self.get_current_score(user_id), self.compute_factors(user_id))

    def get_detailed_factors(self, user_id: int) -> CreditReport:
        """Factor breakdown with overall score, recommendations and next review date"""
        return self.get_credit_report(user_id)
