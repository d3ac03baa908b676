"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class LoanStatus(str, Enum):
    REQUESTED = "requested"
    ACTIVE = "active"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PaymentHistoryFactor:
    """Loan payment punctuality"""

    score: int
    total_payments: int
    on_time_payments: int
    payment_ratio: float  # percent, 100.0 with no history


@dataclass
class LoanHistoryFactor:
    """Repaid vs defaulted loans"""

    score: int
    total_loans: int
    repaid_loans: int
    defaulted_loans: int


@dataclass
class SavingsFactor:
    """Savings balance and account age"""

    score: int
    balance: Decimal
    account_age_days: int


@dataclass
class ActivityFactor:
    """Protocol transaction activity"""

    score: int
    total_transactions: int


@dataclass
class CreditFactors:
    """Per-factor breakdown feeding the advisory composite score"""

    payment_history: PaymentHistoryFactor
    loan_history: LoanHistoryFactor
    savings_behavior: SavingsFactor
    protocol_activity: ActivityFactor


@dataclass
class Recommendation:
    """Single credit improvement suggestion"""

    category: str
    suggestion: str
    impact: str  # High | Medium | Low
    time_frame: str


@dataclass
class ScoreChange:
    """Outcome of a persisted score update"""

    user_id: int
    action: str
    correlation_key: Optional[str]
    old_score: int
    new_score: int
    delta: int
    duplicate: bool = False


@dataclass
class CreditReport:
    """Read model for a user's credit standing"""

    user_id: int
    score: int
    rating: str
    last_updated: Optional[datetime]
    factors: CreditFactors
    overall_score: int
    recommendations: List[Recommendation] = field(default_factory=list)
    next_review_date: Optional[datetime] = None


@dataclass
class ScoreSnapshot:
    """Point in the score history time series"""

    score: int
    action: Optional[str]
    delta: Optional[int]
    created_at: datetime


@dataclass
class ScoreHistory:
    """Score history over a period with summary statistics"""

    user_id: int
    period: str
    snapshots: List[ScoreSnapshot]
    current: int
    highest: int
    lowest: int
    average: int


@dataclass
class ImprovementPlan:
    """Suggestions grouped by horizon"""

    current_score: int
    target_score: int
    immediate: List[Recommendation]
    short_term: List[Recommendation]
    long_term: List[Recommendation]
    estimated_time_frame: str


@dataclass
class LoanTerms:
    """Priced and validated loan request"""

    amount: Decimal
    duration_seconds: int
    collateral: Decimal
    credit_score: int
    min_credit_score: int
    interest_rate: Decimal
    collateral_ratio: Decimal


@dataclass
class RepaymentResult:
    """Outcome of a loan repayment"""

    loan_id: int
    amount: Decimal
    total_due: Decimal
    overpayment: Decimal
    external_tx_id: str
    repaid_at: datetime
    duplicate: bool = False
    score_change: Optional[ScoreChange] = None


@dataclass
class IngestionResult:
    """Recorded outcome of an inbound event"""

    event_id: uuid.UUID
    event_type: str
    correlation_key: str
    processed: bool
    duplicate: bool = False
