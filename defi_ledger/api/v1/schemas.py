"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


# Webhooks


class WebhookAck(BaseModel):
    """Response for POST /v1/webhooks/*"""

    success: bool = True
    event_id: UUID
    event_type: str
    correlation_key: str
    processed: bool
    duplicate: bool = False


class EventTypeStats(BaseModel):
    event_type: str
    count: int
    avg_processing_seconds: float


class WebhookStatusResponse(BaseModel):
    """Response for GET /v1/webhooks/status"""

    total: int
    processed: int
    pending: int
    last_hour: int
    last_24_hours: int
    by_type: List[EventTypeStats]


# Credit


class FactorsSchema(BaseModel):
    payment_history: Dict[str, Any]
    loan_history: Dict[str, Any]
    savings_behavior: Dict[str, Any]
    protocol_activity: Dict[str, Any]


class RecommendationSchema(BaseModel):
    category: str
    suggestion: str
    impact: str
    time_frame: str


class CreditScoreResponse(BaseModel):
    """Response for GET /v1/credit/score"""

    user_id: int
    score: int
    rating: str
    last_updated: Optional[datetime] = None
    factors: FactorsSchema
    recommendations: List[RecommendationSchema]


class CreditFactorsResponse(BaseModel):
    """Response for GET /v1/credit/factors"""

    user_id: int
    factors: FactorsSchema
    overall_score: int
    recommendations: List[RecommendationSchema]
    next_review_date: datetime


class ScoreSnapshotSchema(BaseModel):
    score: int
    action: Optional[str] = None
    delta: Optional[int] = None
    created_at: datetime


class ScoreSummarySchema(BaseModel):
    current: int
    highest: int
    lowest: int
    average: int


class ScoreHistoryResponse(BaseModel):
    """Response for GET /v1/credit/history"""

    user_id: int
    period: str
    history: List[ScoreSnapshotSchema]
    summary: ScoreSummarySchema


class ImprovementRequest(BaseModel):
    """Request body for POST /v1/credit/improve"""

    user_id: int = Field(..., ge=1, description="User identifier")


class ImprovementPlanResponse(BaseModel):
    """Response for POST /v1/credit/improve"""

    current_score: int
    target_score: int
    immediate: List[RecommendationSchema]
    short_term: List[RecommendationSchema]
    long_term: List[RecommendationSchema]
    estimated_time_frame: str


class ScoreUpdateRequest(BaseModel):
    """Request body for POST /v1/credit/update"""

    user_id: int = Field(..., ge=1, description="User identifier")
    action: str = Field(..., min_length=1, description="payment | loan_repaid | savings_deposit | default")
    correlation_key: str = Field(..., min_length=1, description="External id the change is keyed on")


class ScoreUpdateResponse(BaseModel):
    """Response for POST /v1/credit/update"""

    user_id: int
    action: str
    old_score: int
    new_score: int
    score_change: int
    duplicate: bool


# Loans


class LoanRequest(BaseModel):
    """Request body for POST /v1/loans"""

    user_id: int = Field(..., ge=1, description="User identifier")
    amount: Decimal = Field(..., description="Principal")
    duration: int = Field(..., description="Loan term in seconds, 1 day to 1 year")
    collateral: Decimal = Field(..., description="Collateral amount")


class LoanResponse(BaseModel):
    """Single loan as returned by POST /v1/loans and GET /v1/loans"""

    loan_id: int
    user_id: int
    amount: Decimal
    interest_rate: Decimal
    duration: int
    collateral: Decimal
    status: str
    created_at: datetime
    due_date: Optional[datetime] = None
    repaid_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    collateral_ratio: Optional[Decimal] = None


class PaginationSchema(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LoanListResponse(BaseModel):
    """Response for GET /v1/loans"""

    loans: List[LoanResponse]
    pagination: PaginationSchema


class RepayRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/repay"""

    user_id: int = Field(..., ge=1, description="User identifier")
    amount: Decimal = Field(..., description="Repayment amount")
    transaction_hash: str = Field(..., min_length=1, description="External transaction id")


class RepayResponse(BaseModel):
    """Response for POST /v1/loans/{loan_id}/repay"""

    loan_id: int
    amount: Decimal
    total_due: Decimal
    overpayment: Decimal
    transaction_hash: str
    repaid_at: datetime
    duplicate: bool
    new_score: Optional[int] = None
