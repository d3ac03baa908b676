"""GET/POST /v1/credit/* - Credit score, factors, history and improvement plan"""

import logging
from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from defi_ledger.api.dependencies import get_credit_engine, get_request_id
from defi_ledger.api.errors import to_http_exception
from defi_ledger.api.v1.schemas import (
    CreditFactorsResponse,
    CreditScoreResponse,
    ImprovementPlanResponse,
    ImprovementRequest,
    RecommendationSchema,
    ScoreHistoryResponse,
    ScoreSnapshotSchema,
    ScoreSummarySchema,
    ScoreUpdateRequest,
    ScoreUpdateResponse,
)
from defi_ledger.domain.exceptions import DomainException
from defi_ledger.domain.models import Recommendation
from defi_ledger.services.credit import CreditScoringEngine
from defi_ledger.utils.date_utils import DEFAULT_HISTORY_PERIOD

router = APIRouter()


def _recommendations(items: list[Recommendation]) -> list[RecommendationSchema]:
    return [RecommendationSchema(**asdict(r)) for r in items]


@router.get("/credit/score", response_model=CreditScoreResponse)
def get_credit_score(
    user_id: int = Query(..., ge=1, description="User identifier"),
    credit: CreditScoringEngine = Depends(get_credit_engine),
):
    """Persisted score with rating, factor breakdown and recommendations"""
    report = credit.get_credit_report(user_id)
    return CreditScoreResponse(
        user_id=report.user_id,
        score=report.score,
        rating=report.rating,
        last_updated=report.last_updated,
        factors=asdict(report.factors),
        recommendations=_recommendations(report.recommendations),
    )


@router.get("/credit/factors", response_model=CreditFactorsResponse)
def get_credit_factors(
    user_id: int = Query(..., ge=1, description="User identifier"),
    credit: CreditScoringEngine = Depends(get_credit_engine),
):
    """
    Detailed factor breakdown.

    overall_score is the weighted composite of the factors. It is advisory
    and independent of the persisted score.
    """
    report = credit.get_detailed_factors(user_id)
    return CreditFactorsResponse(
        user_id=report.user_id,
        factors=asdict(report.factors),
        overall_score=report.overall_score,
        recommendations=_recommendations(report.recommendations),
        next_review_date=report.next_review_date,
    )


@router.get("/credit/history", response_model=ScoreHistoryResponse)
def get_credit_history(
    request: Request,
    user_id: int = Query(..., ge=1, description="User identifier"),
    period: str = Query(DEFAULT_HISTORY_PERIOD, description="7d | 30d | 90d | 1y"),
    credit: CreditScoringEngine = Depends(get_credit_engine),
):
    """Score snapshots within a period, oldest first"""
    try:
        history = credit.get_score_history(user_id, period)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    return ScoreHistoryResponse(
        user_id=history.user_id,
        period=history.period,
        history=[ScoreSnapshotSchema(**asdict(s)) for s in history.snapshots],
        summary=ScoreSummarySchema(
            current=history.current,
            highest=history.highest,
            lowest=history.lowest,
            average=history.average,
        ),
    )


@router.post("/credit/improve", response_model=ImprovementPlanResponse)
def get_improvement_plan(
    request_body: ImprovementRequest,
    credit: CreditScoringEngine = Depends(get_credit_engine),
):
    """Suggestions grouped by horizon with a target 50 points above the current score"""
    plan = credit.get_improvement_plan(request_body.user_id)
    return ImprovementPlanResponse(
        current_score=plan.current_score,
        target_score=plan.target_score,
        immediate=_recommendations(plan.immediate),
        short_term=_recommendations(plan.short_term),
        long_term=_recommendations(plan.long_term),
        estimated_time_frame=plan.estimated_time_frame,
    )


@router.post("/credit/update", response_model=ScoreUpdateResponse)
def update_credit_score(
    request_body: ScoreUpdateRequest,
    request: Request,
    credit: CreditScoringEngine = Depends(get_credit_engine),
):
    """
    Apply a discrete score change for an externally observed action.

    Repeating the same (correlation_key, action) returns the recorded change
    with duplicate=true. Unknown actions leave the score untouched.
    """
    request_id = get_request_id(request)

    try:
        change = credit.apply_score_change(request_body.user_id, request_body.action, request_body.correlation_key)
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error updating score: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return ScoreUpdateResponse(
        user_id=change.user_id,
        action=change.action,
        old_score=change.old_score,
        new_score=change.new_score,
        score_change=change.delta,
        duplicate=change.duplicate,
    )
