"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from defi_ledger.config import settings
from defi_ledger.infrastructure.cache import Cache, build_cache
from defi_ledger.infrastructure.database.session import get_db
from defi_ledger.services.credit import CreditScoringEngine
from defi_ledger.services.ingestion import EventIngestion
from defi_ledger.services.lending import LoanLifecycleManager
from defi_ledger.services.settlement import SettlementDispatcher


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache
def get_cache() -> Cache:
    """Process-wide cache, NullCache when REDIS_URL is unset"""
    return build_cache(settings.redis_url)


def get_credit_engine(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)) -> CreditScoringEngine:
    return CreditScoringEngine(db, cache)


def get_event_ingestion(
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
    credit: CreditScoringEngine = Depends(get_credit_engine),
) -> EventIngestion:
    """Ingestion pipeline sharing one session with its dispatcher"""
    return EventIngestion(db, SettlementDispatcher(db, credit), cache=cache)


def get_loan_manager(
    db: Session = Depends(get_db),
    credit: CreditScoringEngine = Depends(get_credit_engine),
) -> LoanLifecycleManager:
    return LoanLifecycleManager(db, credit)
