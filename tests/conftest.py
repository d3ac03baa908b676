"""Pytest fixtures for testing"""

import json
import pytest
from decimal import Decimal
from typing import Any, Callable, Dict, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from defi_ledger.api.dependencies import get_cache
from defi_ledger.api.main import create_app
from defi_ledger.config import settings
from defi_ledger.infrastructure.cache import NullCache
from defi_ledger.infrastructure.database.models import Base, CreditScore, Loan, User, UserTransaction
from defi_ledger.infrastructure.database.session import get_db
from defi_ledger.services.credit import CreditScoringEngine
from defi_ledger.services.ingestion import EventIngestion, compute_signature
from defi_ledger.services.lending import LoanLifecycleManager
from defi_ledger.services.settlement import SettlementDispatcher
from defi_ledger.utils.date_utils import utcnow


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Independent sessions on the test database, one per simulated worker"""
    return TestingSessionLocal


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database and no cache"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = NullCache
    return TestClient(app)


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    """Factory for persisted users, optionally with a starting score"""
    counter = {"n": 0}

    def _make(score: int | None = None) -> User:
        counter["n"] += 1
        user = User(wallet_address="0x" + f"{counter['n']:040x}")
        db.add(user)
        db.flush()
        if score is not None:
            db.add(CreditScore(user_id=user.id, score=score, last_updated=utcnow()))
        db.commit()
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def credit(db: Session) -> CreditScoringEngine:
    return CreditScoringEngine(db, NullCache())


@pytest.fixture
def dispatcher(db: Session, credit: CreditScoringEngine) -> SettlementDispatcher:
    return SettlementDispatcher(db, credit)


@pytest.fixture
def ingestion(db: Session, dispatcher: SettlementDispatcher) -> EventIngestion:
    return EventIngestion(db, dispatcher, cache=NullCache(), secret=settings.webhook_secret)


@pytest.fixture
def lending(db: Session, credit: CreditScoringEngine) -> LoanLifecycleManager:
    return LoanLifecycleManager(db, credit)


@pytest.fixture
def signed() -> Callable[[Dict[str, Any]], tuple[bytes, str]]:
    """Serialize an envelope and sign it with the configured webhook secret"""

    def _sign(envelope: Dict[str, Any]) -> tuple[bytes, str]:
        body = json.dumps(envelope).encode("utf-8")
        return body, compute_signature(body, settings.webhook_secret)

    return _sign


@pytest.fixture
def pending_deposit(db: Session) -> Callable[..., UserTransaction]:
    """Factory for a pending on-chain deposit awaiting confirmation"""

    def _make(user: User, tx_hash: str, amount: str = "100") -> UserTransaction:
        txn = UserTransaction(
            user_id=user.id,
            transaction_hash=tx_hash,
            transaction_type="deposit",
            amount=Decimal(amount),
            status="pending",
        )
        db.add(txn)
        db.commit()
        return txn

    return _make


@pytest.fixture
def active_loan(db: Session) -> Callable[..., Loan]:
    """Factory for a loan already funded on chain"""

    def _make(user: User, amount: str = "1000", rate: str = "10", duration: int = 31_536_000) -> Loan:
        loan = Loan(
            user_id=user.id,
            amount=Decimal(amount),
            interest_rate=Decimal(rate),
            duration=duration,
            collateral=Decimal(amount) * 2,
            status="active",
        )
        db.add(loan)
        db.commit()
        return loan

    return _make

