"""Integration tests for webhook ingestion and idempotency"""

import threading
import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.orm import Session
from defi_ledger.config import settings
from defi_ledger.domain.exceptions import StorageFailure, Unauthorized, ValidationError
from defi_ledger.infrastructure.cache import NullCache
from defi_ledger.infrastructure.database.models import (
    BlockchainBlock,
    CreditScoreUpdate,
    SavingsAccount,
    UserTransaction,
    WebhookEvent,
)
from defi_ledger.services.credit import CreditScoringEngine
from defi_ledger.services.ingestion import EventIngestion, IdempotencyGuard
from defi_ledger.services.settlement import SettlementDispatcher

TX_HASH = "0x" + "1f" * 32


def _payment(user_id, payment_id="pay_123", amount="100"):
    return {
        "eventType": "payment_completed",
        "paymentId": payment_id,
        "amount": amount,
        "currency": "USD",
        "userId": user_id,
    }


def test_payment_completed_credits_savings(db: Session, ingestion, user, signed):
    body, signature = signed(_payment(user.id))

    result = ingestion.ingest(body, signature)

    assert result.processed is True
    assert result.duplicate is False
    account = db.query(SavingsAccount).filter_by(user_id=user.id).one()
    assert account.balance == Decimal(100)
    txn = db.query(UserTransaction).filter_by(payment_id="pay_123").one()
    assert txn.status == "completed"


def test_redelivery_is_applied_once(db: Session, ingestion, user, signed):
    """The same payment delivered three times credits once"""
    body, signature = signed(_payment(user.id))

    first = ingestion.ingest(body, signature)
    second = ingestion.ingest(body, signature)
    third = ingestion.ingest(body, signature)

    assert not first.duplicate
    assert second.duplicate and third.duplicate
    assert second.event_id == first.event_id == third.event_id
    assert second.processed is True

    assert db.query(SavingsAccount).filter_by(user_id=user.id).one().balance == Decimal(100)
    assert db.query(WebhookEvent).count() == 1
    assert db.query(UserTransaction).count() == 1
    assert db.query(CreditScoreUpdate).filter_by(action="savings_deposit").count() == 1


def test_confirmed_deposit_redelivery_credits_once(db: Session, ingestion, user, signed, pending_deposit):
    pending_deposit(user, TX_HASH, amount="100")
    body, signature = signed({"eventType": "transaction_confirmed", "transactionHash": TX_HASH})

    first = ingestion.ingest(body, signature)
    second = ingestion.ingest(body, signature)

    assert (first.duplicate, second.duplicate) == (False, True)
    assert second.event_id == first.event_id
    assert db.query(SavingsAccount).filter_by(user_id=user.id).one().balance == Decimal(100)
    assert db.query(UserTransaction).filter_by(transaction_hash=TX_HASH).one().status == "completed"


def test_concurrent_confirmations_credit_once(db: Session, session_factory, user, signed, pending_deposit):
    """Two workers receive the same confirmation at the same moment"""
    pending_deposit(user, TX_HASH, amount="100")
    body, signature = signed({"eventType": "transaction_confirmed", "transactionHash": TX_HASH})
    barrier = threading.Barrier(2)

    def deliver():
        session = session_factory()
        try:
            dispatcher = SettlementDispatcher(session, CreditScoringEngine(session, NullCache()))
            worker = EventIngestion(session, dispatcher, cache=NullCache(), secret=settings.webhook_secret)
            barrier.wait(timeout=5)
            return worker.ingest(body, signature)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(deliver) for _ in range(2)]
        results = [future.result(timeout=30) for future in futures]

    assert sorted(r.duplicate for r in results) == [False, True]
    assert results[0].event_id == results[1].event_id
    db.expire_all()
    assert db.query(SavingsAccount).filter_by(user_id=user.id).one().balance == Decimal(100)
    assert db.query(WebhookEvent).count() == 1


def test_distinct_payments_accumulate(db: Session, ingestion, user, signed):
    for n, amount in enumerate(["100", "50.25"]):
        body, signature = signed(_payment(user.id, payment_id=f"pay_{n}", amount=amount))
        ingestion.ingest(body, signature)

    assert db.query(SavingsAccount).filter_by(user_id=user.id).one().balance == Decimal("150.25")


def test_bad_signature_persists_nothing(db: Session, ingestion, user, signed):
    body, _ = signed(_payment(user.id))

    with pytest.raises(Unauthorized):
        ingestion.ingest(body, "sha256=" + "0" * 64)

    assert db.query(WebhookEvent).count() == 0
    assert db.query(SavingsAccount).count() == 0


def test_malformed_envelope_persists_nothing(db: Session, ingestion, signed):
    body, signature = signed({"eventType": "payment_completed", "paymentId": "p"})

    with pytest.raises(ValidationError):
        ingestion.ingest(body, signature)

    assert db.query(WebhookEvent).count() == 0


def test_lost_insert_race_reports_winner(db: Session, ingestion, user, signed):
    """A concurrent delivery that committed first wins on the unique key"""
    body, signature = signed(_payment(user.id))
    winner = ingestion.ingest(body, signature)

    # Simulate the losing request having passed its lookup before the winner committed
    with patch.object(IdempotencyGuard, "check", return_value=None):
        loser = ingestion.ingest(body, signature)

    assert loser.duplicate is True
    assert loser.event_id == winner.event_id
    assert db.query(SavingsAccount).filter_by(user_id=user.id).one().balance == Decimal(100)


def test_handler_failure_rolls_back_event(db: Session, ingestion, dispatcher, user, signed):
    """A failed handler leaves no trace, so the sender can retry"""
    body, signature = signed(_payment(user.id))

    with patch.object(dispatcher.ledger, "credit_savings", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            ingestion.ingest(body, signature)

    assert db.query(WebhookEvent).count() == 0
    assert db.query(UserTransaction).count() == 0

    retried = ingestion.ingest(body, signature)
    assert retried.duplicate is False
    assert db.query(SavingsAccount).filter_by(user_id=user.id).one().balance == Decimal(100)


def test_storage_error_surfaces_as_storage_failure(db: Session, ingestion, dispatcher, user, signed):
    from sqlalchemy.exc import OperationalError

    body, signature = signed(_payment(user.id))
    error = OperationalError("UPDATE savings_accounts", {}, Exception("database is locked"))

    with patch.object(dispatcher.ledger, "credit_savings", side_effect=error):
        with pytest.raises(StorageFailure):
            ingestion.ingest(body, signature)

    assert db.query(WebhookEvent).count() == 0


def test_same_key_different_type_is_distinct(db: Session, ingestion, signed):
    confirmed, sig1 = signed({"eventType": "transaction_confirmed", "transactionHash": TX_HASH})
    contract, sig2 = signed(
        {"eventType": "contract_event", "transactionHash": TX_HASH, "contractAddress": "0x" + "ab" * 20}
    )

    assert not ingestion.ingest(confirmed, sig1).duplicate
    assert not ingestion.ingest(contract, sig2).duplicate
    assert db.query(WebhookEvent).count() == 2


def test_block_mined_is_upserted(db: Session, ingestion, signed):
    body, signature = signed({"eventType": "block_mined", "blockNumber": 100, "eventData": {"transactions": ["a", "b"]}})

    ingestion.ingest(body, signature)
    ingestion.ingest(body, signature)

    block = db.query(BlockchainBlock).one()
    assert block.block_number == 100
    assert block.transaction_count == 2


def test_webhook_status_counts(db: Session, ingestion, user, signed):
    for n in range(3):
        body, signature = signed(_payment(user.id, payment_id=f"pay_{n}"))
        ingestion.ingest(body, signature)

    status = ingestion.webhook_status()

    assert status["total"] == 3
    assert status["processed"] == 3
    assert status["pending"] == 0
    assert status["last_hour"] == 3
    assert status["by_type"][0]["event_type"] == "payment_completed"
    assert status["by_type"][0]["count"] == 3
