"""Data access layer for ledger entities"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import case, func
from sqlalchemy.orm import Session
from defi_ledger.infrastructure.database.models import (
    BlockchainBlock,
    BlockchainEvent,
    CreditScore,
    CreditScoreHistory,
    CreditScoreUpdate,
    Loan,
    LoanPayment,
    SavingsAccount,
    User,
    UserTransaction,
    WebhookEvent,
)
from defi_ledger.domain.events import InboundEvent
from defi_ledger.domain.models import LoanStatus, LoanTerms, TransactionStatus
from defi_ledger.utils.date_utils import ensure_utc, utcnow


class WebhookEventRepository:
    """Repository for inbound webhook events"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, correlation_key: str, event_type: str) -> Optional[WebhookEvent]:
        """Fetch a previously recorded event by its idempotency key"""
        return (
            self.db.query(WebhookEvent)
            .filter(
                WebhookEvent.correlation_key == correlation_key,
                WebhookEvent.event_type == event_type,
            )
            .first()
        )

    def create_event(self, event: InboundEvent) -> WebhookEvent:
        """Insert an unprocessed event row. Raises IntegrityError on a duplicate key at flush."""
        db_event = WebhookEvent(
            event_type=event.event_type,
            correlation_key=event.correlation_key,
            transaction_hash=getattr(event, "transaction_hash", None),
            payment_id=getattr(event, "payment_id", None),
            block_number=getattr(event, "block_number", None),
            contract_address=getattr(event, "contract_address", None),
            user_id=getattr(event, "user_id", None),
            loan_id=getattr(event, "loan_id", None),
            event_data=event.model_dump(mode="json", by_alias=True),
            processed=False,
        )
        self.db.add(db_event)
        self.db.flush()  # Surface unique violations now, inside the caller's transaction
        return db_event

    def mark_processed(self, db_event: WebhookEvent) -> None:
        db_event.processed = True
        db_event.processed_at = utcnow()
        self.db.flush()

    def get_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Processing statistics across all recorded events"""
        now = now or utcnow()
        rows = self.db.query(
            WebhookEvent.event_type,
            WebhookEvent.processed,
            WebhookEvent.created_at,
            WebhookEvent.processed_at,
        ).all()

        hour_ago = now - timedelta(hours=1)
        day_ago = now - timedelta(hours=24)
        by_type: Dict[str, Dict[str, Any]] = {}
        processed = 0
        last_hour = 0
        last_day = 0

        for event_type, is_processed, created_at, processed_at in rows:
            created_at = ensure_utc(created_at)
            if created_at > hour_ago:
                last_hour += 1
            if created_at > day_ago:
                last_day += 1
            if not is_processed:
                continue
            processed += 1
            bucket = by_type.setdefault(event_type, {"count": 0, "total_seconds": 0.0})
            bucket["count"] += 1
            if processed_at is not None:
                bucket["total_seconds"] += (ensure_utc(processed_at) - created_at).total_seconds()

        return {
            "total": len(rows),
            "processed": processed,
            "pending": len(rows) - processed,
            "last_hour": last_hour,
            "last_24_hours": last_day,
            "by_type": [
                {
                    "event_type": event_type,
                    "count": bucket["count"],
                    "avg_processing_seconds": bucket["total_seconds"] / bucket["count"],
                }
                for event_type, bucket in sorted(by_type.items())
            ],
        }


class LedgerRepository:
    """Repository for savings balances and protocol transactions"""

    def __init__(self, db: Session):
        self.db = db

    def user_exists(self, user_id: int) -> bool:
        return self.db.query(User.id).filter(User.id == user_id).first() is not None

    def get_transaction_by_hash(self, transaction_hash: str, lock: bool = False) -> Optional[UserTransaction]:
        query = self.db.query(UserTransaction).filter(UserTransaction.transaction_hash == transaction_hash)
        if lock:
            query = query.with_for_update()
        return query.first()

    def create_transaction(
        self,
        user_id: int,
        transaction_type: str,
        amount: Decimal,
        currency: Optional[str] = None,
        status: str = TransactionStatus.PENDING.value,
        transaction_hash: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> UserTransaction:
        db_txn = UserTransaction(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            currency=currency,
            status=status,
            transaction_hash=transaction_hash,
            payment_id=payment_id,
        )
        self.db.add(db_txn)
        self.db.flush()
        return db_txn

    def get_savings_account(self, user_id: int) -> Optional[SavingsAccount]:
        return self.db.query(SavingsAccount).filter(SavingsAccount.user_id == user_id).first()

    def credit_savings(self, user_id: int, amount: Decimal) -> SavingsAccount:
        """Add amount to the user's savings balance, opening the account if needed"""
        account = (
            self.db.query(SavingsAccount)
            .filter(SavingsAccount.user_id == user_id)
            .with_for_update()
            .first()
        )
        if account is None:
            account = SavingsAccount(user_id=user_id, balance=Decimal(0))
            self.db.add(account)

        account.balance = (account.balance or Decimal(0)) + amount
        self.db.flush()
        return account

    def count_transactions(self, user_id: int) -> int:
        return (
            self.db.query(func.count(UserTransaction.id))
            .filter(UserTransaction.user_id == user_id)
            .scalar()
            or 0
        )

    def record_block(self, block_number: int, block_timestamp: Optional[int], transaction_count: int) -> BlockchainBlock:
        """Upsert block metadata"""
        block = self.db.query(BlockchainBlock).filter(BlockchainBlock.block_number == block_number).first()
        if block is None:
            block = BlockchainBlock(
                block_number=block_number,
                block_timestamp=block_timestamp,
                transaction_count=transaction_count,
            )
            self.db.add(block)
        else:
            block.processed_at = utcnow()
        self.db.flush()
        return block

    def record_contract_event(
        self,
        transaction_hash: str,
        contract_address: str,
        event_name: str,
        event_data: Optional[Dict[str, Any]],
        block_number: Optional[int],
    ) -> BlockchainEvent:
        db_event = BlockchainEvent(
            transaction_hash=transaction_hash,
            contract_address=contract_address,
            event_name=event_name,
            event_data=event_data,
            block_number=block_number,
        )
        self.db.add(db_event)
        self.db.flush()
        return db_event


class CreditScoreRepository:
    """Repository for persisted scores, their update log and history"""

    def __init__(self, db: Session):
        self.db = db

    def get_score(self, user_id: int) -> Optional[CreditScore]:
        return self.db.query(CreditScore).filter(CreditScore.user_id == user_id).first()

    def lock_score(self, user_id: int) -> CreditScore:
        """Fetch the score row FOR UPDATE, creating it at 0 if the user has none"""
        score = (
            self.db.query(CreditScore)
            .filter(CreditScore.user_id == user_id)
            .with_for_update()
            .first()
        )
        if score is None:
            score = CreditScore(user_id=user_id, score=0)
            self.db.add(score)
            self.db.flush()
        return score

    def find_update(self, external_id: str, action: str) -> Optional[CreditScoreUpdate]:
        return (
            self.db.query(CreditScoreUpdate)
            .filter(
                CreditScoreUpdate.external_id == external_id,
                CreditScoreUpdate.action == action,
            )
            .first()
        )

    def record_change(
        self,
        score: CreditScore,
        new_score: int,
        delta: int,
        action: str,
        external_id: Optional[str],
    ) -> CreditScoreUpdate:
        """Write the new score plus one update row and one history row"""
        old_score = score.score
        score.score = new_score
        score.last_updated = utcnow()

        update = CreditScoreUpdate(
            user_id=score.user_id,
            old_score=old_score,
            new_score=new_score,
            score_change=delta,
            action=action,
            external_id=external_id,
        )
        self.db.add(update)
        self.db.add(
            CreditScoreHistory(
                user_id=score.user_id,
                score=new_score,
                action=action,
                score_change=delta,
            )
        )
        self.db.flush()
        return update

    def get_history(self, user_id: int, since: datetime) -> List[CreditScoreHistory]:
        """Snapshots newer than since, oldest first"""
        return (
            self.db.query(CreditScoreHistory)
            .filter(CreditScoreHistory.user_id == user_id, CreditScoreHistory.created_at > since)
            .order_by(CreditScoreHistory.created_at.asc())
            .all()
        )


class LoanRepository:
    """Repository for loans and loan payments"""

    def __init__(self, db: Session):
        self.db = db

    def create_loan(self, user_id: int, terms: LoanTerms, due_date: datetime) -> Loan:
        db_loan = Loan(
            user_id=user_id,
            amount=terms.amount,
            interest_rate=terms.interest_rate,
            duration=terms.duration_seconds,
            collateral=terms.collateral,
            status=LoanStatus.REQUESTED.value,
            due_date=due_date,
        )
        self.db.add(db_loan)
        self.db.flush()  # Get ID without committing
        return db_loan

    def get_loan(self, loan_id: int, user_id: Optional[int] = None, lock: bool = False) -> Optional[Loan]:
        """Fetch a loan, optionally scoped to its owner and locked for update"""
        query = self.db.query(Loan).filter(Loan.id == loan_id)
        if user_id is not None:
            query = query.filter(Loan.user_id == user_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def list_loans(
        self,
        user_id: int,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Loan], int]:
        """Page of a user's loans, newest first, with the unpaged total"""
        query = self.db.query(Loan).filter(Loan.user_id == user_id)
        if status:
            query = query.filter(Loan.status == status)

        total = query.count()
        loans = query.order_by(Loan.created_at.desc(), Loan.id.desc()).limit(limit).offset(offset).all()
        return loans, total

    def loan_counts(self, user_id: int) -> Tuple[int, int, int]:
        """(total, repaid, defaulted) loans for a user"""
        total, repaid, defaulted = (
            self.db.query(
                func.count(Loan.id),
                func.count(case((Loan.status == LoanStatus.REPAID.value, 1))),
                func.count(case((Loan.status == LoanStatus.DEFAULTED.value, 1))),
            )
            .filter(Loan.user_id == user_id)
            .one()
        )
        return total, repaid, defaulted

    def payment_counts(self, user_id: int) -> Tuple[int, int]:
        """(total, completed) loan payments for a user"""
        total, completed = (
            self.db.query(
                func.count(LoanPayment.id),
                func.count(case((LoanPayment.status == TransactionStatus.COMPLETED.value, 1))),
            )
            .filter(LoanPayment.user_id == user_id)
            .one()
        )
        return total, completed

    def find_payment(self, loan_id: int, external_id: str) -> Optional[LoanPayment]:
        return (
            self.db.query(LoanPayment)
            .filter(LoanPayment.loan_id == loan_id, LoanPayment.external_id == external_id)
            .first()
        )

    def create_payment(
        self,
        loan: Loan,
        amount: Decimal,
        external_id: str,
        status: str = TransactionStatus.COMPLETED.value,
    ) -> LoanPayment:
        payment = LoanPayment(
            user_id=loan.user_id,
            loan_id=loan.id,
            amount=amount,
            status=status,
            external_id=external_id,
        )
        self.db.add(payment)
        self.db.flush()
        return payment
