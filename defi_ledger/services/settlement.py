"""Settlement dispatcher - applies verified inbound events to the ledger"""

import logging
from decimal import Decimal
from typing import Callable, Dict, Optional
from sqlalchemy.orm import Session

from defi_ledger.config import settings
from defi_ledger.domain.events import (
    BlockMined,
    ContractEvent,
    InboundEvent,
    LoanDefaulted,
    LoanFunded,
    PaymentEvent,
    TransactionConfirmed,
)
from defi_ledger.domain.models import LoanStatus, TransactionStatus
from defi_ledger.infrastructure.database.models import Loan, UserTransaction
from defi_ledger.infrastructure.database.repositories import LedgerRepository, LoanRepository
from defi_ledger.infrastructure.observability.metrics import savings_credit_counter
from defi_ledger.services.credit import CreditScoringEngine
from defi_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

DEPOSIT = "deposit"


class SettlementDispatcher:
    """
    Routes each event variant to its ledger effect.

    Runs inside the ingestion unit of work and never commits on its own, so a
    failure in any handler rolls back the event record with it.
    """

    def __init__(self, db: Session, credit: CreditScoringEngine):
        self.db = db
        self.credit = credit
        self.ledger = LedgerRepository(db)
        self.loans = LoanRepository(db)
        self._handlers: Dict[str, Callable[[InboundEvent], None]] = {
            "transaction_confirmed": self._on_transaction_confirmed,
            "block_mined": self._on_block_mined,
            "contract_event": self._on_contract_event,
            "payment_completed": self._on_payment_completed,
            "payment_failed": self._on_payment_not_settled,
            "refund_processed": self._on_payment_not_settled,
            "loan_funded": self._on_loan_funded,
            "loan_defaulted": self._on_loan_defaulted,
        }

    @property
    def handled_types(self) -> frozenset:
        return frozenset(self._handlers)

    def dispatch(self, event: InboundEvent) -> None:
        self._handlers[event.event_type](event)

    # Handlers

    def _on_transaction_confirmed(self, event: TransactionConfirmed) -> None:
        self.apply_transaction_confirmation(event.transaction_hash)

    def _on_block_mined(self, event: BlockMined) -> None:
        self.ledger.record_block(
            block_number=event.block_number,
            block_timestamp=event.event_data.get("timestamp"),
            transaction_count=len(event.event_data.get("transactions") or []),
        )

    def _on_contract_event(self, event: ContractEvent) -> None:
        self.ledger.record_contract_event(
            transaction_hash=event.transaction_hash,
            contract_address=event.contract_address,
            event_name=event.event_name,
            event_data=event.event_data,
            block_number=event.block_number,
        )

    def _on_payment_completed(self, event: PaymentEvent) -> None:
        self.apply_payment_completed(event.payment_id, event.user_id, event.amount, event.currency)

    def _on_payment_not_settled(self, event: PaymentEvent) -> None:
        logger.info(
            f"Payment {event.payment_id} {event.event_type}, no ledger credit",
            extra={"payment_id": event.payment_id, "event_type": event.event_type, "user_id": event.user_id},
        )

    def _on_loan_funded(self, event: LoanFunded) -> None:
        self.apply_loan_funded(event.loan_id)

    def _on_loan_defaulted(self, event: LoanDefaulted) -> None:
        self.apply_loan_defaulted(event.loan_id, event.correlation_key)

    # Ledger effects

    def apply_transaction_confirmation(self, tx_hash: str) -> Optional[UserTransaction]:
        """
        Complete the pending transaction with this hash.

        Deposits credit the owner's savings balance. Unknown hashes and
        transactions that are no longer pending are no-ops.
        """
        txn = self.ledger.get_transaction_by_hash(tx_hash, lock=True)
        if txn is None:
            logger.info(f"No transaction for hash {tx_hash}, nothing to settle")
            return None
        if txn.status != TransactionStatus.PENDING.value:
            logger.info(f"Transaction {txn.id} already {txn.status}, nothing to settle")
            return None

        if txn.transaction_type == DEPOSIT:
            self._credit_deposit(txn.user_id, Decimal(txn.amount), tx_hash, source="transaction_confirmed")

        txn.status = TransactionStatus.COMPLETED.value
        txn.updated_at = utcnow()
        self.db.flush()
        return txn

    def apply_payment_completed(
        self,
        payment_id: str,
        user_id: Optional[int],
        amount: Decimal,
        currency: str,
    ) -> Optional[UserTransaction]:
        """
        Record an off-chain deposit and credit the user's savings.

        Redeliveries are filtered by the ingestion guard on payment_id; a
        provider that reports the same money under a different id would be
        credited twice.
        """
        if user_id is None:
            logger.warning(f"Payment {payment_id} completed without a user id, no credit applied")
            return None
        if not self.ledger.user_exists(user_id):
            logger.warning(f"Payment {payment_id} completed for unknown user {user_id}, no credit applied")
            return None

        txn = self.ledger.create_transaction(
            user_id=user_id,
            transaction_type=DEPOSIT,
            amount=amount,
            currency=currency.upper(),
            status=TransactionStatus.COMPLETED.value,
            payment_id=payment_id,
        )
        self._credit_deposit(user_id, amount, payment_id, source="payment_completed")
        return txn

    def apply_loan_funded(self, loan_id: int) -> Optional[Loan]:
        """requested -> active"""
        loan = self.loans.get_loan(loan_id, lock=True)
        if loan is None or loan.status != LoanStatus.REQUESTED.value:
            logger.warning(f"Ignoring funding of loan {loan_id}: {'not found' if loan is None else loan.status}")
            return None

        loan.status = LoanStatus.ACTIVE.value
        self.db.flush()
        return loan

    def apply_loan_defaulted(self, loan_id: int, correlation_key: str) -> Optional[Loan]:
        """active -> defaulted, with the default score penalty"""
        loan = self.loans.get_loan(loan_id, lock=True)
        if loan is None or loan.status != LoanStatus.ACTIVE.value:
            logger.warning(f"Ignoring default of loan {loan_id}: {'not found' if loan is None else loan.status}")
            return None

        loan.status = LoanStatus.DEFAULTED.value
        self.db.flush()
        self.credit.apply_score_change(loan.user_id, "default", correlation_key)
        return loan

    def _credit_deposit(self, user_id: int, amount: Decimal, correlation_key: str, source: str) -> None:
        account = self.ledger.credit_savings(user_id, amount)
        savings_credit_counter.labels(source=source).inc()
        logger.info(
            f"Credited {amount} to savings of user {user_id}",
            extra={"user_id": user_id, "amount": str(amount), "balance": str(account.balance), "source": source},
        )

        if settings.score_on_deposit:
            self.credit.apply_score_change(user_id, "savings_deposit", correlation_key)
