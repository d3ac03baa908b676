"""SQLAlchemy ORM models for the ledger store"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    ForeignKey,
    Numeric,
    Text,
    JSON,
    Uuid,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base, relationship
from defi_ledger.utils.date_utils import utcnow

Base = declarative_base()

# Token amounts: 18 decimals of precision, up to 20 integer digits
Money = Numeric(38, 18)


class User(Base):
    """Platform user, identified externally by wallet address"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(42), nullable=False, unique=True)
    status = Column(Text, nullable=False, default="active")
    role = Column(Text, nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    savings_account = relationship("SavingsAccount", back_populates="user", uselist=False)
    credit_score = relationship("CreditScore", back_populates="user", uselist=False)
    loans = relationship("Loan", back_populates="user")


class SavingsAccount(Base):
    """Savings balance - additive credits only, always inside a transaction"""

    __tablename__ = "savings_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    balance = Column(Money, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="savings_account")


class UserTransaction(Base):
    """Protocol transaction (deposit, withdrawal, swap, ...)"""

    __tablename__ = "user_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_hash = Column(String(66), nullable=True, unique=True)
    payment_id = Column(Text, nullable=True, index=True)
    transaction_type = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(10), nullable=True)
    status = Column(Text, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class CreditScore(Base):
    """Persisted creditworthiness score, clamped to [0, 850]"""

    __tablename__ = "credit_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    score = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="credit_score")


class CreditScoreUpdate(Base):
    """Append-only log of applied deltas; one row per (external_id, action)"""

    __tablename__ = "credit_score_updates"
    __table_args__ = (UniqueConstraint("external_id", "action", name="uq_score_update_external_action"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    old_score = Column(Integer, nullable=False)
    new_score = Column(Integer, nullable=False)
    score_change = Column(Integer, nullable=False)
    action = Column(String(50), nullable=False)
    external_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CreditScoreHistory(Base):
    """Append-only score snapshots for trend queries"""

    __tablename__ = "credit_score_history"
    __table_args__ = (Index("ix_credit_score_history_user_created", "user_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    score = Column(Integer, nullable=False)
    action = Column(String(50), nullable=True)
    score_change = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Loan(Base):
    """Collateralized loan; rate is fixed at creation"""

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    interest_rate = Column(Numeric(5, 2), nullable=False)
    duration = Column(Integer, nullable=False)  # seconds
    collateral = Column(Money, nullable=False)
    status = Column(Text, nullable=False, default="requested", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    due_date = Column(DateTime(timezone=True), nullable=True)
    repaid_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="loans")
    payments = relationship("LoanPayment", back_populates="loan", cascade="all, delete-orphan")


class LoanPayment(Base):
    """Repayment against a loan, keyed by the external transaction id"""

    __tablename__ = "loan_payments"
    __table_args__ = (UniqueConstraint("loan_id", "external_id", name="uq_loan_payment_external"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Money, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    external_id = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    loan = relationship("Loan", back_populates="payments")


class WebhookEvent(Base):
    """Inbound event record; (correlation_key, event_type) is the idempotency key"""

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("correlation_key", "event_type", name="uq_webhook_event_correlation"),
        Index("ix_webhook_events_processed", "processed"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(String(50), nullable=False)
    correlation_key = Column(Text, nullable=False)
    transaction_hash = Column(String(66), nullable=True)
    payment_id = Column(Text, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    contract_address = Column(String(42), nullable=True)
    user_id = Column(Integer, nullable=True)
    loan_id = Column(Integer, nullable=True)
    event_data = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)


class BlockchainBlock(Base):
    """Latest-seen block metadata"""

    __tablename__ = "blockchain_blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    block_number = Column(BigInteger, nullable=False, unique=True)
    block_timestamp = Column(BigInteger, nullable=True)
    transaction_count = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class BlockchainEvent(Base):
    """Contract log recorded as pass-through metadata"""

    __tablename__ = "blockchain_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_hash = Column(String(66), nullable=False, index=True)
    contract_address = Column(String(42), nullable=False)
    event_name = Column(String(100), nullable=False)
    event_data = Column(JSON, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
