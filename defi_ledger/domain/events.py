"""
Inbound event envelopes as a closed tagged union keyed on ``eventType``.

Each variant validates only the fields it needs and derives its own
correlation key, the identifier used to deduplicate redeliveries.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, Iterable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from defi_ledger.domain.exceptions import ValidationError

TX_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"
ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
CURRENCY_PATTERN = r"^[A-Za-z]{3}$"


class InboundEvent(BaseModel):
    """Fields shared by every envelope"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    event_data: Dict[str, Any] = Field(default_factory=dict, alias="eventData")

    @property
    def correlation_key(self) -> str:
        raise NotImplementedError


# Blockchain events


class TransactionConfirmed(InboundEvent):
    event_type: Literal["transaction_confirmed"] = Field(alias="eventType")
    transaction_hash: str = Field(alias="transactionHash", pattern=TX_HASH_PATTERN)
    block_number: Optional[int] = Field(default=None, alias="blockNumber", ge=0)
    contract_address: Optional[str] = Field(default=None, alias="contractAddress", pattern=ADDRESS_PATTERN)

    @property
    def correlation_key(self) -> str:
        return self.transaction_hash


class BlockMined(InboundEvent):
    event_type: Literal["block_mined"] = Field(alias="eventType")
    block_number: int = Field(alias="blockNumber", ge=0)

    @property
    def correlation_key(self) -> str:
        return f"block:{self.block_number}"


class ContractEvent(InboundEvent):
    event_type: Literal["contract_event"] = Field(alias="eventType")
    transaction_hash: str = Field(alias="transactionHash", pattern=TX_HASH_PATTERN)
    contract_address: str = Field(alias="contractAddress", pattern=ADDRESS_PATTERN)
    block_number: Optional[int] = Field(default=None, alias="blockNumber", ge=0)

    @property
    def event_name(self) -> str:
        return str(self.event_data.get("eventName", "unknown"))

    @property
    def correlation_key(self) -> str:
        # One transaction can emit several logs
        log_index = self.event_data.get("logIndex")
        if log_index is None:
            return self.transaction_hash
        return f"{self.transaction_hash}:{log_index}"


# Payment processor events


class PaymentEvent(InboundEvent):
    payment_id: str = Field(alias="paymentId", min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = Field(pattern=CURRENCY_PATTERN)
    user_id: Optional[int] = Field(default=None, alias="userId", ge=1)

    @property
    def correlation_key(self) -> str:
        return self.payment_id


class PaymentCompleted(PaymentEvent):
    event_type: Literal["payment_completed"] = Field(alias="eventType")


class PaymentFailed(PaymentEvent):
    event_type: Literal["payment_failed"] = Field(alias="eventType")


class RefundProcessed(PaymentEvent):
    event_type: Literal["refund_processed"] = Field(alias="eventType")


# Loan lifecycle events (funding and default detection happen upstream)


class LoanEvent(InboundEvent):
    loan_id: int = Field(alias="loanId", ge=1)
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash", pattern=TX_HASH_PATTERN)

    @property
    def correlation_key(self) -> str:
        return f"loan:{self.loan_id}"


class LoanFunded(LoanEvent):
    event_type: Literal["loan_funded"] = Field(alias="eventType")


class LoanDefaulted(LoanEvent):
    event_type: Literal["loan_defaulted"] = Field(alias="eventType")


Event = Annotated[
    Union[
        TransactionConfirmed,
        BlockMined,
        ContractEvent,
        PaymentCompleted,
        PaymentFailed,
        RefundProcessed,
        LoanFunded,
        LoanDefaulted,
    ],
    Field(discriminator="event_type"),
]

_event_adapter: TypeAdapter = TypeAdapter(Event)

BLOCKCHAIN_EVENT_TYPES = frozenset({"transaction_confirmed", "block_mined", "contract_event"})
PAYMENT_EVENT_TYPES = frozenset({"payment_completed", "payment_failed", "refund_processed"})
LOAN_EVENT_TYPES = frozenset({"loan_funded", "loan_defaulted"})
EVENT_TYPES = BLOCKCHAIN_EVENT_TYPES | PAYMENT_EVENT_TYPES | LOAN_EVENT_TYPES


def parse_event(raw_body: bytes, allowed_types: Optional[Iterable[str]] = None) -> InboundEvent:
    """
    Parse a raw JSON body into its event variant.

    Raises:
        ValidationError: malformed JSON, unknown event type, bad field, or an
            event type the receiving endpoint does not accept
    """
    try:
        event = _event_adapter.validate_json(raw_body)
    except PydanticValidationError as e:
        details = [{"loc": [str(part) for part in err["loc"]], "msg": err["msg"]} for err in e.errors()]
        raise ValidationError("Invalid event envelope", details=details) from e

    if allowed_types is not None and event.event_type not in set(allowed_types):
        raise ValidationError(f"Event type {event.event_type} not accepted by this endpoint")

    return event
