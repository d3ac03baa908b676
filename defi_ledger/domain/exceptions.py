"""Domain-specific exceptions"""

from decimal import Decimal


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class Unauthorized(DomainException):
    """Webhook signature missing or invalid"""

    pass


class DuplicateEvent(DomainException):
    """Correlation key already recorded - callers treat this as success"""

    def __init__(self, event_id, event_type: str, correlation_key: str, processed: bool = True):
        super().__init__(f"Event {event_type}:{correlation_key} already processed as {event_id}")
        self.event_id = event_id
        self.event_type = event_type
        self.correlation_key = correlation_key
        self.processed = processed


class ValidationError(DomainException):
    """Input is malformed or out of range"""

    def __init__(self, message: str, details: list | None = None):
        super().__init__(message)
        self.details = details or []


class InsufficientCredit(DomainException):
    """Credit score below the tier minimum for the requested amount"""

    def __init__(self, current: int, required: int):
        super().__init__(f"Minimum credit score of {required} required, current score is {current}")
        self.current = current
        self.required = required


class InsufficientCollateral(DomainException):
    """Collateral ratio below the platform minimum"""

    def __init__(self, current: Decimal, required: Decimal):
        super().__init__(f"Minimum collateral ratio of {required}% required, got {current:.2f}%")
        self.current = current
        self.required = required


class InsufficientPayment(DomainException):
    """Repayment amount is less than the total due"""

    def __init__(self, amount: Decimal, total_due: Decimal):
        self.amount = amount
        self.total_due = total_due
        self.shortfall = total_due - amount
        super().__init__(f"Repayment of {amount} is short of total due {total_due} by {self.shortfall}")


class NotFound(DomainException):
    """Referenced entity is missing or not owned by the caller"""

    pass


class InvalidState(DomainException):
    """Operation is not allowed in the entity's current lifecycle state"""

    pass


class StorageFailure(DomainException):
    """Storage error - the unit of work was rolled back and may be retried"""

    pass
