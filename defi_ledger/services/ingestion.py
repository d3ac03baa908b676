"""Webhook ingestion: authenticity, parsing, idempotency and dispatch"""

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Iterable, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from defi_ledger.config import settings
from defi_ledger.domain.events import InboundEvent, parse_event
from defi_ledger.domain.exceptions import DuplicateEvent, StorageFailure, Unauthorized, ValidationError
from defi_ledger.domain.models import IngestionResult
from defi_ledger.infrastructure.cache import Cache, NullCache
from defi_ledger.infrastructure.database.models import WebhookEvent
from defi_ledger.infrastructure.database.repositories import WebhookEventRepository
from defi_ledger.infrastructure.database.session import atomic
from defi_ledger.infrastructure.observability.logging import log_event_ingested
from defi_ledger.infrastructure.observability.metrics import (
    record_event,
    webhook_processing_histogram,
    webhook_rejection_counter,
)
from defi_ledger.services.settlement import SettlementDispatcher

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
WEBHOOK_STATUS_CACHE_KEY = "webhooks:status"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Check the sender's signature over the exact bytes received.

    Accepts a bare hex digest or one prefixed with ``sha256=``.

    Raises:
        Unauthorized: signature missing or not matching
    """
    if not signature:
        raise Unauthorized("Missing webhook signature")

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), provided.lower().encode("utf-8")):
        raise Unauthorized("Invalid webhook signature")


class IdempotencyGuard:
    """At-most-once application of events keyed by (correlation_key, event_type)"""

    def __init__(self, db: Session):
        self.db = db
        self.events = WebhookEventRepository(db)

    def check(self, event: InboundEvent) -> None:
        existing = self.events.find(event.correlation_key, event.event_type)
        if existing is not None:
            raise self._duplicate(existing)

    def record(self, event: InboundEvent) -> WebhookEvent:
        """
        Insert the event row.

        A concurrent delivery that committed first wins on the unique
        constraint; the loser rolls back and reports the winner.
        """
        try:
            return self.events.create_event(event)
        except IntegrityError:
            self.db.rollback()
            existing = self.events.find(event.correlation_key, event.event_type)
            if existing is None:
                raise
            logger.info(f"Lost insert race for {event.event_type} {event.correlation_key}")
            raise self._duplicate(existing)

    def complete(self, db_event: WebhookEvent) -> None:
        self.events.mark_processed(db_event)

    @staticmethod
    def _duplicate(existing: WebhookEvent) -> DuplicateEvent:
        return DuplicateEvent(
            event_id=existing.id,
            event_type=existing.event_type,
            correlation_key=existing.correlation_key,
            processed=existing.processed,
        )


class EventIngestion:
    """Entry point for every inbound webhook"""

    def __init__(
        self,
        db: Session,
        dispatcher: SettlementDispatcher,
        cache: Optional[Cache] = None,
        secret: Optional[str] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.cache = cache or NullCache()
        self.secret = secret if secret is not None else settings.webhook_secret
        self.guard = IdempotencyGuard(db)

    def ingest(
        self,
        raw_body: bytes,
        signature: Optional[str],
        allowed_types: Optional[Iterable[str]] = None,
        request_id: Optional[str] = None,
    ) -> IngestionResult:
        """
        Verify, parse, deduplicate and apply one event.

        Redeliveries return the originally recorded outcome with
        duplicate=True. A handler failure rolls back the event record so the
        sender can retry.

        Raises:
            Unauthorized: bad or missing signature, nothing persisted
            ValidationError: malformed envelope or type not accepted here
            StorageFailure: the unit of work could not be committed
        """
        start_time = time.time()

        try:
            verify_signature(raw_body, signature, self.secret)
        except Unauthorized:
            webhook_rejection_counter.labels(reason="unauthorized").inc()
            raise

        try:
            event = parse_event(raw_body, allowed_types)
        except ValidationError:
            webhook_rejection_counter.labels(reason="invalid").inc()
            raise

        try:
            result = self._apply(event)
        except DuplicateEvent as dup:
            result = IngestionResult(
                event_id=dup.event_id,
                event_type=dup.event_type,
                correlation_key=dup.correlation_key,
                processed=dup.processed,
                duplicate=True,
            )
        except StorageFailure:
            webhook_rejection_counter.labels(reason="storage").inc()
            raise

        duration = time.time() - start_time
        webhook_processing_histogram.observe(duration)
        record_event(result.event_type, result.duplicate)
        log_event_ingested(
            event_id=str(result.event_id),
            event_type=result.event_type,
            correlation_key=result.correlation_key,
            duplicate=result.duplicate,
            duration_ms=duration * 1000,
            request_id=request_id,
        )
        return result

    def _apply(self, event: InboundEvent) -> IngestionResult:
        with atomic(self.db):
            self.guard.check(event)
            db_event = self.guard.record(event)
            event_id = db_event.id
            self.dispatcher.dispatch(event)
            self.guard.complete(db_event)

        return IngestionResult(
            event_id=event_id,
            event_type=event.event_type,
            correlation_key=event.correlation_key,
            processed=True,
        )

    def webhook_status(self) -> Dict[str, Any]:
        """Processing statistics, cached briefly"""
        cached = self.cache.get(WEBHOOK_STATUS_CACHE_KEY)
        if cached is not None:
            return cached

        status = WebhookEventRepository(self.db).get_status()
        self.cache.set(WEBHOOK_STATUS_CACHE_KEY, status, ttl=settings.webhook_status_cache_ttl)
        return status
