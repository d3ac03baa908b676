"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger
from defi_ledger.config import settings
from defi_ledger.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_event_ingested(
    event_id: str,
    event_type: str,
    correlation_key: str,
    duplicate: bool,
    duration_ms: float,
    request_id: Optional[str] = None,
) -> None:
    """Log structured ingestion outcome"""
    logging.info(
        "Webhook event ingested",
        extra={
            "request_id": request_id,
            "step": "event_ingested",
            "event_id": event_id,
            "event_type": event_type,
            "correlation_key": correlation_key,
            "outcome": "duplicate" if duplicate else "processed",
            "duration_ms": duration_ms,
        },
    )


def log_score_change(
    user_id: int,
    action: str,
    old_score: int,
    new_score: int,
    correlation_key: Optional[str],
) -> None:
    """Log a score delta applied in the current unit of work"""
    logging.info(
        "Credit score updated",
        extra={
            "step": "score_change",
            "user_id": user_id,
            "action": action,
            "old_score": old_score,
            "new_score": new_score,
            "score_change": new_score - old_score,
            "correlation_key": correlation_key,
        },
    )


def log_loan_outcome(
    request_id: str,
    user_id: int,
    step: str,
    outcome: str,
    duration_ms: float,
    **fields: Any,
) -> None:
    """Log structured loan request / repayment outcome for analysis"""
    logging.info(
        "Loan operation completed",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "step": step,
            "outcome": outcome,
            "duration_ms": duration_ms,
            **fields,
        },
    )
