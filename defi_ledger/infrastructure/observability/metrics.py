"""Prometheus metrics for monitoring settlement, scoring and lending"""

from prometheus_client import Counter, Histogram

# Ingestion metrics
webhook_event_counter = Counter(
    "defi_ledger_webhook_events_total",
    "Inbound webhook events by type and outcome",
    ["event_type", "outcome"],  # processed | duplicate
)

webhook_rejection_counter = Counter(
    "defi_ledger_webhook_rejections_total",
    "Inbound webhook events rejected before persistence",
    ["reason"],  # unauthorized | invalid | storage
)

webhook_processing_histogram = Histogram(
    "defi_ledger_webhook_processing_seconds",
    "Time to verify, record and apply an inbound event",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# Settlement metrics
savings_credit_counter = Counter(
    "defi_ledger_savings_credits_total",
    "Additive savings balance credits",
    ["source"],  # transaction_confirmed | payment_completed
)

# Scoring metrics
score_change_counter = Counter(
    "defi_ledger_score_changes_total",
    "Persisted credit score changes",
    ["action", "outcome"],  # applied | duplicate | ignored
)

# Lending metrics
loan_request_counter = Counter(
    "defi_ledger_loan_requests_total",
    "Loan requests by outcome",
    ["outcome"],  # created | insufficient_credit | insufficient_collateral | invalid | failed
)

loan_repayment_counter = Counter(
    "defi_ledger_loan_repayments_total",
    "Loan repayments by outcome",
    ["outcome"],  # repaid | duplicate | insufficient_payment | rejected
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_event(event_type: str, duplicate: bool) -> None:
    """Record ingestion outcome for dedup-rate monitoring"""
    outcome = "duplicate" if duplicate else "processed"
    webhook_event_counter.labels(event_type=event_type, outcome=outcome).inc()


def record_score_change(action: str, delta: int, duplicate: bool) -> None:
    """Record score change outcome; zero-delta actions count as ignored"""
    if duplicate:
        outcome = "duplicate"
    elif delta == 0:
        outcome = "ignored"
    else:
        outcome = "applied"
    score_change_counter.labels(action=action, outcome=outcome).inc()
