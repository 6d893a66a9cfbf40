"""
Prometheus metrics for payment reconciliation monitoring.

Tracks:
- Payment initiations by outcome
- Gateway API calls and latency
- Webhook deliveries by outcome
- Ledger entries by type
- Staging sweeper activity
- Per-user lock contention
"""
from prometheus_client import Counter, Histogram

# Initiation metrics
payment_initiations_total = Counter(
    "payment_initiations_total",
    "Total payment initiation attempts",
    ["outcome"],  # pending, rejected_validation, rejected_gateway, timeout, unavailable
)

payment_initiation_duration_seconds = Histogram(
    "payment_initiation_duration_seconds",
    "Payment initiation duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 90.0),
)

# Gateway API metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],  # operation: initiate, query_status
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook deliveries by processing outcome",
    ["outcome"],
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Ledger metrics
ledger_entries_total = Counter(
    "ledger_entries_total",
    "Total ledger entries written",
    ["type"],  # credit, debit
)

ledger_duplicate_credits_total = Counter(
    "ledger_duplicate_credits_total",
    "Credits skipped because the reference was already applied",
)

# Sweeper metrics
staging_records_purged_total = Counter(
    "staging_records_purged_total",
    "Total expired staging records deleted",
)

staging_records_reverified_total = Counter(
    "staging_records_reverified_total",
    "Total stale PENDING records re-verified with the gateway",
    ["outcome"],
)

# Lock metrics
user_lock_wait_seconds = Histogram(
    "user_lock_wait_seconds",
    "Time spent waiting for a per-user ledger lock",
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_initiation(outcome: str, duration_seconds: float) -> None:
        """Record a payment initiation attempt."""
        payment_initiations_total.labels(outcome=outcome).inc()
        payment_initiation_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a payment gateway call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_webhook_event(outcome: str, duration_seconds: float) -> None:
        """Record webhook processing."""
        webhook_events_total.labels(outcome=outcome).inc()
        webhook_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_ledger_entry(entry_type: str) -> None:
        """Record a ledger entry."""
        ledger_entries_total.labels(type=entry_type).inc()

    @staticmethod
    def record_duplicate_credit() -> None:
        ledger_duplicate_credits_total.inc()

    @staticmethod
    def record_purged(count: int) -> None:
        """Record expired staging records deleted by a sweep."""
        if count > 0:
            staging_records_purged_total.inc(count)

    @staticmethod
    def record_reverified(outcome: str) -> None:
        staging_records_reverified_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_lock_wait(duration_seconds: float) -> None:
        user_lock_wait_seconds.observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
