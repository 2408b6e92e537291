"""Prometheus metrics for transfer outcomes, refunds, lookups and gateway health"""

from prometheus_client import Counter, Histogram

# Transfer metrics
transfer_outcome_counter = Counter(
    "wallet_transfer_outcome_total",
    "Transfer attempts by terminal state",
    ["state", "category"],  # succeeded | failed_and_refunded | failed_refund_pending | failed_no_debit | debit_unconfirmed
)

refund_pending_counter = Counter(
    "wallet_transfer_refund_pending_total",
    "Refunds that failed inline and were queued for reconciliation",
)

refund_reconciliation_counter = Counter(
    "wallet_transfer_refund_reconciliation_total",
    "Reconciliation results for queued refunds",
    ["result"],  # refunded | failed | escalated
)

recipient_save_failures_counter = Counter(
    "wallet_transfer_recipient_save_failures_total",
    "Opt-in recipient saves that failed after a successful transfer",
)

flagged_transfer_counter = Counter(
    "wallet_transfer_flagged_total",
    "Transfers flagged for manual reconciliation",
    ["reason"],
)

service_charge_counter = Counter(
    "wallet_service_charge_total",
    "Paid service charges by compensation result",
    ["service", "result"],  # committed | not_withheld | compensated | compensation_failed
)

# Lookup metrics
recipient_lookup_counter = Counter(
    "recipient_lookup_total",
    "Recipient verification results",
    ["status"],
)

# Gateway metrics
gateway_latency_histogram = Histogram(
    "gateway_call_latency_seconds",
    "Wallet and bank-rail call latency",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
)

gateway_failures_counter = Counter(
    "gateway_failures_total",
    "Failed wallet and bank-rail calls",
    ["operation"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_outcome(state: str, category: str) -> None:
    """Record a terminal transfer outcome; refund-pending outcomes are also counted separately"""
    transfer_outcome_counter.labels(state=state, category=category).inc()
    if state == "failed_refund_pending":
        refund_pending_counter.inc()


def record_reconciliation(refunded: int, failed: int, escalated: int) -> None:
    refund_reconciliation_counter.labels(result="refunded").inc(refunded)
    refund_reconciliation_counter.labels(result="failed").inc(failed)
    refund_reconciliation_counter.labels(result="escalated").inc(escalated)
