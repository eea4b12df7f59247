"""Prometheus metrics for loan lifecycle and fund movement monitoring"""

from prometheus_client import Counter, Histogram

# Lifecycle metrics
application_counter = Counter(
    "lending_applications_created_total",
    "Loan applications created",
)

offer_counter = Counter(
    "lending_offers_created_total",
    "Loan offers created",
)

offer_acceptance_conflicts_counter = Counter(
    "lending_offer_acceptance_conflicts_total",
    "Offer acceptances rejected because the offer was no longer Open",
)

# Fund movement metrics
fund_movement_counter = Counter(
    "lending_fund_movement_total",
    "Disbursement and settlement attempts by outcome",
    ["kind", "outcome"],  # kind: disbursement | settlement | transfer; outcome: completed | transfer_failed | ledger_pending
)

ledger_write_failures_counter = Counter(
    "lending_ledger_write_failures_total",
    "Ledger writes that failed after funds had moved",
    ["kind"],
)

balance_refresh_failures_counter = Counter(
    "lending_balance_refresh_failures_total",
    "Failed wallet balance refreshes from the Settlement Network",
)

# Settlement Network metrics
settlement_network_latency_histogram = Histogram(
    "settlement_network_latency_seconds",
    "Settlement Network call latency",
    ["call"],  # transfer | balance
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

settlement_network_failures_counter = Counter(
    "settlement_network_failures_total",
    "Failed Settlement Network calls",
    ["call"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_fund_movement(kind: str, outcome: str) -> None:
    """Count a disbursement/settlement attempt by its outcome"""
    fund_movement_counter.labels(kind=kind, outcome=outcome).inc()
