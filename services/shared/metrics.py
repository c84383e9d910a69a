"""Prometheus counters shared by the marketplace components."""
from __future__ import annotations

from prometheus_client import Counter

WEBHOOK_EVENTS = Counter(
    "marketplace_webhook_events_total",
    "Provider webhook deliveries by category and outcome",
    ["category", "outcome"],
)

WITHDRAWALS = Counter(
    "marketplace_withdrawals_total",
    "Withdrawal orchestration outcomes",
    ["status"],
)

PAYMENT_MATCHES = Counter(
    "marketplace_payments_matched_total",
    "Balance credits matched (or not) to a pending payment",
    ["outcome"],
)
