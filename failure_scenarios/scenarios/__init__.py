"""Shared re-exports for scenario modules used by the runner."""
from __future__ import annotations

from failure_scenarios.scenarios import (
    concurrent_webhook,
    duplicate_webhook,
    invalid_page_token,
    malformed_webhook,
    payment_retry,
    unmatched_credit,
)

__all__ = [
    "concurrent_webhook",
    "duplicate_webhook",
    "invalid_page_token",
    "malformed_webhook",
    "payment_retry",
    "unmatched_credit",
]
