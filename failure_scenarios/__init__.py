"""
Failure scenarios package.

Provides the FailureResult dataclass and the webhook envelope builder used
by all scenario modules.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

WEBHOOK_PATH = "/webhooks/mural"


@dataclass
class FailureResult:
    """Result of a single failure scenario run against a deployment."""

    scenario_name: str
    service: str
    expected_outcome: str
    actual_outcome: str
    correct: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


def webhook_event(category: str, payload: Any, **overrides: Any) -> dict[str, Any]:
    """Provider webhook envelope with fresh event and delivery ids."""
    event = {
        "eventId": f"evt_{uuid.uuid4().hex[:12]}",
        "deliveryId": f"del_{uuid.uuid4().hex[:12]}",
        "attemptNumber": 1,
        "eventCategory": category,
        "occurredAt": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    event.update(overrides)
    return event


def credit_payload(amount: str, transaction_id: str | None = None) -> dict[str, Any]:
    return {
        "type": "account_credited",
        "transactionId": transaction_id or f"tx_{uuid.uuid4().hex[:12]}",
        "tokenAmount": {"tokenAmount": float(amount), "tokenSymbol": "USDC"},
    }
