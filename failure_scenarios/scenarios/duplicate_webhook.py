"""
Duplicate webhook scenario.

Delivers the same balance-credited webhook (same deliveryId + eventId)
twice without waiting between calls.  The credit amount matches no
pending payment, so the scenario never moves real orders.

Expected: first delivery "OK", second "Already processed", both 200.
"""
from __future__ import annotations

import random

import httpx

from failure_scenarios import WEBHOOK_PATH, FailureResult, credit_payload, webhook_event

SCENARIO_NAME = "duplicate_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute duplicate webhook scenario."""
    amount = f"{random.randint(900000, 999999)}.{random.randint(10, 99)}"
    event = webhook_event("BALANCE_ACTIVITY", credit_payload(amount))

    statuses: list[int] = []
    messages: list[str] = []
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            for _ in range(2):
                r = await client.post(f"{base_url}{WEBHOOK_PATH}", json=event)
                statuses.append(r.status_code)
                messages.append(r.json().get("message", ""))

    except Exception as exc:
        error = str(exc)

    correct = statuses == [200, 200] and messages == ["OK", "Already processed"]

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="second delivery answers 'Already processed'",
        actual_outcome=f"statuses={statuses} messages={messages}",
        correct=correct,
        details={"event_id": event["eventId"], "delivery_id": event["deliveryId"]},
        error=error,
    )
