"""
Malformed webhook scenario.

Posts a webhook envelope without deliveryId, then the complete envelope.
The rejected delivery must not claim the event, so the complete one is
still processed.

Expected: 400 for the malformed delivery, then 200 "OK".
"""
from __future__ import annotations

import httpx

from failure_scenarios import WEBHOOK_PATH, FailureResult, webhook_event

SCENARIO_NAME = "malformed_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute malformed webhook scenario."""
    event = webhook_event("PAYOUT_REQUEST", {"payoutRequestId": "scenario-unknown-payout"})
    malformed = {k: v for k, v in event.items() if k != "deliveryId"}

    first: tuple[int, str] | None = None
    second: tuple[int, str] | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            r1 = await client.post(f"{base_url}{WEBHOOK_PATH}", json=malformed)
            first = (r1.status_code, r1.json().get("message", ""))
            r2 = await client.post(f"{base_url}{WEBHOOK_PATH}", json=event)
            second = (r2.status_code, r2.json().get("message", ""))

    except Exception as exc:
        error = str(exc)

    correct = first is not None and first[0] == 400 and second == (200, "OK")

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="400 for missing deliveryId, then 200 OK",
        actual_outcome=f"first={first} second={second}",
        correct=correct,
        details={"event_id": event["eventId"]},
        error=error,
    )
