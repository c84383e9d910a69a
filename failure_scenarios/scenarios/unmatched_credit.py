"""
Unmatched credit scenario.

Delivers a USDC credit for an amount no pending payment expects and
checks that no order was touched.

Expected: 200 "OK" and an unchanged first page of orders.
"""
from __future__ import annotations

import httpx

from failure_scenarios import WEBHOOK_PATH, FailureResult, credit_payload, webhook_event

SCENARIO_NAME = "unmatched_credit"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute unmatched credit scenario."""
    event = webhook_event("BALANCE_ACTIVITY", credit_payload("999.99"))

    status_code: int | None = None
    before: list[tuple[str, str]] = []
    after: list[tuple[str, str]] = []
    error: str | None = None

    async def snapshot(client: httpx.AsyncClient) -> list[tuple[str, str]]:
        r = await client.get(f"{base_url}/merchant/orders?limit=100")
        return [(o["id"], o["status"]) for o in r.json()["_embedded"]["items"]]

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            before = await snapshot(client)
            r = await client.post(f"{base_url}{WEBHOOK_PATH}", json=event)
            status_code = r.status_code
            after = await snapshot(client)

    except Exception as exc:
        error = str(exc)

    correct = status_code == 200 and before == after

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="200 with no order mutation",
        actual_outcome=f"status={status_code}, orders_changed={before != after}",
        correct=correct,
        details={"event_id": event["eventId"]},
        error=error,
    )
