"""
Concurrent identical webhook scenario.

Fires 10 concurrent deliveries of one event using asyncio.gather and
counts how many were processed rather than acknowledged as duplicates.

Expected: exactly one "OK"; the other nine "Already processed".
"""
from __future__ import annotations

import asyncio
import random

import httpx

from failure_scenarios import WEBHOOK_PATH, FailureResult, credit_payload, webhook_event

SCENARIO_NAME = "concurrent_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute concurrent identical webhook scenario."""
    amount = f"{random.randint(900000, 999999)}.{random.randint(10, 99)}"
    event = webhook_event("BALANCE_ACTIVITY", credit_payload(amount))

    messages: list[str] = []
    status_codes: list[int] = []
    error: str | None = None

    async def send(client: httpx.AsyncClient) -> None:
        r = await client.post(f"{base_url}{WEBHOOK_PATH}", json=event)
        status_codes.append(r.status_code)
        if r.status_code == 200:
            messages.append(r.json().get("message", ""))

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            await asyncio.gather(*[send(client) for _ in range(10)])
    except Exception as exc:
        error = str(exc)

    processed = messages.count("OK")
    correct = processed == 1 and len(messages) == 10

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="exactly 1 of 10 concurrent deliveries processed",
        actual_outcome=f"processed={processed}, acknowledged={len(messages)}",
        correct=correct,
        details={"event_id": event["eventId"], "status_codes": status_codes},
        error=error,
    )
