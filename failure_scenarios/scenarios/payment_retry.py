"""
Payment retry scenario.

Simulates a buyer client that starts a payment, assumes the response was
lost, then retries with the same idempotencyKey.

Expected: both attempts return the same paymentId and orderId.
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult

SCENARIO_NAME = "payment_retry"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute payment retry scenario against `base_url`."""
    idem_key = f"scenario-{uuid.uuid4()}"

    first: dict = {}
    second: dict = {}
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            products = (await client.get(f"{base_url}/products?limit=1")).json()
            product_id = products["_embedded"]["items"][0]["id"]
            cart = (
                await client.post(
                    f"{base_url}/carts",
                    json={"items": [{"productId": product_id, "quantity": 1}]},
                )
            ).json()
            body = {"cartId": cart["id"], "idempotencyKey": idem_key}

            r1 = await client.post(f"{base_url}/payments", json=body)
            if r1.status_code == 202:
                first = r1.json()

            # Simulate "response lost" and retry immediately
            r2 = await client.post(f"{base_url}/payments", json=body)
            if r2.status_code == 202:
                second = r2.json()

    except Exception as exc:
        error = str(exc)

    correct = (
        bool(first.get("paymentId"))
        and first.get("paymentId") == second.get("paymentId")
        and first.get("orderId") == second.get("orderId")
    )

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="both attempts return same paymentId and orderId",
        actual_outcome=f"first={first.get('paymentId')} second={second.get('paymentId')}",
        correct=correct,
        details={"idempotency_key": idem_key, "order_id": first.get("orderId")},
        error=error,
    )
