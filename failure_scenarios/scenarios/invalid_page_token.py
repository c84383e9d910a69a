"""
Invalid page token scenario.

Requests a page of orders with a corrupt nextToken.

Expected: 400 "Invalid nextToken", never the first page.
"""
from __future__ import annotations

import httpx

from failure_scenarios import FailureResult

SCENARIO_NAME = "invalid_page_token"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute invalid page token scenario."""
    status_code: int | None = None
    message: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            r = await client.get(
                f"{base_url}/merchant/orders", params={"nextToken": "%%not-a-cursor%%"}
            )
            status_code = r.status_code
            message = r.json().get("message")

    except Exception as exc:
        error = str(exc)

    correct = status_code == 400 and message == "Invalid nextToken"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="400 Invalid nextToken",
        actual_outcome=f"status={status_code} message={message}",
        correct=correct,
        error=error,
    )
