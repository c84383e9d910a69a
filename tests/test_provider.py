"""Mural client request shape and error handling."""
import json
from decimal import Decimal

import httpx
import pytest

from services.marketplace.provider import MuralClient, ProviderError, build_cop_payout


def _client(settings, handler) -> MuralClient:
    http = httpx.AsyncClient(
        base_url=settings.mural_api_url,
        headers={"Authorization": f"Bearer {settings.mural_api_key}"},
        transport=httpx.MockTransport(handler),
    )
    return MuralClient(settings, http_client=http)


async def test_get_account(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"id": "acct-test"})

    client = _client(settings, handler)
    assert await client.get_account("acct-test") == {"id": "acct-test"}
    assert seen == {
        "url": "https://mural.test/api/accounts/acct-test",
        "auth": "Bearer test-key",
    }
    await client.aclose()


async def test_execute_sends_transfer_key_and_tolerance(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["transfer_key"] = request.headers.get("transfer-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "payout-1", "status": "EXECUTED"})

    client = _client(settings, handler)
    result = await client.execute_payout_request("payout-1")

    assert result["status"] == "EXECUTED"
    assert seen == {
        "path": "/api/payouts/payout/payout-1/execute",
        "transfer_key": "transfer-key",
        "body": {"exchangeRateToleranceMode": "FLEXIBLE"},
    }
    await client.aclose()


async def test_error_status_raises_provider_error(settings):
    client = _client(settings, lambda request: httpx.Response(400, text="bad payout"))
    with pytest.raises(ProviderError) as info:
        await client.create_payout_request({"payouts": []})
    assert info.value.status_code == 400
    assert "bad payout" in str(info.value)
    await client.aclose()


async def test_empty_response_is_empty_dict(settings):
    client = _client(settings, lambda request: httpx.Response(204))
    assert await client.get_payout_request("payout-1") == {}
    await client.aclose()


def test_default_client_headers(settings):
    settings.mural_org_id = "org-1"
    client = MuralClient(settings)
    assert client._client.headers["on-behalf-of"] == "org-1"
    assert client._client.headers["authorization"] == "Bearer test-key"


def test_build_cop_payout(settings):
    body = build_cop_payout(
        "acct-test", settings.merchant_bank_details(), "order-1", Decimal("35.5")
    )
    assert body["memo"] == "Order order-1"
    payout = body["payouts"][0]
    details = payout["payoutDetails"]
    assert details["bankName"] == "Bancolombia"
    assert details["fiatAndRailDetails"]["symbol"] == "COP"
    assert details["fiatAndRailDetails"]["bankAccountNumber"] == "0011223344"
    assert payout["recipientInfo"]["firstName"] == "Ana"
