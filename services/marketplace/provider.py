"""
Mural payout-provider client.

Thin async wrapper over the provider's REST API using httpx.  Any non-2xx
answer is raised as ProviderError; transport errors propagate as raised
by httpx.  Nothing here retries.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol

import httpx
import structlog

from services.shared.config import MerchantBankDetails, Settings

logger = structlog.get_logger(__name__)

STABLECOIN = "USDC"


class ProviderError(Exception):
    """Non-2xx response from the payout provider."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Mural API {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class PayoutProvider(Protocol):
    async def get_account(self, account_id: str) -> dict: ...

    async def create_payout_request(self, body: dict) -> dict: ...

    async def execute_payout_request(self, payout_request_id: str) -> dict: ...

    async def get_payout_request(self, payout_request_id: str) -> dict: ...


def build_cop_payout(
    source_account_id: str,
    merchant: MerchantBankDetails,
    order_id: str,
    amount_usdc: Decimal,
) -> dict[str, Any]:
    """Payout request body converting ``amount_usdc`` to COP for the merchant."""
    return {
        "sourceAccountId": source_account_id,
        "memo": f"Order {order_id}",
        "payouts": [
            {
                "amount": {"tokenAmount": float(amount_usdc), "tokenSymbol": STABLECOIN},
                "payoutDetails": {
                    "type": "fiat",
                    "bankName": merchant.bank_name,
                    "bankAccountOwner": merchant.bank_account_owner,
                    "fiatAndRailDetails": {
                        "type": "cop",
                        "symbol": "COP",
                        "phoneNumber": merchant.phone_number,
                        "accountType": merchant.account_type,
                        "bankAccountNumber": merchant.bank_account_number,
                        "documentNumber": merchant.document_number,
                        "documentType": merchant.document_type,
                    },
                },
                "recipientInfo": {
                    "type": "individual",
                    "firstName": merchant.first_name,
                    "lastName": merchant.last_name,
                    "email": merchant.email,
                    "physicalAddress": {
                        "address1": "123 Main St",
                        "country": "CO",
                        "state": "CO",
                        "city": "Bogota",
                        "zip": "110111",
                    },
                },
            }
        ],
    }


class MuralClient:
    """HTTP client for the Mural API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        headers = {
            "Authorization": f"Bearer {settings.mural_api_key}",
            "Content-Type": "application/json",
        }
        if settings.mural_org_id:
            headers["on-behalf-of"] = settings.mural_org_id
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.mural_api_url,
            headers=headers,
            timeout=settings.mural_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict:
        response = await self._client.request(method, path, json=json, headers=headers)
        if response.is_error:
            logger.error(
                "mural_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ProviderError(response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def get_account(self, account_id: str) -> dict:
        return await self._request("GET", f"/api/accounts/{account_id}")

    async def create_payout_request(self, body: dict) -> dict:
        return await self._request("POST", "/api/payouts/payout", json=body)

    async def execute_payout_request(self, payout_request_id: str) -> dict:
        return await self._request(
            "POST",
            f"/api/payouts/payout/{payout_request_id}/execute",
            json={"exchangeRateToleranceMode": "FLEXIBLE"},
            headers={"transfer-api-key": self._settings.mural_transfer_api_key},
        )

    async def get_payout_request(self, payout_request_id: str) -> dict:
        return await self._request("GET", f"/api/payouts/payout/{payout_request_id}")
