"""Pytest fixtures: in-memory SQLite store, fake payout provider, test client."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest
from fastapi.testclient import TestClient

from services.marketplace.main import create_app
from services.shared.config import Settings
from services.shared.database import create_engine, create_session_factory, init_db
from services.shared.store import Store

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeProvider:
    """In-memory stand-in for the Mural API.

    Set ``fail_create`` / ``fail_execute`` to an exception to make the
    corresponding call raise it.  ``create_delay`` stalls payout creation;
    ``on_execute`` is awaited inside execute before it answers, the way a
    fast provider webhook can arrive before the execute response.
    """

    def __init__(self) -> None:
        self.account = {
            "id": "acct-test",
            "accountDetails": {
                "walletDetails": {"walletAddress": "0xDEPOSIT", "blockchain": "POLYGON"}
            },
        }
        self.created: list[dict] = []
        self.executed: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_execute: Exception | None = None
        self.execute_status = "EXECUTED"
        self.create_delay = 0.0
        self.on_execute: Callable[[str], Awaitable[object]] | None = None

    async def get_account(self, account_id: str) -> dict:
        return self.account

    async def create_payout_request(self, body: dict) -> dict:
        if self.fail_create is not None:
            raise self.fail_create
        self.created.append(body)
        payout_request_id = f"payout-{len(self.created)}"
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        return {"id": payout_request_id, "status": "AWAITING_EXECUTION"}

    async def execute_payout_request(self, payout_request_id: str) -> dict:
        if self.fail_execute is not None:
            raise self.fail_execute
        self.executed.append(payout_request_id)
        if self.on_execute is not None:
            await self.on_execute(payout_request_id)
        return {
            "id": payout_request_id,
            "status": self.execute_status,
            "payouts": [
                {
                    "id": "payout-item-1",
                    "details": {
                        "type": "fiat",
                        "fiatAmount": {"fiatAmount": 140250.75, "fiatCurrencyCode": "COP"},
                    },
                }
            ],
        }

    async def get_payout_request(self, payout_request_id: str) -> dict:
        return {"id": payout_request_id, "status": self.execute_status}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        idempotency_backend="database",
        mural_api_url="https://mural.test",
        mural_api_key="test-key",
        mural_account_id="acct-test",
        mural_transfer_api_key="transfer-key",
        merchant_cop_bank_name="Bancolombia",
        merchant_cop_account_owner="Ana Maria Perez",
        merchant_cop_bank_account="0011223344",
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def session_factory():
    engine = create_engine(TEST_DATABASE_URL)
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> Store:
    return Store(session_factory)


@pytest.fixture
def client(settings, provider):
    """TestClient; the lifespan creates a fresh in-memory database."""
    with TestClient(create_app(settings, provider)) as c:
        yield c
