"""Idempotency ledger backends."""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.marketplace.ledger import (
    DatabaseLedger,
    RedisLedger,
    webhook_idempotency_key,
)
from services.shared.models import IdempotencyRecord, utcnow


@pytest.fixture
def ledger(store, session_factory) -> DatabaseLedger:
    return DatabaseLedger(store, session_factory)


def test_webhook_key_combines_delivery_and_event():
    assert webhook_idempotency_key("del_1", "evt_1") == "webhook:del_1:evt_1"


async def test_first_claim_wins(ledger):
    assert await ledger.claim("webhook:d:e", 60) is True
    assert await ledger.claim("webhook:d:e", 60) is False
    assert await ledger.claim("webhook:d:other", 60) is True


async def test_expired_record_can_be_claimed_again(ledger, store):
    past = utcnow() - timedelta(days=8)
    await store.put(
        IdempotencyRecord(
            key="webhook:old:evt",
            created_at=past,
            expires_at=past + timedelta(days=7),
        )
    )

    assert await ledger.claim("webhook:old:evt", 60) is True
    record = await store.get(IdempotencyRecord, "webhook:old:evt")
    assert record.expires_at.replace(tzinfo=None) > utcnow().replace(tzinfo=None)


async def test_release_makes_key_claimable(ledger):
    assert await ledger.claim("k", 60) is True
    await ledger.release("k")
    assert await ledger.claim("k", 60) is True


async def test_redis_claim_uses_set_nx_with_ttl():
    redis = AsyncMock()
    redis.set.return_value = True
    ledger = RedisLedger(redis)

    assert await ledger.claim("webhook:d:e", 604800) is True
    redis.set.assert_awaited_once_with("claim:webhook:d:e", "1", nx=True, ex=604800)


async def test_redis_claim_lost_when_key_exists():
    redis = AsyncMock()
    redis.set.return_value = None
    assert await RedisLedger(redis).claim("webhook:d:e", 60) is False


async def test_redis_errors_propagate():
    redis = AsyncMock()
    redis.set.side_effect = ConnectionError("redis down")
    with pytest.raises(ConnectionError):
        await RedisLedger(redis).claim("webhook:d:e", 60)


async def test_redis_release_deletes_key():
    redis = AsyncMock()
    await RedisLedger(redis).release("webhook:d:e")
    redis.delete.assert_awaited_once_with("claim:webhook:d:e")
