"""
Idempotency ledger: claim-once records keyed by an external event identity.

Two backends share the same contract:
- DatabaseLedger – conditional INSERT on the primary key (durable)
- RedisLedger    – SET NX EX (fast, expires on its own)

claim() succeeds for exactly one caller per live key.  Backend failures
propagate; they are never read as "not claimed".  Expired records are
pruned lazily by the next claim for the same key.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from sqlalchemy import delete

from services.shared.models import IdempotencyRecord, utcnow
from services.shared.store import Store

logger = structlog.get_logger(__name__)

REDIS_PREFIX = "claim:"


def webhook_idempotency_key(delivery_id: str, event_id: str) -> str:
    return f"webhook:{delivery_id}:{event_id}"


class IdempotencyLedger(Protocol):
    async def claim(self, key: str, ttl: int) -> bool: ...

    async def release(self, key: str) -> None: ...


class DatabaseLedger:
    """Ledger stored in the idempotency_records table."""

    def __init__(self, store: Store, session_factory) -> None:
        self._store = store
        self._db_factory = session_factory

    async def claim(self, key: str, ttl: int) -> bool:
        if await self._insert(key, ttl):
            return True
        # The existing row may be stale; prune it and try once more.
        if await self._prune_expired(key):
            logger.info("idempotency_expired_record_pruned", key=key)
            return await self._insert(key, ttl)
        return False

    async def release(self, key: str) -> None:
        await self._store.delete(IdempotencyRecord, key)
        logger.info("idempotency_claim_released", key=key)

    async def _insert(self, key: str, ttl: int) -> bool:
        now = utcnow()
        record = IdempotencyRecord(
            key=key,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        claimed = await self._store.conditional_insert(record)
        logger.debug("idempotency_claim_attempt", key=key, claimed=claimed)
        return claimed

    async def _prune_expired(self, key: str) -> bool:
        async with self._db_factory() as session:
            result = await session.execute(
                delete(IdempotencyRecord).where(
                    IdempotencyRecord.key == key,
                    IdempotencyRecord.expires_at < utcnow(),
                )
            )
            await session.commit()
            return result.rowcount > 0


class RedisLedger:
    """Ledger stored in Redis; the TTL is enforced by Redis itself."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def claim(self, key: str, ttl: int) -> bool:
        acquired = await self._redis.set(f"{REDIS_PREFIX}{key}", "1", nx=True, ex=ttl)
        logger.debug("idempotency_claim_attempt", key=key, claimed=bool(acquired))
        return bool(acquired)

    async def release(self, key: str) -> None:
        await self._redis.delete(f"{REDIS_PREFIX}{key}")
        logger.info("idempotency_claim_released", key=key)
