"""
Generic record store over async SQLAlchemy.

Each ORM model is a "collection".  Operations:
- get()                – fetch one record by primary key
- put()                – blind upsert by primary key
- conditional_insert() – insert only if no row violates a unique constraint
- update()             – partial update, optionally guarded by column preconditions
- delete()             – remove one record by primary key
- query_by_index()     – equality filter on indexed columns, paginated
- scan()               – unfiltered, paginated

Every call opens its own session and commits on its own: there are no
multi-row transactions.  Page tokens are opaque base64 cursors over the
primary key.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.shared.database import Base

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=Base)

DEFAULT_PAGE_SIZE = 20


class InvalidPageTokenError(ValueError):
    """Raised when a page token cannot be decoded into a cursor."""

    def __init__(self, message: str = "Invalid nextToken") -> None:
        super().__init__(message)


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_page_token: str | None = None


def encode_page_token(last_key: str) -> str:
    raw = json.dumps({"id": last_key}).encode()
    return base64.urlsafe_b64encode(raw).decode()


def decode_page_token(token: str) -> str:
    try:
        raw = base64.urlsafe_b64decode(token.encode())
        cursor = json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidPageTokenError() from exc
    if not isinstance(cursor, dict) or not isinstance(cursor.get("id"), str):
        raise InvalidPageTokenError()
    return cursor["id"]


def _condition(column, value: Any):
    if isinstance(value, (list, tuple, set, frozenset)):
        return column.in_(list(value))
    return column == value


class Store:
    """Record store backed by an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Single records
    # ------------------------------------------------------------------

    async def get(self, model: type[T], key: str) -> T | None:
        async with self._session_factory() as session:
            return await session.get(model, key)

    async def put(self, record: T) -> T:
        async with self._session_factory() as session:
            merged = await session.merge(record)
            await session.commit()
            return merged

    async def conditional_insert(self, record: T) -> bool:
        """Insert ``record``; return False if a unique constraint rejects it."""
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(
                    "conditional_insert_conflict",
                    collection=record.__tablename__,
                )
                return False
        return True

    async def update(
        self,
        model: type[T],
        key: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> T | None:
        """Apply ``fields`` to the row with primary key ``key``.

        ``expected`` maps column names to a required current value (or a
        collection of acceptable values).  Returns the updated record, or
        None when no row matched the key and preconditions.
        """
        pk = model.__mapper__.primary_key[0]
        stmt = update(model).where(pk == key).values(**fields)
        for name, value in (expected or {}).items():
            stmt = stmt.where(_condition(getattr(model, name), value))

        async with self._session_factory() as session:
            result = await session.execute(
                stmt, execution_options={"synchronize_session": False}
            )
            await session.commit()
            if result.rowcount == 0:
                return None
            return await session.get(model, key, populate_existing=True)

    async def delete(self, model: type[T], key: str) -> bool:
        pk = model.__mapper__.primary_key[0]
        async with self._session_factory() as session:
            result = await session.execute(delete(model).where(pk == key))
            await session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def query_by_index(
        self,
        model: type[T],
        conditions: dict[str, Any],
        limit: int = DEFAULT_PAGE_SIZE,
        page_token: str | None = None,
    ) -> Page[T]:
        """Return records whose columns equal ``conditions``, one page at a time."""
        pk = model.__mapper__.primary_key[0]
        stmt = select(model)
        for name, value in conditions.items():
            stmt = stmt.where(_condition(getattr(model, name), value))
        if page_token:
            stmt = stmt.where(pk > decode_page_token(page_token))
        stmt = stmt.order_by(pk).limit(limit + 1)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = list(result.scalars().all())

        next_token = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_token = encode_page_token(getattr(rows[-1], pk.key))
        return Page(items=rows, next_page_token=next_token)

    async def scan(
        self,
        model: type[T],
        limit: int = DEFAULT_PAGE_SIZE,
        page_token: str | None = None,
    ) -> Page[T]:
        return await self.query_by_index(model, {}, limit=limit, page_token=page_token)
