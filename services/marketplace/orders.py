"""
Order state machine.

    pending_payment -> paid -> converting -> withdrawal_pending -> withdrawal_completed
                                   |                |
                                   +----------------+--> withdrawal_failed

Each transition is a single conditional UPDATE: the row changes only if
its current status is a legal predecessor of the target.  Repeating a
transition the order has already made only fills auxiliary columns still
unset (never changes the status), so webhook redeliveries and resumed
chains can call update_status() safely.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from services.shared.models import Order, OrderStatus, utcnow
from services.shared.store import Page, Store

logger = structlog.get_logger(__name__)

PREDECESSORS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.paid: frozenset({OrderStatus.pending_payment}),
    OrderStatus.converting: frozenset({OrderStatus.paid}),
    OrderStatus.withdrawal_pending: frozenset({OrderStatus.converting}),
    OrderStatus.withdrawal_completed: frozenset(
        {OrderStatus.converting, OrderStatus.withdrawal_pending}
    ),
    OrderStatus.withdrawal_failed: frozenset(
        {OrderStatus.converting, OrderStatus.withdrawal_pending}
    ),
}


class OrderTransitionError(Exception):
    """Raised when a transition would move an order backwards or out of a terminal state."""

    def __init__(self, order_id: str, current: str, target: str) -> None:
        super().__init__(f"Order {order_id} cannot move from {current} to {target}")
        self.order_id = order_id
        self.current = current
        self.target = target


class OrderService:
    def __init__(self, store: Store) -> None:
        self._store = store

    async def create_order(
        self,
        order_id: str,
        cart_id: str,
        payment_id: str,
        total_usdc: Decimal,
    ) -> Order:
        """Insert a new order in pending_payment.  An existing order is returned untouched."""
        now = utcnow()
        order = Order(
            id=order_id,
            cart_id=cart_id,
            payment_id=payment_id,
            status=OrderStatus.pending_payment.value,
            total_usdc=total_usdc,
            created_at=now,
            updated_at=now,
        )
        if not await self._store.conditional_insert(order):
            logger.info("order_already_exists", order_id=order_id)
            existing = await self._store.get(Order, order_id)
            return existing or order
        logger.info("order_created", order_id=order_id, total_usdc=str(total_usdc))
        return order

    async def get_order(self, order_id: str) -> Order | None:
        return await self._store.get(Order, order_id)

    async def list_orders(self, limit: int = 20, page_token: str | None = None) -> Page[Order]:
        return await self._store.scan(Order, limit=limit, page_token=page_token)

    async def list_orders_by_status(
        self, status: OrderStatus, limit: int = 20, page_token: str | None = None
    ) -> Page[Order]:
        return await self._store.query_by_index(
            Order, {"status": status.value}, limit=limit, page_token=page_token
        )

    async def update_status(
        self, order_id: str, status: OrderStatus, **fields: Any
    ) -> Order | None:
        """Move ``order_id`` to ``status`` and set any auxiliary ``fields``.

        Returns the updated order, or None if it does not exist.  An order
        already in ``status`` keeps it; only the non-null ``fields`` it lacks
        are written.
        """
        values = {"status": status.value, "updated_at": utcnow(), **fields}
        allowed = PREDECESSORS.get(status, frozenset())
        updated = await self._store.update(
            Order,
            order_id,
            values,
            expected={"status": [s.value for s in allowed]},
        )
        if updated is not None:
            logger.info("order_status_updated", order_id=order_id, status=status.value)
            return updated

        current = await self._store.get(Order, order_id)
        if current is None:
            logger.warning("order_not_found", order_id=order_id, status=status.value)
            return None
        if current.status == status.value:
            logger.info("order_status_unchanged", order_id=order_id, status=status.value)
            return await self._fill_fields(current, fields)
        raise OrderTransitionError(order_id, current.status, status.value)

    async def _fill_fields(self, order: Order, fields: dict[str, Any]) -> Order:
        """Fill the unset columns of an order already in its target status."""
        values = {
            k: v for k, v in fields.items() if v is not None and getattr(order, k) is None
        }
        if not values:
            return order
        updated = await self._store.update(
            Order,
            order.id,
            {**values, "updated_at": utcnow()},
            expected={"status": order.status},
        )
        if updated is None:
            return await self._store.get(Order, order.id) or order
        logger.info("order_fields_filled", order_id=order.id, fields=sorted(values))
        return updated
