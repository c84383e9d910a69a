"""
Payments: initiation, lookup and webhook-driven matching.

A payment is the stablecoin credit an order expects.  The provider's
balance webhook does not carry our payment id, only the asset and amount
credited to the shared deposit account, so find_pending_payment_by_amount()
matches on exact amount among pending payments.
"""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal, InvalidOperation

import structlog

from services.shared.config import Settings
from services.shared.models import (
    IdempotencyRecord,
    Payment,
    PaymentStatus,
    new_id,
    utcnow,
)
from services.shared.schemas import PaymentResponse
from services.shared.store import Store

from .provider import PayoutProvider

logger = structlog.get_logger(__name__)

DEFAULT_BLOCKCHAIN = "POLYGON"


class PaymentSetupError(Exception):
    """The provider account cannot receive deposits."""


def payment_idempotency_key(idempotency_key: str) -> str:
    return f"payment:{idempotency_key}"


def to_usdc(value: object) -> Decimal | None:
    """Exact decimal for a provider amount (JSON number or string); None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


class PaymentService:
    def __init__(self, store: Store, provider: PayoutProvider, settings: Settings) -> None:
        self._store = store
        self._provider = provider
        self._settings = settings

    async def create_payment(
        self,
        order_id: str,
        expected_amount_usdc: Decimal,
        idempotency_key: str,
    ) -> tuple[Payment, bool]:
        """Create the pending payment for ``order_id``.

        Returns ``(payment, created)``.  A repeated ``idempotency_key``
        returns the payment stored by the first call with ``created=False``.
        """
        existing = await self.get_payment_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info(
                "payment_idempotent_replay",
                payment_id=existing.id,
                idempotency_key=idempotency_key,
            )
            return existing, False

        account = await self._provider.get_account(self._settings.mural_account_id)
        wallet = (account.get("accountDetails") or {}).get("walletDetails") or {}
        if not wallet.get("walletAddress"):
            raise PaymentSetupError(
                "Mural account has no wallet address - ensure account is ACTIVE "
                "and has blockchain payin"
            )

        now = utcnow()
        payment = Payment(
            id=new_id(),
            order_id=order_id,
            expected_amount_usdc=expected_amount_usdc,
            destination_address=wallet["walletAddress"],
            blockchain=wallet.get("blockchain") or DEFAULT_BLOCKCHAIN,
            memo=order_id,
            status=PaymentStatus.pending.value,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )
        if not await self._store.conditional_insert(payment):
            # A concurrent request with the same key won the insert.
            winner = await self._find_by_idempotency_column(idempotency_key)
            if winner is None:
                raise RuntimeError(f"payment insert conflict without winner: {idempotency_key}")
            return winner, False

        await self._store.put(
            IdempotencyRecord(
                key=payment_idempotency_key(idempotency_key),
                response=PaymentResponse.model_validate(payment).model_dump(
                    mode="json", by_alias=True
                ),
                created_at=now,
                expires_at=now
                + timedelta(seconds=self._settings.payment_idempotency_ttl_seconds),
            )
        )
        logger.info(
            "payment_created",
            payment_id=payment.id,
            order_id=order_id,
            expected_amount_usdc=str(expected_amount_usdc),
        )
        return payment, True

    async def get_payment(self, payment_id: str) -> Payment | None:
        return await self._store.get(Payment, payment_id)

    async def get_payment_by_order_id(self, order_id: str) -> Payment | None:
        page = await self._store.query_by_index(Payment, {"order_id": order_id}, limit=1)
        return page.items[0] if page.items else None

    async def get_payment_by_idempotency_key(self, idempotency_key: str) -> Payment | None:
        record = await self._store.get(
            IdempotencyRecord, payment_idempotency_key(idempotency_key)
        )
        if record is not None and record.response:
            payment = await self._store.get(Payment, record.response["id"])
            if payment is not None:
                return payment
        return await self._find_by_idempotency_column(idempotency_key)

    async def _find_by_idempotency_column(self, idempotency_key: str) -> Payment | None:
        page = await self._store.query_by_index(
            Payment, {"idempotency_key": idempotency_key}, limit=1
        )
        return page.items[0] if page.items else None

    async def find_pending_payment_by_amount(self, amount_usdc: Decimal) -> Payment | None:
        """First pending payment expecting exactly ``amount_usdc``, or None."""
        page = await self._store.query_by_index(
            Payment,
            {"status": PaymentStatus.pending.value, "expected_amount_usdc": amount_usdc},
            limit=10,
        )
        if len(page.items) > 1:
            logger.warning(
                "ambiguous_payment_amount",
                amount_usdc=str(amount_usdc),
                candidates=len(page.items),
            )
        return page.items[0] if page.items else None

    async def find_payment_by_transaction_id(self, mural_transaction_id: str) -> Payment | None:
        page = await self._store.query_by_index(
            Payment, {"mural_transaction_id": mural_transaction_id}, limit=1
        )
        return page.items[0] if page.items else None

    async def mark_payment_received(
        self, payment_id: str, mural_transaction_id: str
    ) -> Payment | None:
        """pending -> received.  Returns None if the payment is no longer pending."""
        payment = await self._store.update(
            Payment,
            payment_id,
            {
                "status": PaymentStatus.received.value,
                "mural_transaction_id": mural_transaction_id,
                "updated_at": utcnow(),
            },
            expected={"status": PaymentStatus.pending.value},
        )
        if payment is not None:
            logger.info(
                "payment_received",
                payment_id=payment_id,
                mural_transaction_id=mural_transaction_id,
            )
        return payment
