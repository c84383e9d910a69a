"""
Webhook dispatcher for payout-provider events.

handle() flow:
  1. Claim "webhook:{deliveryId}:{eventId}" in the idempotency ledger.
     - Already claimed -> "Already processed", nothing else happens.
  2. Route by event category:
     - balance activity -> match the credit to a pending payment, mark it
       received, move the order paid -> converting, run the withdrawal
       orchestrator, then withdrawal_pending (or withdrawal_failed).
     - payout request   -> find the withdrawal by payoutRequestId and apply
       terminal statuses to the withdrawal and its order.
  3. If routing raises, release the claim and re-raise so the provider's
     retry of this delivery is processed again.  Every downstream step is
     safe to repeat: payments are matched only while pending, order
     transitions are conditional, and withdrawals are unique per order.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog

from services.shared.config import Settings
from services.shared.metrics import PAYMENT_MATCHES, WEBHOOK_EVENTS
from services.shared.models import (
    OrderStatus,
    Payment,
    Withdrawal,
    WithdrawalStatus,
    utcnow,
)
from services.shared.schemas import WebhookEvent

from .ledger import IdempotencyLedger, webhook_idempotency_key
from .orders import OrderService, OrderTransitionError
from .payments import PaymentService, to_usdc
from .provider import STABLECOIN
from .withdrawals import OPEN_STATUSES, WithdrawalService, failure_reason

logger = structlog.get_logger(__name__)

ALREADY_PROCESSED = "Already processed"
PROCESSED = "OK"

BALANCE_CATEGORIES = frozenset({"BALANCE_ACTIVITY", "MURAL_ACCOUNT_BALANCE_ACTIVITY"})
PAYOUT_CATEGORY = "PAYOUT_REQUEST"

COMPLETED_PAYOUT_STATUSES = frozenset({"completed", "executed"})
FAILED_PAYOUT_STATUSES = frozenset({"refunded", "refundInProgress", "failed"})


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountCredit:
    amount_usdc: Decimal
    transaction_id: str | None


@dataclass(frozen=True)
class PayoutStatusUpdate:
    payout_request_id: str
    status_type: str | None


def _get(data: Any, *path: Any) -> Any:
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[step] if isinstance(step, int) else data.get(step)
    return data


def _is_account_credited(kind: Any) -> bool:
    # Accepts "account_credited" as well as "AccountCredited".
    return isinstance(kind, str) and kind.replace("_", "").lower() == "accountcredited"


def parse_account_credit(payload: Any) -> AccountCredit | None:
    """USDC deposit credited to the account, or None for any other balance activity."""
    if not isinstance(payload, dict) or not _is_account_credited(payload.get("type")):
        return None
    token = payload.get("tokenAmount") or payload.get("amount")
    if not isinstance(token, dict) or token.get("tokenSymbol") != STABLECOIN:
        return None
    amount = to_usdc(token.get("tokenAmount"))
    if amount is None or amount <= 0:
        return None
    transaction_id = payload.get("transactionId")
    return AccountCredit(
        amount_usdc=amount,
        transaction_id=str(transaction_id) if transaction_id else None,
    )


def parse_payout_status(payload: Any) -> PayoutStatusUpdate | None:
    """Normalise both payout payload shapes to (payoutRequestId, status type)."""
    payout_request_id = _get(payload, "payoutRequestId")
    if not payout_request_id:
        return None
    status_type = (
        _get(payload, "statusChangeDetails", "currentStatus", "type")
        or _get(payload, "recipientsPayoutDetails", 0, "fiatPayoutStatus", "type")
        or _get(payload, "status")
    )
    return PayoutStatusUpdate(
        payout_request_id=str(payout_request_id),
        status_type=str(status_type) if status_type else None,
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class WebhookDispatcher:
    def __init__(
        self,
        ledger: IdempotencyLedger,
        payments: PaymentService,
        orders: OrderService,
        withdrawals: WithdrawalService,
        settings: Settings,
    ) -> None:
        self._ledger = ledger
        self._payments = payments
        self._orders = orders
        self._withdrawals = withdrawals
        self._ttl = settings.webhook_idempotency_ttl_seconds

    async def handle(self, event: WebhookEvent) -> str:
        """Process one delivery at most once.  Returns the acknowledgement message."""
        log = logger.bind(
            event_id=event.event_id,
            delivery_id=event.delivery_id,
            event_category=event.event_category,
        )
        log.info("webhook_received", attempt_number=event.attempt_number)

        key = webhook_idempotency_key(event.delivery_id, event.event_id)
        if not await self._ledger.claim(key, self._ttl):
            WEBHOOK_EVENTS.labels(category=event.event_category, outcome="duplicate").inc()
            log.info("webhook_already_processed", idempotency_key=key)
            return ALREADY_PROCESSED

        try:
            await self.dispatch(event)
        except Exception as exc:
            WEBHOOK_EVENTS.labels(category=event.event_category, outcome="failed").inc()
            log.error("webhook_processing_failed", error=str(exc))
            await self._release(key)
            raise

        WEBHOOK_EVENTS.labels(category=event.event_category, outcome="processed").inc()
        log.info("webhook_processed")
        return PROCESSED

    async def _release(self, key: str) -> None:
        try:
            await self._ledger.release(key)
        except Exception as exc:
            logger.error("idempotency_release_failed", idempotency_key=key, error=str(exc))

    async def dispatch(self, event: WebhookEvent) -> None:
        if event.event_category in BALANCE_CATEGORIES:
            await self.handle_account_credit(event.payload, event.event_id)
        elif event.event_category == PAYOUT_CATEGORY:
            await self.handle_payout_status(event.payload, event.event_id)
        else:
            logger.info(
                "webhook_ignored_unsupported_category",
                event_category=event.event_category,
                event_id=event.event_id,
            )

    # ------------------------------------------------------------------
    # Balance activity
    # ------------------------------------------------------------------

    async def handle_account_credit(self, payload: Any, event_id: str) -> None:
        credit = parse_account_credit(payload)
        if credit is None:
            logger.info("balance_activity_ignored", event_id=event_id)
            return

        if credit.transaction_id:
            linked = await self._payments.find_payment_by_transaction_id(credit.transaction_id)
            if linked is not None:
                logger.info(
                    "payment_chain_resumed",
                    payment_id=linked.id,
                    order_id=linked.order_id,
                    event_id=event_id,
                )
                await self._settle(linked, credit.transaction_id)
                return

        payment = await self._payments.find_pending_payment_by_amount(credit.amount_usdc)
        if payment is None:
            PAYMENT_MATCHES.labels(outcome="unmatched").inc()
            logger.warning(
                "no_pending_payment_for_amount",
                amount_usdc=str(credit.amount_usdc),
                event_id=event_id,
            )
            return

        PAYMENT_MATCHES.labels(outcome="matched").inc()
        received = await self._payments.mark_payment_received(
            payment.id, credit.transaction_id or ""
        )
        if received is None:
            logger.info("payment_no_longer_pending", payment_id=payment.id, event_id=event_id)
            return
        await self._settle(received, credit.transaction_id)

    async def _settle(self, payment: Payment, transaction_id: str | None) -> None:
        """Drive the order of a received payment as far as it can go."""
        order = await self._orders.get_order(payment.order_id)
        if order is None:
            logger.warning("order_missing_for_payment", payment_id=payment.id)
            return

        if order.status == OrderStatus.pending_payment.value:
            order = await self._orders.update_status(
                order.id,
                OrderStatus.paid,
                paid_at=utcnow(),
                mural_transaction_id=transaction_id,
            )
            if order is None:
                return

        if order.status in (OrderStatus.paid.value, OrderStatus.converting.value):
            await self._convert_and_withdraw(payment)
        else:
            logger.info("order_already_settled", order_id=order.id, status=order.status)

    async def _convert_and_withdraw(self, payment: Payment) -> None:
        order_id = payment.order_id
        logger.info("conversion_started", order_id=order_id, payment_id=payment.id)
        await self._orders.update_status(order_id, OrderStatus.converting)

        try:
            withdrawal = await self._withdrawals.create_and_execute_withdrawal(
                order_id,
                payment.id,
                payment.expected_amount_usdc,
                f"withdrawal:{payment.idempotency_key}",
            )
        except Exception as exc:
            # The provider is told the event succeeded; the order records the failure.
            logger.error("order_withdrawal_failed", order_id=order_id, error=str(exc))
            await self._orders.update_status(
                order_id, OrderStatus.withdrawal_failed, failure_reason=failure_reason(exc)
            )
            return

        if withdrawal.payout_request_id is None and withdrawal.status == (
            WithdrawalStatus.pending.value
        ):
            # Another delivery created this withdrawal and is still creating
            # its payout request; that delivery advances the order.
            logger.info(
                "withdrawal_in_progress",
                order_id=order_id,
                withdrawal_id=withdrawal.id,
            )
            return

        try:
            await self._follow_withdrawal(order_id, withdrawal)
        except OrderTransitionError as exc:
            # A payout webhook settled the order while the payout was executing.
            logger.info(
                "order_already_settled",
                order_id=order_id,
                status=exc.current,
                withdrawal_status=withdrawal.status,
            )

    async def _follow_withdrawal(self, order_id: str, withdrawal: Withdrawal) -> None:
        if withdrawal.status == WithdrawalStatus.completed.value:
            await self._orders.update_status(order_id, OrderStatus.withdrawal_completed)
        elif withdrawal.status in (
            WithdrawalStatus.failed.value,
            WithdrawalStatus.refunded.value,
        ):
            await self._orders.update_status(
                order_id,
                OrderStatus.withdrawal_failed,
                failure_reason=withdrawal.failure_reason,
            )
        else:
            await self._orders.update_status(
                order_id,
                OrderStatus.withdrawal_pending,
                payout_request_id=withdrawal.payout_request_id,
                withdrawal_id=withdrawal.id,
            )
            logger.info(
                "withdrawal_pending",
                order_id=order_id,
                withdrawal_id=withdrawal.id,
                payout_request_id=withdrawal.payout_request_id,
            )

    # ------------------------------------------------------------------
    # Payout status
    # ------------------------------------------------------------------

    async def handle_payout_status(self, payload: Any, event_id: str) -> None:
        update = parse_payout_status(payload)
        if update is None:
            logger.info("payout_event_ignored_no_payout_request_id", event_id=event_id)
            return

        withdrawal = await self._withdrawals.find_withdrawal_by_payout_request_id(
            update.payout_request_id
        )
        if withdrawal is None:
            logger.warning(
                "no_withdrawal_for_payout_request",
                payout_request_id=update.payout_request_id,
                event_id=event_id,
            )
            return

        if update.status_type in COMPLETED_PAYOUT_STATUSES:
            target = WithdrawalStatus.completed
            order_target = OrderStatus.withdrawal_completed
            fields: dict[str, Any] = {}
        elif update.status_type in FAILED_PAYOUT_STATUSES:
            target = WithdrawalStatus.failed
            order_target = OrderStatus.withdrawal_failed
            fields = {"failure_reason": json.dumps(payload, default=str)}
        else:
            logger.info(
                "payout_status_not_final",
                status_type=update.status_type,
                withdrawal_id=withdrawal.id,
                event_id=event_id,
            )
            return

        updated = await self._withdrawals.update_withdrawal_status(
            withdrawal.id, target, only_from=OPEN_STATUSES, **fields
        )
        if updated is None and withdrawal.status != target.value:
            logger.warning(
                "withdrawal_already_terminal",
                withdrawal_id=withdrawal.id,
                status=withdrawal.status,
                reported=update.status_type,
                event_id=event_id,
            )
            return

        logger.info(
            "payout_status_applied",
            withdrawal_id=withdrawal.id,
            order_id=withdrawal.order_id,
            status=target.value,
            event_id=event_id,
        )
        await self._orders.update_status(withdrawal.order_id, order_target, **fields)
