"""
Withdrawal orchestrator.

create_and_execute_withdrawal() flow:
  1. Look up withdrawals for the order.  If one exists return it (or, if
     it stopped at payout_created, execute its payout request).
  2. INSERT a pending withdrawal.  withdrawals.order_id is UNIQUE, so a
     concurrent caller that loses the insert gets the winner's row.
  3. Create the payout request with the provider  -> payout_created
  4. Execute the payout request                    -> executed / pending
  5. Re-read and return the withdrawal.
Any provider failure in 3-4 marks the withdrawal failed with the error
text and re-raises.  Progress from step 3 is committed before step 4 runs.
Steps 4 and the failure mark only apply while the row is still pending or
payout_created: a payout webhook may settle it before execute returns.

A reused withdrawal still at pending has no payout request yet; it is
returned unchanged because its creator may still be talking to the
provider.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from services.shared.config import Settings
from services.shared.metrics import WITHDRAWALS
from services.shared.models import Withdrawal, WithdrawalStatus, new_id, utcnow
from services.shared.store import Page, Store

from .provider import PayoutProvider, build_cop_payout

logger = structlog.get_logger(__name__)

OPEN_STATUSES = frozenset(
    {
        WithdrawalStatus.pending.value,
        WithdrawalStatus.payout_created.value,
        WithdrawalStatus.executed.value,
    }
)
PRE_EXECUTION_STATUSES = frozenset(
    {WithdrawalStatus.pending.value, WithdrawalStatus.payout_created.value}
)


def settled_fiat_amount(payout_request: dict) -> Decimal | None:
    """Fiat amount of the first payout in an executed payout request, if reported."""
    payouts = payout_request.get("payouts") or []
    if not payouts:
        return None
    fiat = ((payouts[0] or {}).get("details") or {}).get("fiatAmount") or {}
    value = fiat.get("fiatAmount")
    return Decimal(str(value)) if value is not None else None


def failure_reason(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class WithdrawalService:
    def __init__(self, store: Store, provider: PayoutProvider, settings: Settings) -> None:
        self._store = store
        self._provider = provider
        self._settings = settings
        self._merchant = settings.merchant_bank_details()

    async def create_and_execute_withdrawal(
        self,
        order_id: str,
        payment_id: str,
        amount_usdc: Decimal,
        idempotency_key: str,
    ) -> Withdrawal:
        existing = await self.list_withdrawals_by_order_id(order_id)
        if existing:
            return await self._reuse(existing[0])

        now = utcnow()
        withdrawal = Withdrawal(
            id=new_id(),
            order_id=order_id,
            payment_id=payment_id,
            status=WithdrawalStatus.pending.value,
            amount_usdc=amount_usdc,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )
        if not await self._store.conditional_insert(withdrawal):
            winners = await self.list_withdrawals_by_order_id(order_id)
            if not winners:
                raise RuntimeError(
                    f"withdrawal insert conflict without existing row: {idempotency_key}"
                )
            return await self._reuse(winners[0])

        WITHDRAWALS.labels(status="created").inc()
        logger.info(
            "withdrawal_created",
            withdrawal_id=withdrawal.id,
            order_id=order_id,
            amount_usdc=str(amount_usdc),
        )

        try:
            payout = await self._provider.create_payout_request(
                build_cop_payout(
                    self._settings.mural_account_id,
                    self._merchant,
                    order_id,
                    amount_usdc,
                )
            )
            withdrawal = await self.update_withdrawal_status(
                withdrawal.id,
                WithdrawalStatus.payout_created,
                payout_request_id=payout["id"],
            ) or withdrawal
            logger.info(
                "payout_request_created",
                withdrawal_id=withdrawal.id,
                payout_request_id=payout["id"],
            )
        except Exception as exc:
            await self._mark_failed(withdrawal.id, exc)
            raise

        return await self._execute(withdrawal)

    async def _reuse(self, withdrawal: Withdrawal) -> Withdrawal:
        if (
            withdrawal.status == WithdrawalStatus.payout_created.value
            and withdrawal.payout_request_id
        ):
            logger.info(
                "withdrawal_resumed",
                withdrawal_id=withdrawal.id,
                payout_request_id=withdrawal.payout_request_id,
            )
            return await self._execute(withdrawal)
        WITHDRAWALS.labels(status="reused").inc()
        logger.info(
            "withdrawal_already_exists",
            withdrawal_id=withdrawal.id,
            order_id=withdrawal.order_id,
            status=withdrawal.status,
        )
        return withdrawal

    async def _execute(self, withdrawal: Withdrawal) -> Withdrawal:
        try:
            executed = await self._provider.execute_payout_request(
                withdrawal.payout_request_id
            )
            status = (
                WithdrawalStatus.executed
                if str(executed.get("status", "")).upper() == "EXECUTED"
                else WithdrawalStatus.pending
            )
            amount_cop = settled_fiat_amount(executed)
            updated = await self.update_withdrawal_status(
                withdrawal.id,
                status,
                only_from=PRE_EXECUTION_STATUSES,
                amount_cop=amount_cop,
            )
            if updated is None:
                # A payout webhook already settled the row; keep its status.
                logger.info(
                    "withdrawal_settled_before_execute_returned",
                    withdrawal_id=withdrawal.id,
                    payout_request_id=withdrawal.payout_request_id,
                )
                if amount_cop is not None:
                    await self._store.update(
                        Withdrawal, withdrawal.id, {"amount_cop": amount_cop}
                    )
        except Exception as exc:
            await self._mark_failed(withdrawal.id, exc)
            raise

        WITHDRAWALS.labels(status="executed").inc()
        logger.info(
            "payout_request_executed",
            withdrawal_id=withdrawal.id,
            payout_request_id=withdrawal.payout_request_id,
            status=status.value,
        )
        return await self._store.get(Withdrawal, withdrawal.id) or withdrawal

    async def _mark_failed(self, withdrawal_id: str, exc: BaseException) -> None:
        WITHDRAWALS.labels(status="failed").inc()
        logger.error("withdrawal_failed", withdrawal_id=withdrawal_id, error=str(exc))
        await self.update_withdrawal_status(
            withdrawal_id,
            WithdrawalStatus.failed,
            only_from=PRE_EXECUTION_STATUSES,
            failure_reason=failure_reason(exc),
        )

    # ------------------------------------------------------------------
    # Reads and status updates
    # ------------------------------------------------------------------

    async def get_withdrawal(self, withdrawal_id: str) -> Withdrawal | None:
        return await self._store.get(Withdrawal, withdrawal_id)

    async def list_withdrawals(
        self, limit: int = 20, page_token: str | None = None
    ) -> Page[Withdrawal]:
        return await self._store.scan(Withdrawal, limit=limit, page_token=page_token)

    async def list_withdrawals_by_order_id(self, order_id: str) -> list[Withdrawal]:
        page = await self._store.query_by_index(Withdrawal, {"order_id": order_id})
        return page.items

    async def find_withdrawal_by_payout_request_id(
        self, payout_request_id: str
    ) -> Withdrawal | None:
        page = await self._store.query_by_index(
            Withdrawal, {"payout_request_id": payout_request_id}, limit=1
        )
        return page.items[0] if page.items else None

    async def update_withdrawal_status(
        self,
        withdrawal_id: str,
        status: WithdrawalStatus,
        only_from: frozenset[str] | None = None,
        **fields: Any,
    ) -> Withdrawal | None:
        """Set ``status`` (and ``fields``); with ``only_from``, only if the current status is in it."""
        expected = {"status": list(only_from)} if only_from is not None else None
        return await self._store.update(
            Withdrawal,
            withdrawal_id,
            {"status": status.value, "updated_at": utcnow(), **fields},
            expected=expected,
        )
