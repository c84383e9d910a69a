"""Payment creation and amount matching."""
from decimal import Decimal

import pytest

from services.marketplace.payments import PaymentService, PaymentSetupError, to_usdc
from services.shared.models import PaymentStatus


@pytest.fixture
def payments(store, provider, settings) -> PaymentService:
    return PaymentService(store, provider, settings)


@pytest.mark.parametrize(
    "value, expected",
    [(35.5, Decimal("35.5")), ("10.01", Decimal("10.01")), (None, None), ("abc", None), (True, None)],
)
def test_to_usdc(value, expected):
    assert to_usdc(value) == expected


async def test_create_payment_uses_account_wallet(payments):
    payment, created = await payments.create_payment("order-1", Decimal("35.5"), "key-1")
    assert created is True
    assert payment.destination_address == "0xDEPOSIT"
    assert payment.blockchain == "POLYGON"
    assert payment.memo == "order-1"
    assert payment.status == PaymentStatus.pending.value


async def test_same_idempotency_key_returns_first_payment(payments):
    first, _ = await payments.create_payment("order-1", Decimal("35.5"), "key-1")
    second, created = await payments.create_payment("order-2", Decimal("99"), "key-1")
    assert created is False
    assert second.id == first.id
    assert second.order_id == "order-1"


async def test_account_without_wallet_is_rejected(payments, provider):
    provider.account = {"id": "acct-test", "accountDetails": {}}
    with pytest.raises(PaymentSetupError):
        await payments.create_payment("order-1", Decimal("10"), "key-1")


async def test_amount_match_is_exact(payments):
    payment, _ = await payments.create_payment("order-1", Decimal("10.00"), "key-1")
    assert await payments.find_pending_payment_by_amount(Decimal("10.01")) is None
    found = await payments.find_pending_payment_by_amount(Decimal("10"))
    assert found.id == payment.id


async def test_received_payments_no_longer_match(payments):
    payment, _ = await payments.create_payment("order-1", Decimal("12.34"), "key-1")
    received = await payments.mark_payment_received(payment.id, "tx-1")
    assert received.status == PaymentStatus.received.value
    assert received.mural_transaction_id == "tx-1"

    assert await payments.find_pending_payment_by_amount(Decimal("12.34")) is None
    assert await payments.mark_payment_received(payment.id, "tx-2") is None
    assert (await payments.find_payment_by_transaction_id("tx-1")).id == payment.id


async def test_lookup_by_order_id(payments):
    payment, _ = await payments.create_payment("order-7", Decimal("5"), "key-7")
    assert (await payments.get_payment_by_order_id("order-7")).id == payment.id
    assert await payments.get_payment_by_order_id("missing") is None
