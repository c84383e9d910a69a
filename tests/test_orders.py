"""Order state machine."""
from decimal import Decimal

import pytest

from services.marketplace.orders import OrderService, OrderTransitionError
from services.shared.models import OrderStatus


@pytest.fixture
async def orders(store):
    service = OrderService(store)
    await service.create_order("order-1", "cart-1", "payment-1", Decimal("35.5"))
    return service


async def test_new_order_is_pending_payment(orders):
    order = await orders.get_order("order-1")
    assert order.status == OrderStatus.pending_payment.value
    assert order.total_usdc == Decimal("35.5")


async def test_create_order_twice_keeps_first(orders):
    await orders.update_status("order-1", OrderStatus.paid)
    again = await orders.create_order("order-1", "cart-2", "payment-2", Decimal("1"))
    assert again.status == OrderStatus.paid.value
    assert again.cart_id == "cart-1"


async def test_happy_path_transitions(orders):
    seen = []
    for status in (
        OrderStatus.paid,
        OrderStatus.converting,
        OrderStatus.withdrawal_pending,
        OrderStatus.withdrawal_completed,
    ):
        order = await orders.update_status("order-1", status)
        seen.append(order.status)
    assert seen == ["paid", "converting", "withdrawal_pending", "withdrawal_completed"]


async def test_converting_can_fail_directly(orders):
    await orders.update_status("order-1", OrderStatus.paid)
    await orders.update_status("order-1", OrderStatus.converting)
    order = await orders.update_status(
        "order-1", OrderStatus.withdrawal_failed, failure_reason="boom"
    )
    assert order.status == "withdrawal_failed"
    assert order.failure_reason == "boom"


async def test_repeated_transition_is_a_noop(orders):
    await orders.update_status("order-1", OrderStatus.paid)
    order = await orders.update_status("order-1", OrderStatus.paid)
    assert order.status == "paid"


async def test_backwards_transition_is_rejected(orders):
    await orders.update_status("order-1", OrderStatus.paid)
    await orders.update_status("order-1", OrderStatus.converting)
    with pytest.raises(OrderTransitionError) as info:
        await orders.update_status("order-1", OrderStatus.paid)
    assert info.value.current == "converting"
    assert (await orders.get_order("order-1")).status == "converting"


async def test_terminal_states_are_final(orders):
    for status in (OrderStatus.paid, OrderStatus.converting, OrderStatus.withdrawal_completed):
        await orders.update_status("order-1", status)
    with pytest.raises(OrderTransitionError):
        await orders.update_status("order-1", OrderStatus.withdrawal_failed)


async def test_skipping_payment_is_rejected(orders):
    with pytest.raises(OrderTransitionError):
        await orders.update_status("order-1", OrderStatus.converting)


async def test_missing_order_returns_none(orders):
    assert await orders.update_status("nope", OrderStatus.paid) is None


async def test_list_orders_by_status(orders):
    await orders.create_order("order-2", "cart-2", "payment-2", Decimal("10"))
    await orders.update_status("order-2", OrderStatus.paid)
    page = await orders.list_orders_by_status(OrderStatus.pending_payment)
    assert [o.id for o in page.items] == ["order-1"]


async def test_repeated_transition_fills_unset_fields(orders):
    for status in (OrderStatus.paid, OrderStatus.converting):
        await orders.update_status("order-1", status)
    await orders.update_status("order-1", OrderStatus.withdrawal_pending, payout_request_id=None)

    order = await orders.update_status(
        "order-1", OrderStatus.withdrawal_pending, payout_request_id="payout-1", withdrawal_id="w-1"
    )

    assert order.status == "withdrawal_pending"
    assert order.payout_request_id == "payout-1"
    assert order.withdrawal_id == "w-1"


async def test_repeated_transition_keeps_recorded_fields(orders):
    for status in (OrderStatus.paid, OrderStatus.converting):
        await orders.update_status("order-1", status)
    await orders.update_status(
        "order-1", OrderStatus.withdrawal_pending, payout_request_id="payout-1"
    )

    order = await orders.update_status(
        "order-1", OrderStatus.withdrawal_pending, payout_request_id=None
    )
    assert order.payout_request_id == "payout-1"
    order = await orders.update_status(
        "order-1", OrderStatus.withdrawal_pending, payout_request_id="payout-2"
    )
    assert order.payout_request_id == "payout-1"
