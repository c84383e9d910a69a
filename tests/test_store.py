"""Record store: conditional writes and keyset pagination."""
from decimal import Decimal

import pytest

from services.shared.models import Order, Product, new_id
from services.shared.store import InvalidPageTokenError, encode_page_token


def _product(name: str) -> Product:
    return Product(id=new_id(), name=name, price_usdc=Decimal("1.5"))


async def test_conditional_insert_rejects_existing_key(store):
    product = _product("first")
    assert await store.conditional_insert(product) is True

    duplicate = Product(id=product.id, name="second", price_usdc=Decimal("2"))
    assert await store.conditional_insert(duplicate) is False

    stored = await store.get(Product, product.id)
    assert stored.name == "first"


async def test_update_respects_expected_values(store):
    order = Order(
        id=new_id(),
        cart_id="cart",
        payment_id="payment",
        status="paid",
        total_usdc=Decimal("10"),
    )
    await store.put(order)

    assert await store.update(Order, order.id, {"status": "converting"}, expected={"status": "pending_payment"}) is None
    updated = await store.update(Order, order.id, {"status": "converting"}, expected={"status": ["paid"]})
    assert updated.status == "converting"
    assert await store.update(Order, "missing", {"status": "paid"}) is None


async def test_scan_pages_without_overlap_or_omission(store):
    ids = set()
    for i in range(7):
        product = _product(f"p{i}")
        await store.put(product)
        ids.add(product.id)

    seen: list[str] = []
    token = None
    pages = 0
    while True:
        page = await store.scan(Product, limit=3, page_token=token)
        assert len(page.items) <= 3
        seen.extend(p.id for p in page.items)
        pages += 1
        token = page.next_page_token
        if token is None:
            break

    assert pages == 3
    assert len(seen) == len(set(seen))
    assert set(seen) == ids


async def test_last_full_page_has_no_token(store):
    for i in range(3):
        await store.put(_product(f"p{i}"))
    page = await store.scan(Product, limit=3)
    assert len(page.items) == 3
    assert page.next_page_token is None


@pytest.mark.parametrize("token", ["not base64 !!", "bm90LWpzb24=", encode_page_token("x")[:-4] + "{{{{"])
async def test_corrupt_page_token_is_rejected(store, token):
    with pytest.raises(InvalidPageTokenError):
        await store.scan(Product, limit=3, page_token=token)


async def test_token_without_cursor_is_rejected(store):
    import base64
    import json

    token = base64.urlsafe_b64encode(json.dumps({"other": 1}).encode()).decode()
    with pytest.raises(InvalidPageTokenError):
        await store.scan(Product, page_token=token)


async def test_query_by_index_filters_on_columns(store):
    for status in ("paid", "paid", "converting"):
        await store.put(
            Order(
                id=new_id(),
                cart_id="c",
                payment_id="p",
                status=status,
                total_usdc=Decimal("1"),
            )
        )
    page = await store.query_by_index(Order, {"status": "paid"})
    assert len(page.items) == 2
    assert {o.status for o in page.items} == {"paid"}
