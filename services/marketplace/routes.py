"""
Marketplace routes.

Catalog:     GET /products, GET /products/{id}
Carts:       POST /carts, GET /carts, GET /carts/{id}
Payments:    POST /payments  (idempotent per idempotencyKey, 202 Accepted)
Merchant:    GET /merchant/orders[/{id}], GET /merchant/withdrawals[/{id}]
Withdrawals: GET /withdrawals  (same page as /merchant/withdrawals)
Webhooks:    POST /webhooks/mural  (200 / 400 / 500 only)

List endpoints page with ``limit`` + ``nextToken`` and return HAL links.
"""
from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from services.shared.metrics import WEBHOOK_EVENTS
from services.shared.models import Order, Withdrawal, new_id
from services.shared.schemas import (
    CartCreateRequest,
    CartResponse,
    OrderResponse,
    PaymentAcceptedResponse,
    PaymentCreateRequest,
    ProductResponse,
    WebhookEvent,
    WithdrawalResponse,
    message_body,
)

from .catalog import CartPricingError, CatalogService
from .deps import get_catalog, get_dispatcher, get_orders, get_payments, get_withdrawals
from .links import clamp_limit, link, pagination_links
from .orders import OrderService
from .payments import PaymentService, PaymentSetupError
from .provider import ProviderError
from .webhooks import WebhookDispatcher
from .withdrawals import WithdrawalService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _dump(schema, record) -> dict:
    return schema.model_validate(record).model_dump(mode="json", by_alias=True)


def _order_resource(base: str, order: Order) -> dict:
    return {
        **_dump(OrderResponse, order),
        "_links": {
            "self": link(f"{base}/merchant/orders/{order.id}", "self"),
            "withdrawals": link(
                f"{base}/merchant/withdrawals?orderId={order.id}", "withdrawals"
            ),
        },
    }


def _withdrawal_resource(base: str, withdrawal: Withdrawal) -> dict:
    return {
        **_dump(WithdrawalResponse, withdrawal),
        "_links": {
            "self": link(f"{base}/merchant/withdrawals/{withdrawal.id}", "self"),
            "order": link(f"{base}/merchant/orders/{withdrawal.order_id}", "order"),
        },
    }


def _collection(base_path: str, limit: int, token: str | None, page, items: list[dict]) -> dict:
    return {
        "_links": pagination_links(base_path, limit, token, page.next_page_token),
        "_embedded": {"items": items},
        "nextToken": page.next_page_token,
    }


# ---------------------------------------------------------------------------
# Catalog and carts
# ---------------------------------------------------------------------------


@router.get("/products", tags=["catalog"], summary="List products")
async def list_products(
    request: Request,
    limit: int | None = Query(default=None),
    next_token: str | None = Query(default=None, alias="nextToken"),
    catalog: CatalogService = Depends(get_catalog),
) -> dict:
    await catalog.ensure_default_products()
    limit = clamp_limit(limit)
    page = await catalog.list_products(limit, next_token)
    base = _base_url(request)
    items = [
        {**_dump(ProductResponse, p), "_links": {"self": link(f"{base}/products/{p.id}", "self")}}
        for p in page.items
    ]
    return _collection(f"{base}/products", limit, next_token, page, items)


@router.get("/products/{product_id}", tags=["catalog"], summary="Get product")
async def get_product(
    product_id: str,
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
) -> dict:
    product = await catalog.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    base = _base_url(request)
    return {
        **_dump(ProductResponse, product),
        "_links": {
            "self": link(f"{base}/products/{product.id}", "self"),
            "collection": link(f"{base}/products", "collection"),
        },
    }


@router.post(
    "/carts",
    status_code=status.HTTP_201_CREATED,
    tags=["carts"],
    summary="Create cart",
)
async def create_cart(
    body: CartCreateRequest,
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
) -> dict:
    cart = await catalog.create_cart(body.items)
    base = _base_url(request)
    return {
        **_dump(CartResponse, cart),
        "_links": {
            "self": link(f"{base}/carts/{cart.id}", "self"),
            "collection": link(f"{base}/carts", "collection"),
        },
    }


@router.get("/carts", tags=["carts"], summary="List carts")
async def list_carts(
    request: Request,
    limit: int | None = Query(default=None),
    next_token: str | None = Query(default=None, alias="nextToken"),
    catalog: CatalogService = Depends(get_catalog),
) -> dict:
    limit = clamp_limit(limit)
    page = await catalog.list_carts(limit, next_token)
    base = _base_url(request)
    items = [
        {**_dump(CartResponse, c), "_links": {"self": link(f"{base}/carts/{c.id}", "self")}}
        for c in page.items
    ]
    return _collection(f"{base}/carts", limit, next_token, page, items)


@router.get("/carts/{cart_id}", tags=["carts"], summary="Get cart")
async def get_cart(
    cart_id: str,
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
) -> dict:
    cart = await catalog.get_cart(cart_id)
    if cart is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    base = _base_url(request)
    return {
        **_dump(CartResponse, cart),
        "_links": {
            "self": link(f"{base}/carts/{cart.id}", "self"),
            "collection": link(f"{base}/carts", "collection"),
        },
    }


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@router.post(
    "/payments",
    status_code=status.HTTP_202_ACCEPTED,
    tags=["payments"],
    summary="Start payment (idempotent per idempotencyKey)",
)
async def create_payment(
    body: PaymentCreateRequest,
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
    payments: PaymentService = Depends(get_payments),
    orders: OrderService = Depends(get_orders),
) -> dict:
    """
    Price the cart, create the pending payment and its order, and return
    the deposit address the buyer sends USDC to.

    A repeated idempotencyKey returns the first payment and leaves its
    order untouched.
    """
    cart = await catalog.get_cart(body.cart_id)
    if cart is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    try:
        total = await catalog.cart_total(cart)
    except CartPricingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        payment, created = await payments.create_payment(
            new_id(), total, body.idempotency_key
        )
    except (PaymentSetupError, ProviderError, httpx.HTTPError) as exc:
        logger.error(
            "payment_creation_failed",
            cart_id=body.cart_id,
            idempotency_key=body.idempotency_key,
            error=str(exc),
        )
        raise HTTPException(status_code=500, detail="Payment creation failed") from exc

    await orders.create_order(
        payment.order_id, body.cart_id, payment.id, payment.expected_amount_usdc
    )

    base = _base_url(request)
    accepted = PaymentAcceptedResponse(
        message=(
            "Payment sent. USDC transfer submitted by backend."
            if payment.transaction_hash
            else "Payment processing started. Send USDC to the deposit address."
        ),
        order_id=payment.order_id,
        payment_id=payment.id,
        expected_amount_usdc=payment.expected_amount_usdc,
        destination_address=payment.destination_address,
        blockchain=payment.blockchain,
        memo=payment.memo,
        transaction_hash=payment.transaction_hash,
    )
    logger.info(
        "payment_accepted",
        payment_id=payment.id,
        order_id=payment.order_id,
        replay=not created,
    )
    return {
        **accepted.model_dump(mode="json", by_alias=True, exclude_none=True),
        "_links": {
            "self": link(f"{base}/payments", "self"),
            "order": link(f"{base}/merchant/orders/{payment.order_id}", "order"),
        },
    }


# ---------------------------------------------------------------------------
# Merchant read API
# ---------------------------------------------------------------------------


@router.get("/merchant/orders", tags=["merchant"], summary="List orders")
async def list_orders(
    request: Request,
    limit: int | None = Query(default=None),
    next_token: str | None = Query(default=None, alias="nextToken"),
    orders: OrderService = Depends(get_orders),
) -> dict:
    limit = clamp_limit(limit)
    page = await orders.list_orders(limit, next_token)
    base = _base_url(request)
    items = [_order_resource(base, o) for o in page.items]
    return _collection(f"{base}/merchant/orders", limit, next_token, page, items)


@router.get("/merchant/orders/{order_id}", tags=["merchant"], summary="Get order")
async def get_order(
    order_id: str,
    request: Request,
    orders: OrderService = Depends(get_orders),
) -> dict:
    order = await orders.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return _order_resource(_base_url(request), order)


@router.get("/merchant/withdrawals", tags=["merchant"], summary="List withdrawals")
async def list_withdrawals(
    request: Request,
    limit: int | None = Query(default=None),
    next_token: str | None = Query(default=None, alias="nextToken"),
    order_id: str | None = Query(default=None, alias="orderId"),
    withdrawals: WithdrawalService = Depends(get_withdrawals),
) -> dict:
    base = _base_url(request)
    if order_id:
        found = await withdrawals.list_withdrawals_by_order_id(order_id)
        return {
            "_links": {
                "self": link(f"{base}/merchant/withdrawals?orderId={order_id}", "self")
            },
            "_embedded": {"items": [_withdrawal_resource(base, w) for w in found]},
        }
    return await _withdrawal_page(
        withdrawals, base, f"{base}/merchant/withdrawals", limit, next_token
    )


@router.get("/withdrawals", tags=["withdrawals"], summary="List withdrawals")
async def list_all_withdrawals(
    request: Request,
    limit: int | None = Query(default=None),
    next_token: str | None = Query(default=None, alias="nextToken"),
    withdrawals: WithdrawalService = Depends(get_withdrawals),
) -> dict:
    base = _base_url(request)
    return await _withdrawal_page(withdrawals, base, f"{base}/withdrawals", limit, next_token)


async def _withdrawal_page(
    withdrawals: WithdrawalService,
    base: str,
    base_path: str,
    limit: int | None,
    next_token: str | None,
) -> dict:
    limit = clamp_limit(limit)
    page = await withdrawals.list_withdrawals(limit, next_token)
    items = [_withdrawal_resource(base, w) for w in page.items]
    return _collection(base_path, limit, next_token, page, items)


@router.get(
    "/merchant/withdrawals/{withdrawal_id}", tags=["merchant"], summary="Get withdrawal"
)
async def get_withdrawal(
    withdrawal_id: str,
    request: Request,
    withdrawals: WithdrawalService = Depends(get_withdrawals),
) -> dict:
    withdrawal = await withdrawals.get_withdrawal(withdrawal_id)
    if withdrawal is None:
        raise HTTPException(status_code=404, detail="Withdrawal not found")
    return _withdrawal_resource(_base_url(request), withdrawal)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@router.post("/webhooks/mural", tags=["webhooks"], summary="Mural webhook receiver")
async def mural_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """
    200 on success or redelivery, 400 when eventId / deliveryId /
    eventCategory are missing (no claim is made), 500 when processing
    fails so the provider retries.
    """
    try:
        event = WebhookEvent.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        WEBHOOK_EVENTS.labels(category="unknown", outcome="rejected").inc()
        logger.warning("webhook_rejected_invalid_payload", error=str(exc))
        return JSONResponse(status_code=400, content=message_body("Invalid webhook payload"))

    try:
        message = await dispatcher.handle(event)
    except Exception:
        return JSONResponse(
            status_code=500, content=message_body("Webhook processing failed")
        )
    return JSONResponse(status_code=200, content=message_body(message))


@router.get("/health", summary="Health check")
async def health() -> dict:
    return {"status": "ok", "service": "marketplace"}
