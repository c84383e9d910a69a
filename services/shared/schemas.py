"""Pydantic v2 request/response schemas for the marketplace API.

Field names are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


def _decimal_to_str(value: Decimal) -> str:
    return format(value.normalize(), "f")


# Serialised as a plain decimal string ("35.5", never "3.55E+1").
Amount = Annotated[
    Decimal, PlainSerializer(_decimal_to_str, return_type=str, when_used="json")
]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CartItem(CamelModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    quantity: int = Field(default=1, ge=1)


class CartCreateRequest(CamelModel):
    """Request body for POST /carts."""

    items: list[CartItem] = Field(..., min_length=1)
    idempotency_key: str | None = Field(default=None, max_length=255)


class PaymentCreateRequest(CamelModel):
    """Request body for POST /payments."""

    cart_id: str = Field(..., min_length=1, max_length=36)
    idempotency_key: str = Field(..., min_length=1, max_length=200)


class WebhookEvent(CamelModel):
    """Envelope of a payout-provider webhook delivery."""

    event_id: str = Field(..., min_length=1)
    delivery_id: str = Field(..., min_length=1)
    event_category: str = Field(..., min_length=1)
    attempt_number: int | None = None
    occurred_at: str | None = None
    payload: Any = None


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class ProductResponse(CamelModel):
    id: str
    name: str
    description: str | None = None
    price_usdc: Amount
    created_at: datetime


class CartResponse(CamelModel):
    id: str
    items: list[CartItem]
    created_at: datetime
    updated_at: datetime


class OrderResponse(CamelModel):
    id: str
    cart_id: str
    payment_id: str
    status: str
    total_usdc: Amount
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None
    mural_transaction_id: str | None = None
    payout_request_id: str | None = None
    withdrawal_id: str | None = None
    failure_reason: str | None = None


class PaymentResponse(CamelModel):
    id: str
    order_id: str
    expected_amount_usdc: Amount
    destination_address: str
    blockchain: str
    memo: str
    status: str
    idempotency_key: str
    mural_transaction_id: str | None = None
    transaction_hash: str | None = None
    created_at: datetime
    updated_at: datetime


class WithdrawalResponse(CamelModel):
    id: str
    order_id: str
    payment_id: str
    payout_request_id: str | None = None
    status: str
    amount_usdc: Amount
    amount_cop: Amount | None = None
    failure_reason: str | None = None
    idempotency_key: str
    created_at: datetime
    updated_at: datetime


class PaymentAcceptedResponse(CamelModel):
    """Response body for POST /payments (202 Accepted)."""

    message: str
    order_id: str
    payment_id: str
    expected_amount_usdc: Amount
    destination_address: str
    blockchain: str
    memo: str
    transaction_hash: str | None = None


class MessageResponse(BaseModel):
    """Standard message envelope used for errors and webhook acknowledgements."""

    message: str


def message_body(message: str) -> dict[str, str]:
    return MessageResponse(message=message).model_dump()
