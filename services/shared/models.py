"""SQLAlchemy ORM models for the marketplace payments system."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from services.shared.database import Base

USDC = Numeric(18, 6)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, PyEnum):
    pending_payment = "pending_payment"
    paid = "paid"
    converting = "converting"
    withdrawal_pending = "withdrawal_pending"
    withdrawal_completed = "withdrawal_completed"
    withdrawal_failed = "withdrawal_failed"


class PaymentStatus(str, PyEnum):
    pending = "pending"
    received = "received"
    expired = "expired"


class WithdrawalStatus(str, PyEnum):
    pending = "pending"
    payout_created = "payout_created"
    executed = "executed"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


def _enum(py_enum: type[PyEnum], name: str) -> Enum:
    return Enum(*[member.value for member in py_enum], name=name)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_usdc: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Cart(Base):
    __tablename__ = "carts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # [{"productId": str, "quantity": int}, ...]
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Order(Base):
    """Aggregate root for one checkout; references payment and withdrawal by id."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    cart_id: Mapped[str] = mapped_column(String(36), nullable=False)
    payment_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(
        _enum(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.pending_payment.value,
        index=True,
    )
    total_usdc: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mural_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_request_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    withdrawal_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Payment(Base):
    """One expected stablecoin credit for an order."""

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_status_expected_amount", "status", "expected_amount_usdc"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    expected_amount_usdc: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    destination_address: Mapped[str] = mapped_column(String(255), nullable=False)
    blockchain: Mapped[str] = mapped_column(String(32), nullable=False)
    memo: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        _enum(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.pending.value,
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    mural_transaction_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    # Only set when this system itself sent the on-chain transfer.
    transaction_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Withdrawal(Base):
    """Fiat payout of one order's proceeds.  At most one row per order."""

    __tablename__ = "withdrawals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True
    )
    payment_id: Mapped[str] = mapped_column(String(36), nullable=False)
    payout_request_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        _enum(WithdrawalStatus, "withdrawal_status"),
        nullable=False,
        default=WithdrawalStatus.pending.value,
    )
    amount_usdc: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    amount_cop: Mapped[Decimal | None] = mapped_column(Numeric(20, 2), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class IdempotencyRecord(Base):
    """Claim-once record; existence of an unexpired row means "already claimed"."""

    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
