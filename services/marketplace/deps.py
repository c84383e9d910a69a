"""FastAPI dependencies wiring the components from app.state."""
from __future__ import annotations

from fastapi import Depends, Request

from services.shared.config import Settings
from services.shared.store import Store

from .catalog import CatalogService
from .ledger import IdempotencyLedger
from .orders import OrderService
from .payments import PaymentService
from .provider import PayoutProvider
from .webhooks import WebhookDispatcher
from .withdrawals import WithdrawalService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_provider(request: Request) -> PayoutProvider:
    return request.app.state.provider


def get_ledger(request: Request) -> IdempotencyLedger:
    return request.app.state.ledger


def get_catalog(store: Store = Depends(get_store)) -> CatalogService:
    return CatalogService(store)


def get_orders(store: Store = Depends(get_store)) -> OrderService:
    return OrderService(store)


def get_payments(
    store: Store = Depends(get_store),
    provider: PayoutProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
) -> PaymentService:
    return PaymentService(store, provider, settings)


def get_withdrawals(
    store: Store = Depends(get_store),
    provider: PayoutProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
) -> WithdrawalService:
    return WithdrawalService(store, provider, settings)


def get_dispatcher(
    ledger: IdempotencyLedger = Depends(get_ledger),
    payments: PaymentService = Depends(get_payments),
    orders: OrderService = Depends(get_orders),
    withdrawals: WithdrawalService = Depends(get_withdrawals),
    settings: Settings = Depends(get_settings),
) -> WebhookDispatcher:
    return WebhookDispatcher(ledger, payments, orders, withdrawals, settings)
