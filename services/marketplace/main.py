"""
Marketplace Payments API.

Accepts USDC payments for carts and pays the merchant out in COP through
the Mural payout provider.  Provider webhooks drive each order through

    pending_payment -> paid -> converting -> withdrawal_pending -> withdrawal_completed
                                                              \\-> withdrawal_failed

Webhook deliveries are claimed once in the idempotency ledger (database or
Redis backend), and each order gets at most one withdrawal.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.shared.config import Settings
from services.shared.schemas import message_body
from services.shared.database import create_engine, create_session_factory, init_db
from services.shared.redis_client import close_redis, init_redis
from services.shared.store import InvalidPageTokenError, Store

from .ledger import DatabaseLedger, RedisLedger
from .provider import MuralClient, PayoutProvider
from .routes import router

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ]
)

logger = structlog.get_logger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    fields = [
        ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
        for error in exc.errors()
    ]
    return f"Invalid request: {', '.join(fields)}"


def create_app(
    settings: Settings | None = None,
    provider: PayoutProvider | None = None,
) -> FastAPI:
    """Build the API.  ``provider`` replaces the Mural HTTP client (tests)."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("marketplace_api_startup", idempotency_backend=settings.idempotency_backend)
        engine = create_engine(settings.database_url)
        await init_db(engine)
        session_factory = create_session_factory(engine)
        store = Store(session_factory)

        if settings.idempotency_backend == "redis":
            ledger = RedisLedger(init_redis(settings.redis_url))
        else:
            ledger = DatabaseLedger(store, session_factory)

        owned_client = MuralClient(settings) if provider is None else None

        app.state.settings = settings
        app.state.store = store
        app.state.ledger = ledger
        app.state.provider = provider or owned_client
        yield
        if owned_client is not None:
            await owned_client.aclose()
        await close_redis()
        await engine.dispose()
        logger.info("marketplace_api_shutdown")

    app = FastAPI(
        title="Marketplace Payments API",
        description=(
            "USDC checkout with webhook-driven order lifecycle and fiat payouts. "
            "Webhook deliveries are processed at most once; one withdrawal per order."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=message_body(str(exc.detail)))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=message_body(_validation_message(exc)))

    @app.exception_handler(InvalidPageTokenError)
    async def invalid_page_token(request: Request, exc: InvalidPageTokenError) -> JSONResponse:
        return JSONResponse(status_code=400, content=message_body("Invalid nextToken"))

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.marketplace.main:app", host="0.0.0.0", port=8000, reload=False)
