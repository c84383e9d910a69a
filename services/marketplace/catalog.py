"""Products and carts."""
from __future__ import annotations

from decimal import Decimal

import structlog

from services.shared.models import Cart, Product, new_id, utcnow
from services.shared.schemas import CartItem
from services.shared.store import Page, Store

logger = structlog.get_logger(__name__)

DEFAULT_PRODUCTS: list[dict] = [
    {"name": "Product A", "description": "Sample product A", "price_usdc": Decimal("10")},
    {"name": "Product B", "description": "Sample product B", "price_usdc": Decimal("25.5")},
    {"name": "Product C", "description": "Sample product C", "price_usdc": Decimal("50")},
]


class CartPricingError(Exception):
    """A cart references a product that does not exist or totals to nothing."""


class CatalogService:
    def __init__(self, store: Store) -> None:
        self._store = store

    async def ensure_default_products(self) -> None:
        page = await self._store.scan(Product, limit=1)
        if page.items:
            return
        now = utcnow()
        for product in DEFAULT_PRODUCTS:
            await self._store.put(Product(id=new_id(), created_at=now, **product))
        logger.info("default_products_seeded", count=len(DEFAULT_PRODUCTS))

    async def list_products(self, limit: int = 20, page_token: str | None = None) -> Page[Product]:
        return await self._store.scan(Product, limit=limit, page_token=page_token)

    async def get_product(self, product_id: str) -> Product | None:
        return await self._store.get(Product, product_id)

    async def create_cart(self, items: list[CartItem]) -> Cart:
        now = utcnow()
        cart = Cart(
            id=new_id(),
            items=[item.model_dump(by_alias=True) for item in items],
            created_at=now,
            updated_at=now,
        )
        await self._store.put(cart)
        logger.info("cart_created", cart_id=cart.id, items=len(items))
        return cart

    async def get_cart(self, cart_id: str) -> Cart | None:
        return await self._store.get(Cart, cart_id)

    async def list_carts(self, limit: int = 20, page_token: str | None = None) -> Page[Cart]:
        return await self._store.scan(Cart, limit=limit, page_token=page_token)

    async def cart_total(self, cart: Cart) -> Decimal:
        """Sum of price * quantity over the cart's items."""
        total = Decimal("0")
        for item in cart.items:
            product = await self.get_product(item["productId"])
            if product is None:
                raise CartPricingError(f"Product {item['productId']} not found")
            total += product.price_usdc * int(item["quantity"])
        if total <= 0:
            raise CartPricingError("Cart total must be positive")
        return total
