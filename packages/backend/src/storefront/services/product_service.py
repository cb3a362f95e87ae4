"""Product service — catalog queries and the product mutation that
triggers live updates.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the database. Listing reads go
through Redis where it pays off (new arrivals and the filter sidebar
counts are requested on every page view); a cache failure just means a
database read.
"""

import math
import uuid
from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront import cache
from storefront.config import settings
from storefront.db.models import Category, Collection, Discount, Product
from storefront.realtime.broadcaster import ProductUpdateBroadcaster
from storefront.realtime.events import PRICE_CHANGE, PRODUCT_UPDATED, STOCK_CHANGE
from storefront.schemas.product import (
    CategoryRead,
    CollectionRead,
    DiscountRead,
    ProductSummary,
)

logger = structlog.get_logger()

SORTS = {
    "newest": (Product.created_at.desc(), Product.id),
    "price-asc": (Product.price.asc(), Product.id),
    "price-desc": (Product.price.desc(), Product.id),
    "name-asc": (Product.name.asc(), Product.id),
    "name-desc": (Product.name.desc(), Product.id),
}

CATEGORIES_CACHE_KEY = "catalog:categories"
COLLECTIONS_CACHE_KEY = "catalog:collections"


def new_arrivals_cache_key(limit: int) -> str:
    return f"new-arrivals:latest:{limit}"


def _float(value: Decimal | float | int) -> float:
    return float(value)


def to_summary(product: Product) -> ProductSummary:
    """Flatten a product (with images, sizes, discount loaded) into a card.

    Price range comes from the size prices; a product without sizes shows
    its base price as both ends of the range.
    """
    price = _float(product.price)
    size_prices = [_float(s.price) for s in product.sizes]
    discount = None
    if product.discount is not None:
        discount = DiscountRead(
            percentage=_float(product.discount.percentage),
            enabled=product.discount.enabled,
        )
    return ProductSummary(
        id=product.id,
        name=product.name,
        slug=product.slug,
        price=price,
        image=product.images[0].url if product.images else None,
        in_stock=product.in_stock,
        sizes=[s.size for s in product.sizes],
        min_price=min(size_prices) if size_prices else price,
        max_price=max(size_prices) if size_prices else price,
        discount=discount,
    )


def _with_card_relations(query):
    return query.options(
        selectinload(Product.images),
        selectinload(Product.sizes),
        selectinload(Product.discount),
    )


class ProductService:
    """Catalog reads and product mutations."""

    def __init__(
        self,
        db: AsyncSession,
        broadcaster: Optional[ProductUpdateBroadcaster] = None,
    ):
        self.db = db
        self.broadcaster = broadcaster

    # ─── Listing ────────────────────────────────────────

    async def list_products(
        self,
        category: Optional[str] = None,
        collection: Optional[str] = None,
        sort: str = "newest",
        page: int = 1,
        limit: Optional[int] = None,
        in_stock: Optional[bool] = None,
    ) -> tuple[list[Product], int, int]:
        """Filtered, sorted page of non-archived products.

        category and collection are slugs. Unknown sort keys fall back to
        newest first. Returns (products, total, total_pages); total_pages
        is at least 1 so an empty catalog still renders page 1 of 1.
        """
        limit = limit or settings.products_page_size
        page = max(page, 1)

        conditions = [Product.is_archived.is_(False)]
        if in_stock is not None:
            conditions.append(Product.in_stock.is_(in_stock))
        if category:
            conditions.append(
                Product.category_id.in_(
                    select(Category.id).where(Category.slug == category)
                )
            )
        if collection:
            conditions.append(
                Product.collection_id.in_(
                    select(Collection.id).where(Collection.slug == collection)
                )
            )

        total = (
            await self.db.execute(
                select(func.count()).select_from(Product).where(*conditions)
            )
        ).scalar_one()

        order_by = SORTS.get(sort, SORTS["newest"])
        result = await self.db.execute(
            _with_card_relations(
                select(Product)
                .where(*conditions)
                .order_by(*order_by)
                .offset((page - 1) * limit)
                .limit(limit)
            )
        )
        products = list(result.scalars().all())
        total_pages = max(1, math.ceil(total / limit))
        return products, total, total_pages

    async def new_arrivals(self) -> list[dict[str, Any]]:
        """Latest in-stock products for the landing page carousel (cached)."""
        limit = settings.new_arrivals_limit
        key = new_arrivals_cache_key(limit)
        cached = await cache.get_cached(key)
        if cached is not None:
            return cached

        result = await self.db.execute(
            _with_card_relations(
                select(Product)
                .where(Product.is_archived.is_(False), Product.in_stock.is_(True))
                .order_by(Product.created_at.desc(), Product.id)
                .limit(limit)
            )
        )
        arrivals = [
            to_summary(p).model_dump(mode="json") for p in result.scalars().all()
        ]
        await cache.set_cached(key, arrivals, settings.new_arrivals_cache_seconds)
        return arrivals

    # ─── Detail ─────────────────────────────────────────

    def _detail_query(self):
        return select(Product).options(
            selectinload(Product.images),
            selectinload(Product.sizes),
            selectinload(Product.discount),
            selectinload(Product.category),
            selectinload(Product.collection),
        )

    async def get_product(self, slug: str) -> Product | None:
        result = await self.db.execute(
            self._detail_query().where(
                Product.slug == slug, Product.is_archived.is_(False)
            )
        )
        return result.scalars().first()

    async def get_product_by_id(self, product_id: uuid.UUID) -> Product | None:
        result = await self.db.execute(
            self._detail_query()
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    # ─── Filter sidebar ─────────────────────────────────

    async def list_categories(self) -> list[dict[str, Any]]:
        cached = await cache.get_cached(CATEGORIES_CACHE_KEY)
        if cached is not None:
            return cached
        rows = await self._counted(Category, Product.category_id)
        categories = [
            CategoryRead(id=c.id, name=c.name, slug=c.slug, product_count=n).model_dump(
                mode="json"
            )
            for c, n in rows
        ]
        await cache.set_cached(
            CATEGORIES_CACHE_KEY, categories, settings.catalog_cache_seconds
        )
        return categories

    async def list_collections(self) -> list[dict[str, Any]]:
        cached = await cache.get_cached(COLLECTIONS_CACHE_KEY)
        if cached is not None:
            return cached
        rows = await self._counted(Collection, Product.collection_id)
        collections = [
            CollectionRead(
                id=c.id, name=c.name, slug=c.slug, product_count=n
            ).model_dump(mode="json")
            for c, n in rows
        ]
        await cache.set_cached(
            COLLECTIONS_CACHE_KEY, collections, settings.catalog_cache_seconds
        )
        return collections

    async def _counted(self, model, fk_column):
        """(row, non-archived product count) pairs ordered by name."""
        result = await self.db.execute(
            select(model, func.count(Product.id))
            .outerjoin(
                Product,
                and_(fk_column == model.id, Product.is_archived.is_(False)),
            )
            .group_by(model.id)
            .order_by(model.name)
        )
        return list(result.all())

    # ─── Mutations ──────────────────────────────────────

    async def update_product(
        self,
        product_id: uuid.UUID,
        in_stock: Optional[bool] = None,
        price: Optional[float] = None,
        discount_percentage: Optional[float] = None,
        discount_enabled: Optional[bool] = None,
    ) -> Product | None:
        """Apply an admin change, then tell every open storefront about it.

        Returns None if the product does not exist. Raises ValueError when
        enabling a discount the product does not have.
        """
        product = await self.get_product_by_id(product_id)
        if product is None:
            return None

        changes: dict[str, Any] = {}

        if in_stock is not None and in_stock != product.in_stock:
            product.in_stock = in_stock
            changes["inStock"] = in_stock

        if price is not None:
            new_price = Decimal(str(price)).quantize(Decimal("0.01"))
            if new_price != product.price:
                product.price = new_price
                changes["price"] = float(new_price)

        if discount_percentage is not None or discount_enabled is not None:
            if product.discount is None:
                if discount_percentage is None:
                    raise ValueError("Product has no discount to enable or disable")
                product.discount = Discount(
                    percentage=Decimal(str(discount_percentage)),
                    enabled=True if discount_enabled is None else discount_enabled,
                )
                changes["discount"] = {
                    "percentage": float(discount_percentage),
                    "enabled": product.discount.enabled,
                }
            else:
                before = (product.discount.percentage, product.discount.enabled)
                if discount_percentage is not None:
                    product.discount.percentage = Decimal(str(discount_percentage))
                if discount_enabled is not None:
                    product.discount.enabled = discount_enabled
                if (product.discount.percentage, product.discount.enabled) != before:
                    changes["discount"] = {
                        "percentage": float(product.discount.percentage),
                        "enabled": product.discount.enabled,
                    }

        if not changes:
            return product

        await self.db.commit()
        await cache.invalidate(new_arrivals_cache_key(settings.new_arrivals_limit))
        logger.info("product.updated", product_id=str(product_id), changes=list(changes))

        if self.broadcaster is not None:
            await self.broadcaster.publish(
                {
                    "type": _update_type(changes),
                    "productId": str(product.id),
                    "slug": product.slug,
                    **changes,
                }
            )

        return await self.get_product_by_id(product_id)


def _update_type(changes: dict[str, Any]) -> str:
    if set(changes) == {"inStock"}:
        return STOCK_CHANGE
    if set(changes) == {"price"}:
        return PRICE_CHANGE
    return PRODUCT_UPDATED
