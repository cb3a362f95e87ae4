"""Admin product mutations.

Learn: This is the product-mutation side of live updates. A successful
PATCH commits the change and then publishes it through the broadcaster,
so every open storefront tab sees the new stock or price without a
reload.

Authentication: X-Admin-Key header, compared in constant time. In
development with no key configured, requests are allowed.
"""

import secrets
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.db.engine import get_db
from storefront.realtime.broadcaster import ProductUpdateBroadcaster
from storefront.realtime.sse import get_broadcaster
from storefront.schemas.product import ProductDetail, ProductUpdate
from storefront.services.product_service import ProductService

router = APIRouter(prefix="/admin")


def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    if not settings.admin_api_key:
        if settings.environment == "development":
            return
        raise HTTPException(status_code=401, detail="Admin access is not configured")
    if not x_admin_key or not secrets.compare_digest(
        x_admin_key, settings.admin_api_key
    ):
        raise HTTPException(status_code=401, detail="Invalid admin key")


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: ProductUpdateBroadcaster = Depends(get_broadcaster),
) -> ProductService:
    return ProductService(db, broadcaster=broadcaster)


@router.patch("/products/{product_id}", response_model=ProductDetail)
async def update_product(
    product_id: uuid.UUID,
    body: ProductUpdate,
    svc: ProductService = Depends(_svc),
):
    """Change stock, price or discount and broadcast the change."""
    try:
        product = await svc.update_product(
            product_id,
            in_stock=body.in_stock,
            price=body.price,
            discount_percentage=body.discount_percentage,
            discount_enabled=body.discount_enabled,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
