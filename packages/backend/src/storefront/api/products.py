"""Product listing, new arrivals, and product detail routes.

Learn: Routes handle HTTP concerns (query parsing, status codes, cache
headers) and delegate to ProductService. The new-arrivals route is hit
by every landing page view, so it is cached twice: in Redis by the
service and at the CDN through Cache-Control.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.db.engine import get_db
from storefront.schemas.product import ProductDetail, ProductPage
from storefront.services.product_service import ProductService, to_summary

logger = structlog.get_logger()
router = APIRouter()

NEW_ARRIVALS_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"


def _svc(db: AsyncSession = Depends(get_db)) -> ProductService:
    return ProductService(db)


@router.get("/products", response_model=ProductPage)
async def list_products(
    category: Optional[str] = None,
    collection: Optional[str] = None,
    sort: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(
        settings.products_page_size, ge=1, le=settings.products_max_page_size
    ),
    in_stock: Optional[bool] = None,
    svc: ProductService = Depends(_svc),
):
    """Filtered, sorted, paginated product grid."""
    products, total, total_pages = await svc.list_products(
        category=category,
        collection=collection,
        sort=sort,
        page=page,
        limit=limit,
        in_stock=in_stock,
    )
    return ProductPage(
        products=[to_summary(p) for p in products],
        total=total,
        page=page,
        total_pages=total_pages,
    )


@router.get("/products/new-arrivals")
async def new_arrivals(svc: ProductService = Depends(_svc)):
    try:
        arrivals = await svc.new_arrivals()
    except SQLAlchemyError:
        logger.exception("products.new_arrivals_failed")
        return JSONResponse(
            status_code=500, content={"detail": "Failed to fetch new arrivals"}
        )
    return JSONResponse(
        content=arrivals,
        headers={"Cache-Control": NEW_ARRIVALS_CACHE_CONTROL},
    )


@router.get("/products/{slug}", response_model=ProductDetail)
async def get_product(slug: str, svc: ProductService = Depends(_svc)):
    product = await svc.get_product(slug)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
