"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Storefront reads are open. Admin mutations carry their guard at
the include_router level using FastAPI's dependencies parameter, so
individual handlers stay free of auth code.
"""

from fastapi import APIRouter, Depends

from storefront.api.admin import require_admin
from storefront.api.admin import router as admin_router
from storefront.api.catalog import router as catalog_router
from storefront.api.health import router as health_router
from storefront.api.products import router as products_router
from storefront.realtime.sse import router as sse_router

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])
api_router.include_router(products_router, tags=["products"])
api_router.include_router(catalog_router, tags=["catalog"])
api_router.include_router(sse_router, tags=["realtime"])

# Admin routes — require X-Admin-Key
api_router.include_router(
    admin_router, tags=["admin"], dependencies=[Depends(require_admin)]
)
