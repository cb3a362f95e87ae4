"""Filter sidebar data: categories and collections with product counts."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.engine import get_db
from storefront.schemas.product import CategoryRead, CollectionRead
from storefront.services.product_service import ProductService

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> ProductService:
    return ProductService(db)


@router.get("/categories", response_model=list[CategoryRead])
async def list_categories(svc: ProductService = Depends(_svc)):
    return await svc.list_categories()


@router.get("/collections", response_model=list[CollectionRead])
async def list_collections(svc: ProductService = Depends(_svc)):
    return await svc.list_collections()
