"""Pydantic schemas for the catalog.

Learn: Pydantic v2 models validate request/response data. Listing rows
(ProductSummary) are built by the service from ORM rows because they carry
derived fields (first image, price range); the detail view maps straight
from attributes.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


# ─── Shared ─────────────────────────────────────────────

class DiscountRead(BaseModel):
    percentage: float
    enabled: bool

    model_config = {"from_attributes": True}


class ImageRead(BaseModel):
    url: str
    position: int

    model_config = {"from_attributes": True}


class SizeRead(BaseModel):
    size: str
    price: float

    model_config = {"from_attributes": True}


# ─── Categories & collections ───────────────────────────

class CategoryRead(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    product_count: int = 0


class CollectionRead(CategoryRead):
    pass


class CategoryRef(BaseModel):
    id: uuid.UUID
    name: str
    slug: str

    model_config = {"from_attributes": True}


# ─── Products ───────────────────────────────────────────

class ProductSummary(BaseModel):
    """One card in a product grid or carousel."""

    id: uuid.UUID
    name: str
    slug: str
    price: float
    image: Optional[str] = None
    in_stock: bool
    sizes: list[str] = []
    min_price: float
    max_price: float
    discount: Optional[DiscountRead] = None


class ProductPage(BaseModel):
    products: list[ProductSummary]
    total: int
    page: int
    total_pages: int


class ProductDetail(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    description: str
    price: float
    in_stock: bool
    images: list[ImageRead] = []
    sizes: list[SizeRead] = []
    discount: Optional[DiscountRead] = None
    category: Optional[CategoryRef] = None
    collection: Optional[CategoryRef] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProductUpdate(BaseModel):
    """Admin mutation. At least one field must be set."""

    in_stock: Optional[bool] = None
    # Numeric(10, 2) column
    price: Optional[float] = Field(
        default=None, gt=0, le=99_999_999.99, allow_inf_nan=False
    )
    discount_percentage: Optional[float] = Field(
        default=None, ge=0, le=100, allow_inf_nan=False
    )
    discount_enabled: Optional[bool] = None

    @model_validator(mode="after")
    def require_a_change(self):
        if not self.model_fields_set or all(
            getattr(self, name) is None for name in self.model_fields_set
        ):
            raise ValueError("At least one field must be provided")
        return self
