# backoffice_hub/services/catalog.py
"""
Product catalog lookups.

The catalog (products + variations) is synchronized from the web shop and is
authoritative for turning a SKU into a product or variation identity. This
service only reads it.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_hub.db_models import Product, ProductVariation


@dataclass(frozen=True)
class CatalogEntry:
    """A SKU resolved against the catalog."""
    id: int
    name: str
    parent_id: Optional[int] = None
    cost_price: Optional[Decimal] = None
    stock_quantity: Optional[int] = None

    @property
    def is_variation(self) -> bool:
        return self.parent_id is not None

    @property
    def product_id(self) -> int:
        """Id of the simple product, or of the parent for a variation."""
        return self.parent_id if self.parent_id is not None else self.id

    @property
    def variation_id(self) -> Optional[int]:
        return self.id if self.parent_id is not None else None


def variation_display_name(parent_name: str, attributes) -> str:
    options = [str(a) for a in (attributes or []) if str(a).strip()]
    if not options:
        return parent_name
    return f"{parent_name} ({', '.join(options)})"


class CatalogService:
    """Read-only SKU resolution against products and variations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_product(self, sku: str) -> Optional[Product]:
        stmt = select(Product).where(Product.sku == sku).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_variation(self, sku: str) -> Optional[ProductVariation]:
        stmt = select(ProductVariation).where(ProductVariation.sku == sku).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve(self, sku: str) -> Optional[CatalogEntry]:
        """
        Resolve SKU to a catalog entry.

        Simple products are checked first, then variations. Returns None when
        the SKU is in neither table.
        """
        sku = (sku or "").strip()
        if not sku:
            return None

        product = await self.find_product(sku)
        if product:
            return CatalogEntry(
                id=product.id,
                name=product.name,
                cost_price=product.cost_price,
                stock_quantity=product.stock_quantity,
            )

        variation = await self.find_variation(sku)
        if variation:
            parent = await self.db.get(Product, variation.parent_id)
            parent_name = parent.name if parent else ""
            return CatalogEntry(
                id=variation.id,
                parent_id=variation.parent_id,
                name=variation_display_name(parent_name, variation.attributes),
                cost_price=variation.cost_price,
                stock_quantity=variation.stock_quantity,
            )
        return None

    async def product_maps(self) -> tuple[Dict[int, Product], Dict[int, ProductVariation]]:
        """All products and variations keyed by id (for enrichment joins)."""
        products = (await self.db.execute(select(Product))).scalars().all()
        variations = (await self.db.execute(select(ProductVariation))).scalars().all()
        return {p.id: p for p in products}, {v.id: v for v in variations}
