# backoffice_hub/services/inventory.py
"""
Inventory Reconciler - applies received purchase-order quantities to stock.

Resolution cascade, first hit wins:
1. existing inventory row for the SKU  -> increment stock_quantity
2. SKU known to the catalog            -> create a row seeded with the quantity
3. unknown SKU                         -> nothing written, returns False

A call is NOT idempotent: reconciling the same receipt twice counts it twice.
Callers deduplicate (purchase order lines track what they already applied).
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_hub.db_models import InventoryItem, utcnow
from backoffice_hub.services.catalog import CatalogService

logger = logging.getLogger(__name__)


class InventoryReconciler:
    def __init__(self, db: AsyncSession, catalog: Optional[CatalogService] = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)

    async def find_by_sku(self, sku: str) -> Optional[InventoryItem]:
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.sku == sku)
            .order_by(InventoryItem.id)
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def reconcile(
        self,
        sku: str,
        received_quantity: int,
        supplier_name: Optional[str] = None,
        fallback_cost_price: Optional[Decimal] = None,
    ) -> bool:
        """Add received_quantity to the SKU's stock. False when the SKU is unknown."""
        sku = (sku or "").strip()
        received_quantity = int(received_quantity or 0)

        item = await self.find_by_sku(sku)
        if item:
            item.stock_quantity = (item.stock_quantity or 0) + received_quantity
            item.updated_at = utcnow()
            await self.db.flush()
            logger.info("Stock for %s increased by %s to %s", sku, received_quantity, item.stock_quantity)
            return True

        entry = await self.catalog.resolve(sku)
        if entry is None:
            logger.info("Skipping stock update: SKU %s not found in inventory or catalog", sku)
            return False

        cost_price = entry.cost_price
        if cost_price is None:
            cost_price = fallback_cost_price if fallback_cost_price is not None else Decimal("0")

        now = utcnow()
        item = InventoryItem(
            product_id=entry.product_id,
            variation_id=entry.variation_id,
            sku=sku,
            cost_price=cost_price,
            stock_quantity=received_quantity,
            supplier_name=supplier_name,
            supplier_updated=now if supplier_name else None,
        )
        self.db.add(item)
        await self.db.flush()
        logger.info("Created inventory row for %s with stock %s", sku, received_quantity)
        return True

    async def stock_for_sku(self, sku: str) -> int:
        """Current stock: the inventory row when present, else the catalog figure."""
        item = await self.find_by_sku(sku)
        if item:
            return int(item.stock_quantity or 0)
        entry = await self.catalog.resolve(sku)
        if entry and entry.stock_quantity is not None:
            return int(entry.stock_quantity)
        return 0
