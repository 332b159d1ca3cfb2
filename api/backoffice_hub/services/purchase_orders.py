# backoffice_hub/services/purchase_orders.py
"""
Purchase Order Store - order header + items, with ledger and stock side effects.

One write touches up to three stores:
- order header and items: written together, atomic with the caller's transaction
- expiry ledger: one record per item carrying batch number + expiry date
- inventory: stock increments on a receiving status transition

Side effects run per item inside their own SAVEPOINT. A failing item is rolled
back to its savepoint and reported as an ItemOutcome; the order, its items and
the other items' side effects are kept.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice_hub.db_models import (
    PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus, utcnow,
)
from backoffice_hub.errors import BackofficeError, NotFoundError, StatusTransitionError
from backoffice_hub.models import (
    ExpiryRecordIn, ExpiryRecordPatch, PurchaseOrderFilters, PurchaseOrderIn,
    PurchaseOrderItemIn, PurchaseOrderItemPatch, PurchaseOrderPatch,
)
from backoffice_hub.services.catalog import CatalogService
from backoffice_hub.services.expiry import ExpiryLedgerService
from backoffice_hub.services.inventory import InventoryReconciler

logger = logging.getLogger(__name__)

# ============================================================================
# Status machine
# ============================================================================

ALLOWED_TRANSITIONS: Dict[PurchaseOrderStatus, frozenset] = {
    PurchaseOrderStatus.ordered: frozenset({
        PurchaseOrderStatus.partially_received,
        PurchaseOrderStatus.received,
    }),
    PurchaseOrderStatus.partially_received: frozenset({PurchaseOrderStatus.received}),
    PurchaseOrderStatus.received: frozenset(),
}


def check_transition(current: PurchaseOrderStatus, requested: PurchaseOrderStatus) -> bool:
    """
    True for a legal status change, False when the status stays the same.
    Raises StatusTransitionError for anything else (e.g. received -> ordered).
    """
    current = PurchaseOrderStatus(current)
    requested = PurchaseOrderStatus(requested)
    if current == requested:
        return False
    if requested not in ALLOWED_TRANSITIONS[current]:
        raise StatusTransitionError(current.value, requested.value)
    return True


# ============================================================================
# Outcomes
# ============================================================================

ACTION_EXPIRY = "expiry"
ACTION_STOCK = "stock"

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ItemOutcome:
    sku: str
    action: str
    status: str
    batch_number: Optional[str] = None
    message: str = ""


@dataclass
class OrderWriteResult:
    order_id: int
    outcomes: List[ItemOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def applied(self) -> int:
        return self._count(APPLIED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    @property
    def summary(self) -> str:
        return f"{self.applied} applied, {self.skipped} skipped, {self.failed} failed"


ItemKey = Tuple[str, Optional[str]]


def _item_key(item) -> ItemKey:
    return (item.sku, item.batch_number)


def _tracks_expiry(item: PurchaseOrderItem) -> bool:
    return bool(item.batch_number) and item.expiry_date is not None


# ============================================================================
# Service
# ============================================================================

class PurchaseOrderService:
    """Service for purchase orders and their side effects."""

    def __init__(self, db: AsyncSession, catalog: Optional[CatalogService] = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)
        self.ledger = ExpiryLedgerService(db, self.catalog)
        self.reconciler = InventoryReconciler(db, self.catalog)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_with_items(self, order_id: int) -> Optional[PurchaseOrder]:
        stmt = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items))
            .where(PurchaseOrder.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _require(self, order_id: int) -> PurchaseOrder:
        po = await self.get_with_items(order_id)
        if po is None:
            raise NotFoundError(f"Purchase order {order_id} not found")
        return po

    async def list(self, filters: Optional[PurchaseOrderFilters] = None) -> List[PurchaseOrder]:
        stmt = select(PurchaseOrder)
        if filters:
            if filters.start_date:
                stmt = stmt.where(PurchaseOrder.date >= filters.start_date)
            if filters.end_date:
                stmt = stmt.where(PurchaseOrder.date <= filters.end_date)
            if filters.supplier:
                needle = filters.supplier.strip().lower()
                stmt = stmt.where(func.lower(PurchaseOrder.supplier_name).contains(needle, autoescape=True))
            if filters.status:
                stmt = stmt.where(PurchaseOrder.status == filters.status)
        stmt = stmt.order_by(PurchaseOrder.date.desc(), PurchaseOrder.id.desc())
        return list((await self.db.execute(stmt)).scalars())

    async def items_by_sku(self, sku: str) -> List[PurchaseOrderItem]:
        stmt = select(PurchaseOrderItem).where(PurchaseOrderItem.sku == sku).order_by(PurchaseOrderItem.id)
        return list((await self.db.execute(stmt)).scalars())

    async def total_purchase_amount(self, start: date, end: date) -> Decimal:
        stmt = select(func.coalesce(func.sum(PurchaseOrder.total_amount), 0)).where(
            PurchaseOrder.date >= start, PurchaseOrder.date <= end
        )
        return Decimal(str((await self.db.execute(stmt)).scalar() or 0))

    # =========================================================================
    # Writes
    # =========================================================================

    @staticmethod
    def _build_item(data: PurchaseOrderItemIn) -> PurchaseOrderItem:
        return PurchaseOrderItem(
            sku=data.sku,
            product_name=data.product_name,
            quantity=data.quantity,
            unit_price=data.unit_price,
            quantity_received=data.quantity_received,
            batch_number=data.batch_number,
            expiry_date=data.expiry_date,
            notes=data.notes,
        )

    async def create(self, order: PurchaseOrderIn, items: Sequence[PurchaseOrderItemIn]) -> OrderWriteResult:
        """
        Write header + items, then one expiry record per batch-tracked item.

        An order created directly as partially_received/received is treated as
        an ordered -> <status> transition and reconciled right away.
        """
        check_transition(PurchaseOrderStatus.ordered, order.status)

        po = PurchaseOrder(
            date=order.date,
            supplier_id=order.supplier_id,
            supplier_name=order.supplier_name,
            reference_number=order.reference_number,
            payment_method=order.payment_method,
            status=PurchaseOrderStatus.ordered,
            notes=order.notes,
            expiry_date=order.expiry_date,
        )
        po.items = [self._build_item(i) for i in items]
        po.recalculate_total()
        self.db.add(po)
        await self.db.flush()

        result = OrderWriteResult(order_id=po.id)
        for item in po.items:
            if _tracks_expiry(item):
                result.outcomes.append(
                    await self._guarded(item, ACTION_EXPIRY, self._create_expiry, item, po.id)
                )

        if order.status != PurchaseOrderStatus.ordered:
            po.status = order.status
            await self.db.flush()
            result.outcomes.extend(await self._reconcile_items(po, order.status))

        logger.info("Created purchase order %s with %d items (%s)", po.id, len(po.items), result.summary)
        return result

    @staticmethod
    def _carry_stock_applied(
        old_items: Sequence[PurchaseOrderItem],
        new_items: Sequence[PurchaseOrderItem],
    ) -> None:
        """
        Hand what the old lines already pushed into inventory to their replacements.

        Exact (sku, batch_number) matches first; whatever is left for a SKU
        (e.g. after a batch number correction) goes to the first unmatched new
        line of that SKU.
        """
        by_key: Dict[ItemKey, int] = {}
        for old in old_items:
            key = _item_key(old)
            by_key[key] = by_key.get(key, 0) + (old.stock_applied or 0)

        unmatched: List[PurchaseOrderItem] = []
        for item in new_items:
            key = _item_key(item)
            if key in by_key:
                item.stock_applied = by_key.pop(key)
            else:
                item.stock_applied = 0
                unmatched.append(item)

        left_by_sku: Dict[str, int] = {}
        for (sku, _batch), applied in by_key.items():
            left_by_sku[sku] = left_by_sku.get(sku, 0) + applied
        for item in unmatched:
            if left_by_sku.get(item.sku):
                item.stock_applied = left_by_sku.pop(item.sku)

    async def update(
        self,
        order_id: int,
        patch: PurchaseOrderPatch,
        items: Optional[Sequence[PurchaseOrderItemIn]] = None,
    ) -> OrderWriteResult:
        """
        Patch the header; when items are given, replace the whole item set.

        Expiry records follow the new items, matched to the old ones on
        (sku, batch_number). A legal receiving transition reconciles stock.
        """
        po = await self._require(order_id)
        data = patch.model_dump(exclude_unset=True)

        previous = po.status
        requested = data.pop("status", None) or previous
        transition = check_transition(previous, requested)

        for key in ("date", "supplier_name", "reference_number", "payment_method"):
            if key in data and data[key] is None:
                data.pop(key)
        for key, value in data.items():
            setattr(po, key, value)

        old_keys: set = set()
        if items is not None:
            old_keys = {_item_key(old) for old in po.items}
            new_items = [self._build_item(i) for i in items]
            self._carry_stock_applied(po.items, new_items)
            po.items = new_items

        po.recalculate_total()
        po.status = PurchaseOrderStatus(requested)
        po.updated_at = utcnow()
        await self.db.flush()

        result = OrderWriteResult(order_id=po.id)
        if items is not None:
            for item in po.items:
                if _tracks_expiry(item):
                    matched = _item_key(item) in old_keys
                    result.outcomes.append(
                        await self._guarded(item, ACTION_EXPIRY, self._sync_expiry, item, po.id, matched)
                    )

        if transition:
            logger.info("Purchase order %s: %s -> %s", po.id, PurchaseOrderStatus(previous).value, po.status.value)
            result.outcomes.extend(await self._reconcile_items(po, po.status))

        logger.info("Updated purchase order %s (%s)", po.id, result.summary)
        return result

    async def update_item(self, item_id: int, patch: PurchaseOrderItemPatch) -> OrderWriteResult:
        """Edit one line in place; totals and its expiry record follow."""
        found = await self.db.get(PurchaseOrderItem, item_id)
        if found is None:
            raise NotFoundError(f"Purchase order item {item_id} not found")
        po = await self._require(found.purchase_order_id)
        item = next(i for i in po.items if i.id == item_id)

        old_key = _item_key(item)
        data = patch.model_dump(exclude_unset=True)
        for key in ("product_name", "quantity", "unit_price"):
            if key in data and data[key] is None:
                data.pop(key)
        for key, value in data.items():
            setattr(item, key, value)

        po.recalculate_total()
        po.updated_at = utcnow()
        await self.db.flush()

        result = OrderWriteResult(order_id=po.id)
        touches_ledger = {"quantity", "expiry_date", "batch_number"} & data.keys()
        if touches_ledger and _tracks_expiry(item):
            matched = _item_key(item) == old_key
            result.outcomes.append(
                await self._guarded(item, ACTION_EXPIRY, self._sync_expiry, item, po.id, matched)
            )
        return result

    async def delete(self, order_id: int) -> None:
        """Delete the order and its items. Expiry records it created are kept."""
        po = await self._require(order_id)
        await self.db.delete(po)
        await self.db.flush()
        logger.info("Deleted purchase order %s", order_id)

    # =========================================================================
    # Side effects
    # =========================================================================

    async def _guarded(
        self,
        item: PurchaseOrderItem,
        action: str,
        fn: Callable[..., Awaitable[ItemOutcome]],
        *args,
    ) -> ItemOutcome:
        sku, batch_number = item.sku, item.batch_number
        try:
            async with self.db.begin_nested():
                return await fn(*args)
        except (BackofficeError, SQLAlchemyError) as e:
            logger.warning("%s update failed for SKU %s batch %s: %s", action, sku, batch_number, e)
            await self.db.refresh(item)
            return ItemOutcome(sku=sku, action=action, status=FAILED, batch_number=batch_number, message=str(e))

    async def _create_expiry(self, item: PurchaseOrderItem, order_id: int) -> ItemOutcome:
        record_id = await self.ledger.add(ExpiryRecordIn(
            sku=item.sku,
            product_name=item.product_name or None,
            expiry_date=item.expiry_date,
            batch_number=item.batch_number,
            quantity=item.quantity,
            notes=f"Added from Purchase Order #{order_id}",
        ))
        return ItemOutcome(
            sku=item.sku, action=ACTION_EXPIRY, status=APPLIED, batch_number=item.batch_number,
            message=f"Expiry record {record_id} created",
        )

    async def _sync_expiry(self, item: PurchaseOrderItem, order_id: int, matched: bool) -> ItemOutcome:
        if matched:
            existing = await self.ledger.find_batch(item.sku, item.batch_number)
            if existing is not None:
                await self.ledger.update(
                    existing.id,
                    ExpiryRecordPatch(expiry_date=item.expiry_date, quantity=item.quantity),
                )
                return ItemOutcome(
                    sku=item.sku, action=ACTION_EXPIRY, status=APPLIED, batch_number=item.batch_number,
                    message=f"Expiry record {existing.id} updated",
                )
        return await self._create_expiry(item, order_id)

    async def _reconcile_items(self, po: PurchaseOrder, status: PurchaseOrderStatus) -> List[ItemOutcome]:
        """
        Push not-yet-applied quantities into inventory.

        received: the full ordered quantity; partially_received: quantity_received.
        What a line already applied (stock_applied) is subtracted, so a later
        partially_received -> received step only adds the remainder.
        """
        outcomes: List[ItemOutcome] = []
        for item in po.items:
            if status == PurchaseOrderStatus.received:
                target = item.quantity
            else:
                target = item.quantity_received or 0
            delta = target - (item.stock_applied or 0)
            if delta <= 0:
                outcomes.append(ItemOutcome(
                    sku=item.sku, action=ACTION_STOCK, status=SKIPPED, batch_number=item.batch_number,
                    message="Nothing new to receive",
                ))
                continue
            outcomes.append(
                await self._guarded(item, ACTION_STOCK, self._receive, item, delta, po.supplier_name)
            )
        return outcomes

    async def _receive(self, item: PurchaseOrderItem, quantity: int, supplier_name: str) -> ItemOutcome:
        applied = await self.reconciler.reconcile(
            item.sku, quantity, supplier_name, fallback_cost_price=item.unit_price
        )
        if not applied:
            return ItemOutcome(
                sku=item.sku, action=ACTION_STOCK, status=SKIPPED, batch_number=item.batch_number,
                message=f'SKU "{item.sku}" not found in inventory or catalog',
            )
        item.stock_applied = (item.stock_applied or 0) + quantity
        await self.db.flush()
        return ItemOutcome(
            sku=item.sku, action=ACTION_STOCK, status=APPLIED, batch_number=item.batch_number,
            message=f"Stock increased by {quantity}",
        )
