# backoffice_hub/services/expiry.py
"""
Expiry Batch Ledger - per-SKU batches of perishable stock.

Handles:
- Batch number rules per SKU (uniqueness, mandatory once a SKU has records)
- Single, bulk and in-place writes of expiry records
- Per-SKU aggregates (total quantity, batch numbers, stock warnings)
- Display listings joined against the product catalog on every read
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, List, Set, Iterable

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_hub.db_models import ProductExpiry, utcnow
from backoffice_hub.errors import (
    ValidationFailed, DuplicateBatchError, BatchConflictError, NotFoundError,
)
from backoffice_hub.models import (
    ExpiryRecordIn, ExpiryRecordPatch, ExpiryRecordOut, SkuExpirySummaryOut,
)
from backoffice_hub.services.catalog import CatalogService, variation_display_name
from backoffice_hub.services.inventory import InventoryReconciler
from backoffice_hub.settings import settings

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "Unknown Product"


@dataclass
class SkuBatchState:
    """
    Batch numbers already claimed for one SKU.

    The single place where the batch number rules live; the ledger writes and
    the import validator both go through check().
    """
    sku: str
    record_count: int = 0
    unbatched_count: int = 0
    total_quantity: int = 0
    batch_numbers: Set[str] = field(default_factory=set)

    @property
    def has_existing_batches(self) -> bool:
        return self.record_count > 0

    def check(self, batch_number: Optional[str], row: Optional[int] = None) -> None:
        prefix = f"Row {row}: " if row is not None else ""
        if not batch_number:
            if self.has_existing_batches:
                raise ValidationFailed(
                    f'{prefix}Batch Number is required for SKU "{self.sku}" because it already has expiry records'
                )
            return
        if batch_number in self.batch_numbers:
            raise DuplicateBatchError(self.sku, batch_number, row)
        if self.unbatched_count:
            raise ValidationFailed(
                f'{prefix}SKU "{self.sku}" has an expiry record without a Batch Number; '
                f'give it a batch number before adding batch "{batch_number}"'
            )

    def include(self, batch_number: Optional[str], quantity: int) -> None:
        self.record_count += 1
        self.total_quantity += quantity
        if batch_number:
            self.batch_numbers.add(batch_number)
        else:
            self.unbatched_count += 1

    def exclude(self, batch_number: Optional[str], quantity: int) -> None:
        self.record_count -= 1
        self.total_quantity -= quantity
        if batch_number:
            self.batch_numbers.discard(batch_number)
        else:
            self.unbatched_count -= 1


def _require_positive(quantity: Optional[int], row: Optional[int] = None) -> int:
    prefix = f"Row {row}: " if row is not None else ""
    if quantity is None or int(quantity) <= 0:
        raise ValidationFailed(f"{prefix}Quantity must be a positive number")
    return int(quantity)


class ExpiryLedgerService:
    """Service for the product expiry ledger."""

    def __init__(self, db: AsyncSession, catalog: Optional[CatalogService] = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, record_id: int) -> Optional[ProductExpiry]:
        return await self.db.get(ProductExpiry, record_id)

    async def list_all(self) -> List[ProductExpiry]:
        stmt = select(ProductExpiry).order_by(ProductExpiry.sku, ProductExpiry.expiry_date, ProductExpiry.id)
        return list((await self.db.execute(stmt)).scalars())

    async def list_by_sku(self, sku: str) -> List[ProductExpiry]:
        stmt = (
            select(ProductExpiry)
            .where(ProductExpiry.sku == sku)
            .order_by(ProductExpiry.expiry_date, ProductExpiry.id)
        )
        return list((await self.db.execute(stmt)).scalars())

    async def total_quantity_by_sku(self, sku: str) -> int:
        stmt = select(func.coalesce(func.sum(ProductExpiry.quantity), 0)).where(ProductExpiry.sku == sku)
        return int((await self.db.execute(stmt)).scalar() or 0)

    async def batch_numbers_by_sku(self, sku: str, excluding: Optional[int] = None) -> List[str]:
        """Distinct non-empty batch numbers of a SKU, optionally ignoring one record."""
        stmt = (
            select(ProductExpiry.batch_number)
            .where(
                ProductExpiry.sku == sku,
                ProductExpiry.batch_number.is_not(None),
                ProductExpiry.batch_number != "",
            )
            .distinct()
            .order_by(ProductExpiry.batch_number)
        )
        if excluding is not None:
            stmt = stmt.where(ProductExpiry.id != excluding)
        return list((await self.db.execute(stmt)).scalars())

    async def has_existing_batches(self, sku: str, excluding: Optional[int] = None) -> bool:
        """True once a SKU has at least one record: new records then need a batch number."""
        stmt = select(func.count()).select_from(ProductExpiry).where(ProductExpiry.sku == sku)
        if excluding is not None:
            stmt = stmt.where(ProductExpiry.id != excluding)
        return bool((await self.db.execute(stmt)).scalar())

    async def batch_state(self, sku: str, excluding: Optional[int] = None) -> SkuBatchState:
        state = SkuBatchState(sku=sku)
        for rec in await self.list_by_sku(sku):
            if excluding is not None and rec.id == excluding:
                continue
            state.include(rec.batch_number, rec.quantity)
        return state

    async def find_batch(self, sku: str, batch_number: str) -> Optional[ProductExpiry]:
        stmt = (
            select(ProductExpiry)
            .where(ProductExpiry.sku == sku, ProductExpiry.batch_number == batch_number)
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    # =========================================================================
    # Writes
    # =========================================================================

    async def _build(self, record: ExpiryRecordIn) -> ProductExpiry:
        entry = None
        if record.product_id is None or record.product_name is None or record.stock_quantity is None:
            entry = await self.catalog.resolve(record.sku)

        if record.product_id is not None:
            product_id, variation_id = record.product_id, record.variation_id
        elif entry is not None:
            product_id, variation_id = entry.product_id, entry.variation_id
        else:
            product_id, variation_id = 0, None

        stock_quantity = record.stock_quantity
        if stock_quantity is None and entry is not None:
            stock_quantity = entry.stock_quantity

        return ProductExpiry(
            product_id=product_id,
            variation_id=variation_id,
            sku=record.sku,
            product_name=record.product_name or (entry.name if entry else None),
            expiry_date=record.expiry_date,
            batch_number=record.batch_number,
            quantity=record.quantity,
            stock_quantity=stock_quantity,
            notes=record.notes,
        )

    async def _flush_guarded(self, records: Iterable[ProductExpiry]) -> None:
        """Flush inside a SAVEPOINT; a unique violation becomes BatchConflictError."""
        current = None
        try:
            async with self.db.begin_nested():
                for rec in records:
                    current = (rec.sku, rec.batch_number)
                    self.db.add(rec)
                    await self.db.flush()
        except IntegrityError:
            sku, batch_number = current if current else ("", None)
            logger.warning("Batch conflict on write: sku=%s batch=%s", sku, batch_number)
            raise BatchConflictError(sku, batch_number)

    async def add(self, record: ExpiryRecordIn) -> int:
        """Add one expiry record; returns its id."""
        _require_positive(record.quantity)
        state = await self.batch_state(record.sku)
        state.check(record.batch_number)

        rec = await self._build(record)
        await self._flush_guarded([rec])
        logger.info("Added expiry record %s for %s batch %s", rec.id, rec.sku, rec.batch_number)
        return rec.id

    async def add_bulk(self, records: List[ExpiryRecordIn]) -> List[int]:
        """
        Add many records at once; nothing is written unless every record passes.

        All batch number problems are reported together in one error.
        """
        states: dict[str, SkuBatchState] = {}
        problems: List[str] = []
        for rec in records:
            if rec.sku not in states:
                states[rec.sku] = await self.batch_state(rec.sku)
            state = states[rec.sku]
            try:
                _require_positive(rec.quantity)
                state.check(rec.batch_number)
            except DuplicateBatchError as e:
                problems.append(f"SKU: {e.sku}, Batch: {e.batch_number}")
                continue
            except ValidationFailed as e:
                problems.append(f"SKU: {rec.sku}: {e}")
                continue
            state.include(rec.batch_number, rec.quantity)

        if problems:
            raise ValidationFailed(f"Duplicate or invalid batch numbers found: {'; '.join(problems)}")

        built = [await self._build(rec) for rec in records]
        await self._flush_guarded(built)
        logger.info("Added %d expiry records in bulk", len(built))
        return [rec.id for rec in built]

    async def update(self, record_id: int, patch: ExpiryRecordPatch) -> ProductExpiry:
        rec = await self.get(record_id)
        if rec is None:
            raise NotFoundError(f"Expiry record {record_id} not found")

        data = patch.model_dump(exclude_unset=True)
        for key in ("sku", "expiry_date", "quantity"):
            if key in data and data[key] is None:
                data.pop(key)
        if "quantity" in data:
            _require_positive(data["quantity"])

        sku = data.get("sku", rec.sku)
        batch_number = data["batch_number"] if "batch_number" in data else rec.batch_number
        if sku != rec.sku or batch_number != rec.batch_number:
            state = await self.batch_state(sku, excluding=rec.id)
            state.check(batch_number)

        if sku != rec.sku:
            # Identity follows the SKU; explicit values in the patch still win
            entry = await self.catalog.resolve(sku)
            rec.product_id = entry.product_id if entry else 0
            rec.variation_id = entry.variation_id if entry else None
            rec.product_name = entry.name if entry else None
            rec.stock_quantity = entry.stock_quantity if entry else None

        for key, value in data.items():
            setattr(rec, key, value)
        rec.updated_at = utcnow()
        await self._flush_guarded([rec])
        return rec

    async def delete(self, record_id: int) -> None:
        rec = await self.get(record_id)
        if rec is None:
            raise NotFoundError(f"Expiry record {record_id} not found")
        await self.db.delete(rec)
        await self.db.flush()

    # =========================================================================
    # Display listings (joined with the catalog, uncached)
    # =========================================================================

    async def list_with_details(self) -> List[ExpiryRecordOut]:
        records = await self.list_all()
        products, variations = await self.catalog.product_maps()

        out: List[ExpiryRecordOut] = []
        for rec in records:
            product_name = UNKNOWN_PRODUCT
            stock_quantity = 0
            if rec.variation_id:
                variation = variations.get(rec.variation_id)
                parent = products.get(variation.parent_id) if variation else None
                if variation and parent:
                    product_name = variation_display_name(parent.name, variation.attributes)
                    stock_quantity = variation.stock_quantity or 0
            elif rec.product_id:
                product = products.get(rec.product_id)
                if product:
                    product_name = product.name
                    stock_quantity = product.stock_quantity or 0

            out.append(
                ExpiryRecordOut.model_validate(rec).model_copy(
                    update={"product_name": product_name, "stock_quantity": stock_quantity}
                )
            )
        return out

    async def list_by_expiry_date(self, ascending: bool = True) -> List[ExpiryRecordOut]:
        records = await self.list_with_details()
        return sorted(records, key=lambda r: (r.expiry_date, r.id), reverse=not ascending)

    async def expiring_within(self, days: Optional[int] = None, today: Optional[date] = None) -> List[ExpiryRecordOut]:
        """Records expiring on or before today + days (already expired included)."""
        days = settings.EXPIRY_WARNING_DAYS if days is None else days
        cutoff = (today or date.today()) + timedelta(days=days)
        return [r for r in await self.list_by_expiry_date() if r.expiry_date <= cutoff]

    async def stock_warning(self, sku: str) -> Optional[str]:
        """Soft check: message when tracked batches exceed the SKU's stock, else None."""
        total = await self.total_quantity_by_sku(sku)
        stock = await InventoryReconciler(self.db, self.catalog).stock_for_sku(sku)
        if total > stock:
            return f'Total quantity ({total}) for SKU "{sku}" exceeds current stock ({stock})'
        return None

    async def sku_summaries(self) -> List[SkuExpirySummaryOut]:
        reconciler = InventoryReconciler(self.db, self.catalog)
        groups: dict[str, List[ExpiryRecordOut]] = {}
        for rec in await self.list_with_details():
            groups.setdefault(rec.sku, []).append(rec)

        out: List[SkuExpirySummaryOut] = []
        for sku, recs in groups.items():
            total = sum(r.quantity for r in recs)
            stock = await reconciler.stock_for_sku(sku)
            out.append(SkuExpirySummaryOut(
                sku=sku,
                product_name=recs[0].product_name or UNKNOWN_PRODUCT,
                total_quantity=total,
                stock_quantity=stock,
                batch_count=len(recs),
                earliest_expiry=min(r.expiry_date for r in recs),
                stock_exceeded=total > stock,
            ))
        return sorted(out, key=lambda s: (s.earliest_expiry, s.sku))
