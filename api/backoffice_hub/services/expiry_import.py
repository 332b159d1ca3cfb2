# backoffice_hub/services/expiry_import.py
"""
Batch Import Validator - checks uploaded expiry rows before they are written.

Rows use the upload template vocabulary: SKU, Expiry Date, Quantity,
Batch Number, Notes. Validation never writes; the caller commits the valid
records through the ledger (see ExpiryImporter).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_hub.errors import DuplicateBatchError, ValidationFailed
from backoffice_hub.models import ExpiryRecordIn
from backoffice_hub.services.catalog import CatalogEntry, CatalogService
from backoffice_hub.services.expiry import ExpiryLedgerService, SkuBatchState
from backoffice_hub.services.inventory import InventoryReconciler
from backoffice_hub.utils import parse_day_first_date, parse_positive_int

logger = logging.getLogger(__name__)

COL_SKU = "SKU"
COL_EXPIRY = "Expiry Date"
COL_QTY = "Quantity"
COL_BATCH = "Batch Number"
COL_NOTES = "Notes"
REQUIRED_FIELDS = (COL_SKU, COL_EXPIRY, COL_QTY)

# First data row is line 2 of the CSV (line 1 is the header)
FIRST_ROW_NUMBER = 2


@dataclass
class ImportValidationResult:
    valid_records: List[ExpiryRecordIn] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class ExpiryImportValidator:
    """Validate bulk expiry rows against the catalog and the current ledger."""

    def __init__(self, db: AsyncSession, catalog: Optional[CatalogService] = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)
        self.ledger = ExpiryLedgerService(db, self.catalog)
        self.reconciler = InventoryReconciler(db, self.catalog)

    async def validate(self, rows: Sequence[Mapping[str, Any]]) -> ImportValidationResult:
        result = ImportValidationResult()
        if not rows:
            result.errors.append("No data found in CSV file")
            return result

        missing = [f for f in REQUIRED_FIELDS if f not in rows[0]]
        if missing:
            result.errors.extend(f"Missing required field: {f}" for f in missing)
            return result

        # One read per distinct SKU
        entries: Dict[str, Optional[CatalogEntry]] = {}
        states: Dict[str, SkuBatchState] = {}
        existing_qty: Dict[str, int] = {}
        stocks: Dict[str, int] = {}

        # (row number, record) per accepted row; None once withdrawn
        accepted: List[Optional[Tuple[int, ExpiryRecordIn]]] = []
        accepted_by_batch: Dict[Tuple[str, str], int] = {}
        conflicted: Dict[str, Set[str]] = {}

        for offset, row in enumerate(rows):
            row_num = offset + FIRST_ROW_NUMBER
            sku = _text(row.get(COL_SKU))
            raw_date = _text(row.get(COL_EXPIRY))
            raw_qty = _text(row.get(COL_QTY))
            batch_number = _text(row.get(COL_BATCH)) or None
            notes = _text(row.get(COL_NOTES)) or None

            if not sku and not raw_date and not raw_qty:
                continue

            if not sku:
                result.errors.append(f"Row {row_num}: Missing SKU")
                continue

            if sku not in entries:
                entries[sku] = await self.catalog.resolve(sku)
            entry = entries[sku]
            if entry is None:
                result.errors.append(f'Row {row_num}: SKU "{sku}" not found in products or variations')
                continue

            if not raw_date:
                result.errors.append(f"Row {row_num}: Missing Expiry Date")
                continue
            expiry_date = parse_day_first_date(raw_date)
            if expiry_date is None:
                result.errors.append(f"Row {row_num}: Invalid date format. Use DD/MM/YYYY")
                continue

            if not raw_qty:
                result.errors.append(f"Row {row_num}: Missing Quantity")
                continue
            quantity = parse_positive_int(raw_qty)
            if quantity is None:
                result.errors.append(f"Row {row_num}: Quantity must be a positive number")
                continue

            if sku not in states:
                states[sku] = await self.ledger.batch_state(sku)
                existing_qty[sku] = states[sku].total_quantity
            state = states[sku]

            if batch_number and batch_number in conflicted.get(sku, ()):
                result.errors.append(
                    f'Row {row_num}: Duplicate Batch Number "{batch_number}" for SKU "{sku}" in the import file'
                )
                continue

            try:
                state.check(batch_number, row=row_num)
            except DuplicateBatchError as e:
                key = (sku, batch_number)
                if key in accepted_by_batch:
                    # Same batch twice in one file: trust neither row
                    index = accepted_by_batch.pop(key)
                    first_row, first = accepted[index]
                    accepted[index] = None
                    state.exclude(batch_number, first.quantity)
                    conflicted.setdefault(sku, set()).add(batch_number)
                    result.errors.append(
                        f'Row {row_num}: Duplicate Batch Number "{batch_number}" for SKU "{sku}" '
                        f"in the import file (also on row {first_row})"
                    )
                else:
                    result.errors.append(str(e))
                continue
            except ValidationFailed as e:
                result.errors.append(str(e))
                continue

            if sku not in stocks:
                stocks[sku] = await self.reconciler.stock_for_sku(sku)

            record = ExpiryRecordIn(
                product_id=entry.product_id,
                variation_id=entry.variation_id,
                product_name=entry.name,
                sku=sku,
                expiry_date=expiry_date,
                batch_number=batch_number,
                quantity=quantity,
                stock_quantity=stocks[sku],
                notes=notes,
            )
            state.include(batch_number, quantity)
            accepted.append((row_num, record))
            if batch_number:
                accepted_by_batch[(sku, batch_number)] = len(accepted) - 1

        result.valid_records = [a[1] for a in accepted if a is not None]

        importing: Dict[str, int] = {}
        for rec in result.valid_records:
            importing[rec.sku] = importing.get(rec.sku, 0) + rec.quantity
        for sku, import_qty in importing.items():
            existing = existing_qty.get(sku, 0)
            stock = stocks.get(sku, 0)
            total = existing + import_qty
            if total > stock:
                result.warnings.append(
                    f'Total quantity ({total}) for SKU "{sku}" exceeds current stock ({stock}). '
                    f"Existing: {existing}, Importing: {import_qty}"
                )

        return result


@dataclass
class ImportOutcome:
    validation: ImportValidationResult
    imported_ids: List[int] = field(default_factory=list)

    @property
    def summary(self) -> str:
        skipped = len(self.validation.errors)
        return f"{len(self.imported_ids)} imported, {skipped} skipped"


class ExpiryImporter:
    """Validate rows, then write the valid ones through the ledger."""

    def __init__(self, db: AsyncSession, catalog: Optional[CatalogService] = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)
        self.validator = ExpiryImportValidator(db, self.catalog)
        self.ledger = ExpiryLedgerService(db, self.catalog)

    async def import_rows(self, rows: Sequence[Mapping[str, Any]], partial: bool = False) -> ImportOutcome:
        """
        With partial=False nothing is written while any row has an error;
        with partial=True the valid rows are written and the rest reported.
        """
        validation = await self.validator.validate(rows)
        outcome = ImportOutcome(validation=validation)
        if not validation.valid_records:
            return outcome
        if validation.errors and not partial:
            return outcome

        outcome.imported_ids = await self.ledger.add_bulk(validation.valid_records)
        logger.info("Expiry import: %s", outcome.summary)
        return outcome
