# backoffice_hub/routers/expiry.py
"""
Expiry Router - batch ledger CRUD, reports and the CSV import flow.

Import is two-step: /import/validate reports errors and warnings without
writing, /import writes the valid rows.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_hub.database import get_session
from backoffice_hub.errors import BackofficeError
from backoffice_hub.models import (
    ExpiryImportOut, ExpiryRecordIn, ExpiryRecordOut, ExpiryRecordPatch,
    ExpiryWriteOut, SkuExpirySummaryOut, SkuLedgerOut,
)
from backoffice_hub.routers.common import http_error, read_upload
from backoffice_hub.services.expiry import ExpiryLedgerService
from backoffice_hub.services.expiry_import import ExpiryImporter, ExpiryImportValidator
from backoffice_hub.utils import csv_rows, expiry_template

router = APIRouter(prefix="/expiry", tags=["Expiry"])


# ============================================================================
# Reports
# ============================================================================

@router.get("", response_model=List[ExpiryRecordOut])
async def list_expiry_records(db: AsyncSession = Depends(get_session)):
    return await ExpiryLedgerService(db).list_with_details()


@router.get("/by-date", response_model=List[ExpiryRecordOut])
async def list_by_expiry_date(
    ascending: bool = Query(True),
    db: AsyncSession = Depends(get_session),
):
    return await ExpiryLedgerService(db).list_by_expiry_date(ascending=ascending)


@router.get("/expiring", response_model=List[ExpiryRecordOut])
async def list_expiring(
    days: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_session),
):
    return await ExpiryLedgerService(db).expiring_within(days)


@router.get("/summary", response_model=List[SkuExpirySummaryOut])
async def sku_summaries(db: AsyncSession = Depends(get_session)):
    return await ExpiryLedgerService(db).sku_summaries()


@router.get("/template")
async def download_template():
    return Response(
        content=expiry_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="product_expiry_template.csv"'},
    )


@router.get("/sku/{sku}", response_model=SkuLedgerOut)
async def sku_ledger(sku: str, db: AsyncSession = Depends(get_session)):
    ledger = ExpiryLedgerService(db)
    records = await ledger.list_by_sku(sku)
    return SkuLedgerOut(
        sku=sku,
        records=[ExpiryRecordOut.model_validate(r) for r in records],
        total_quantity=await ledger.total_quantity_by_sku(sku),
        batch_numbers=await ledger.batch_numbers_by_sku(sku),
        has_existing_batches=await ledger.has_existing_batches(sku),
        stock_warning=await ledger.stock_warning(sku),
    )


# ============================================================================
# Writes
# ============================================================================

@router.post("", response_model=ExpiryWriteOut)
async def add_expiry_record(body: ExpiryRecordIn, db: AsyncSession = Depends(get_session)):
    ledger = ExpiryLedgerService(db)
    try:
        record_id = await ledger.add(body)
    except BackofficeError as e:
        raise http_error(e)
    return ExpiryWriteOut(id=record_id, stock_warning=await ledger.stock_warning(body.sku))


@router.post("/bulk")
async def add_expiry_records(body: List[ExpiryRecordIn], db: AsyncSession = Depends(get_session)):
    try:
        ids = await ExpiryLedgerService(db).add_bulk(body)
    except BackofficeError as e:
        raise http_error(e)
    return {"ok": True, "ids": ids}


@router.put("/{record_id}", response_model=ExpiryRecordOut)
async def update_expiry_record(
    record_id: int,
    body: ExpiryRecordPatch,
    db: AsyncSession = Depends(get_session),
):
    try:
        rec = await ExpiryLedgerService(db).update(record_id, body)
    except BackofficeError as e:
        raise http_error(e)
    return rec


@router.delete("/{record_id}")
async def delete_expiry_record(record_id: int, db: AsyncSession = Depends(get_session)):
    try:
        await ExpiryLedgerService(db).delete(record_id)
    except BackofficeError as e:
        raise http_error(e)
    return {"ok": True, "deleted": record_id}


# ============================================================================
# CSV import
# ============================================================================

async def _upload_rows(file: UploadFile):
    data = await read_upload(file)
    try:
        return csv_rows(data)
    except ValueError as e:
        raise HTTPException(400, detail=f"Failed to parse CSV: {e}")


@router.post("/import/validate", response_model=ExpiryImportOut)
async def validate_import(file: UploadFile = File(...), db: AsyncSession = Depends(get_session)):
    rows = await _upload_rows(file)
    result = await ExpiryImportValidator(db).validate(rows)
    return ExpiryImportOut(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        records=result.valid_records,
    )


@router.post("/import", response_model=ExpiryImportOut)
async def import_records(
    file: UploadFile = File(...),
    partial: bool = Query(False, description="Write the valid rows even when other rows fail"),
    db: AsyncSession = Depends(get_session),
):
    rows = await _upload_rows(file)
    try:
        outcome = await ExpiryImporter(db).import_rows(rows, partial=partial)
    except BackofficeError as e:
        raise http_error(e)
    v = outcome.validation
    return ExpiryImportOut(
        valid=v.valid,
        errors=v.errors,
        warnings=v.warnings,
        records=v.valid_records,
        imported_ids=outcome.imported_ids,
    )
