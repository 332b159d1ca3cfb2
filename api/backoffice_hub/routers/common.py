# backoffice_hub/routers/common.py
from __future__ import annotations
from dataclasses import asdict

from fastapi import HTTPException, UploadFile

from backoffice_hub.errors import (
    BackofficeError, BatchConflictError, NotFoundError, ValidationFailed,
)
from backoffice_hub.models import ItemOutcomeOut, OrderWriteOut
from backoffice_hub.services.purchase_orders import OrderWriteResult


def http_error(exc: BackofficeError) -> HTTPException:
    """Service error -> HTTPException carrying the display message."""
    if isinstance(exc, NotFoundError):
        return HTTPException(404, detail=str(exc))
    if isinstance(exc, BatchConflictError):
        return HTTPException(409, detail=str(exc))
    if isinstance(exc, ValidationFailed):
        return HTTPException(400, detail=str(exc))
    return HTTPException(500, detail=str(exc))


def write_out(result: OrderWriteResult) -> OrderWriteOut:
    return OrderWriteOut(
        order_id=result.order_id,
        summary=result.summary,
        outcomes=[ItemOutcomeOut(**asdict(o)) for o in result.outcomes],
    )


async def read_upload(file: UploadFile) -> bytes:
    name = (file.filename or "").lower()
    if name and not name.endswith(".csv"):
        raise HTTPException(400, detail="Upload a .csv file")
    return await file.read()
