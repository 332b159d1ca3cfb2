# backoffice_hub/routers/purchase_orders.py
"""
Purchase Orders Router - orders, items and the item upload template.
"""
from __future__ import annotations
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_hub.database import get_session
from backoffice_hub.db_models import PurchaseOrderStatus
from backoffice_hub.errors import BackofficeError
from backoffice_hub.models import (
    OrderWriteOut, PurchaseOrderFilters, PurchaseOrderItemIn, PurchaseOrderItemOut,
    PurchaseOrderItemPatch, PurchaseOrderOut, PurchaseOrderUpdateIn,
    PurchaseOrderWithItemsOut, PurchaseOrderWriteIn,
)
from backoffice_hub.routers.common import http_error, read_upload, write_out
from backoffice_hub.services.purchase_orders import PurchaseOrderService
from backoffice_hub.utils import parse_purchase_order_items, purchase_order_template

router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])


@router.get("", response_model=List[PurchaseOrderOut])
async def list_purchase_orders(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    supplier: Optional[str] = Query(None),
    status: Optional[PurchaseOrderStatus] = Query(None),
    db: AsyncSession = Depends(get_session),
):
    filters = PurchaseOrderFilters(start_date=start_date, end_date=end_date, supplier=supplier, status=status)
    return await PurchaseOrderService(db).list(filters)


@router.post("", response_model=OrderWriteOut)
async def create_purchase_order(body: PurchaseOrderWriteIn, db: AsyncSession = Depends(get_session)):
    try:
        result = await PurchaseOrderService(db).create(body.order, body.items)
    except BackofficeError as e:
        raise http_error(e)
    return write_out(result)


@router.get("/template")
async def download_item_template():
    return Response(
        content=purchase_order_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="purchase_order_items_template.csv"'},
    )


@router.post("/items/parse", response_model=List[PurchaseOrderItemIn])
async def parse_item_upload(file: UploadFile = File(...)):
    """Read an item CSV into draft lines; nothing is stored."""
    data = await read_upload(file)
    try:
        return parse_purchase_order_items(data)
    except ValueError as e:
        raise HTTPException(400, detail=f"Failed to parse CSV: {e}")


@router.get("/by-sku/{sku}", response_model=List[PurchaseOrderItemOut])
async def items_by_sku(sku: str, db: AsyncSession = Depends(get_session)):
    return await PurchaseOrderService(db).items_by_sku(sku)


@router.get("/total")
async def total_purchase_amount(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_session),
):
    total = await PurchaseOrderService(db).total_purchase_amount(start_date, end_date)
    return {"start_date": start_date, "end_date": end_date, "total": str(total)}


@router.patch("/items/{item_id}", response_model=OrderWriteOut)
async def update_purchase_order_item(
    item_id: int,
    body: PurchaseOrderItemPatch,
    db: AsyncSession = Depends(get_session),
):
    try:
        result = await PurchaseOrderService(db).update_item(item_id, body)
    except BackofficeError as e:
        raise http_error(e)
    return write_out(result)


@router.get("/{order_id}", response_model=PurchaseOrderWithItemsOut)
async def get_purchase_order(order_id: int, db: AsyncSession = Depends(get_session)):
    po = await PurchaseOrderService(db).get_with_items(order_id)
    if po is None:
        raise HTTPException(404, detail=f"Purchase order {order_id} not found")
    return po


@router.put("/{order_id}", response_model=OrderWriteOut)
async def update_purchase_order(
    order_id: int,
    body: PurchaseOrderUpdateIn,
    db: AsyncSession = Depends(get_session),
):
    try:
        result = await PurchaseOrderService(db).update(order_id, body.order, body.items)
    except BackofficeError as e:
        raise http_error(e)
    return write_out(result)


@router.delete("/{order_id}")
async def delete_purchase_order(order_id: int, db: AsyncSession = Depends(get_session)):
    try:
        await PurchaseOrderService(db).delete(order_id)
    except BackofficeError as e:
        raise http_error(e)
    return {"ok": True, "deleted": order_id}
