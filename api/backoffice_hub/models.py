# backoffice_hub/models.py
"""
Pydantic schemas for the API boundary.

Request bodies turn blank strings into None. Patch models are dumped with
exclude_unset so only the fields the caller sent reach the services.
"""
from __future__ import annotations
import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Annotated
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from .db_models import PurchaseOrderStatus

def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v.strip() if isinstance(v, str) else v

OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]

# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------

class PurchaseOrderItemIn(BaseModel):
    sku: str = Field(min_length=1)
    product_name: str = ""
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    quantity_received: Optional[int] = Field(default=None, ge=0)
    batch_number: OptionalText = None
    expiry_date: Optional[dt.date] = None
    notes: OptionalText = None

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, v):
        return v.strip() if isinstance(v, str) else v

class PurchaseOrderItemPatch(BaseModel):
    product_name: Optional[str] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    quantity_received: Optional[int] = Field(default=None, ge=0)
    batch_number: OptionalText = None
    expiry_date: Optional[dt.date] = None
    notes: OptionalText = None

class PurchaseOrderIn(BaseModel):
    date: dt.date
    supplier_id: Optional[int] = None
    supplier_name: str = Field(min_length=1)
    reference_number: str = ""
    payment_method: str = ""
    status: PurchaseOrderStatus = PurchaseOrderStatus.ordered
    notes: OptionalText = None
    expiry_date: Optional[dt.date] = None

class PurchaseOrderPatch(BaseModel):
    date: Optional[dt.date] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    reference_number: Optional[str] = None
    payment_method: Optional[str] = None
    status: Optional[PurchaseOrderStatus] = None
    notes: OptionalText = None
    expiry_date: Optional[dt.date] = None

class PurchaseOrderFilters(BaseModel):
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    supplier: Optional[str] = None
    status: Optional[PurchaseOrderStatus] = None

class PurchaseOrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    purchase_order_id: int
    sku: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    quantity_received: Optional[int] = None
    batch_number: OptionalText = None
    expiry_date: Optional[dt.date] = None
    notes: OptionalText = None
    stock_applied: int = 0

class PurchaseOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: dt.date
    supplier_id: Optional[int] = None
    supplier_name: str
    reference_number: str
    total_amount: Decimal
    payment_method: str
    status: PurchaseOrderStatus
    notes: OptionalText = None
    expiry_date: Optional[dt.date] = None
    created_at: datetime
    updated_at: datetime

class PurchaseOrderWithItemsOut(PurchaseOrderOut):
    items: List[PurchaseOrderItemOut] = Field(default_factory=list)

class PurchaseOrderWriteIn(BaseModel):
    order: PurchaseOrderIn
    items: List[PurchaseOrderItemIn] = Field(default_factory=list)

class PurchaseOrderUpdateIn(BaseModel):
    order: PurchaseOrderPatch = Field(default_factory=PurchaseOrderPatch)
    items: Optional[List[PurchaseOrderItemIn]] = None

class ItemOutcomeOut(BaseModel):
    sku: str
    batch_number: OptionalText = None
    action: str
    status: str
    message: str = ""

class OrderWriteOut(BaseModel):
    order_id: int
    summary: str
    outcomes: List[ItemOutcomeOut]

# ---------------------------------------------------------------------------
# Expiry ledger
# ---------------------------------------------------------------------------

class ExpiryRecordIn(BaseModel):
    sku: str = Field(min_length=1)
    expiry_date: dt.date
    quantity: int
    batch_number: OptionalText = None
    product_id: Optional[int] = None
    variation_id: Optional[int] = None
    product_name: OptionalText = None
    stock_quantity: Optional[int] = None
    notes: OptionalText = None

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, v):
        return v.strip() if isinstance(v, str) else v

class ExpiryRecordPatch(BaseModel):
    sku: Optional[str] = None
    expiry_date: Optional[dt.date] = None
    quantity: Optional[int] = None
    batch_number: OptionalText = None
    product_name: OptionalText = None
    stock_quantity: Optional[int] = None
    notes: OptionalText = None

class ExpiryRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    variation_id: Optional[int] = None
    sku: str
    product_name: OptionalText = None
    expiry_date: dt.date
    batch_number: OptionalText = None
    quantity: int
    stock_quantity: Optional[int] = None
    notes: OptionalText = None
    created_at: datetime
    updated_at: datetime

class SkuExpirySummaryOut(BaseModel):
    sku: str
    product_name: str
    total_quantity: int
    stock_quantity: int
    batch_count: int
    earliest_expiry: dt.date
    stock_exceeded: bool

class ExpiryImportOut(BaseModel):
    valid: bool
    errors: List[str]
    warnings: List[str]
    records: List[ExpiryRecordIn] = Field(default_factory=list)
    imported_ids: List[int] = Field(default_factory=list)

class SkuLedgerOut(BaseModel):
    sku: str
    records: List[ExpiryRecordOut]
    total_quantity: int
    batch_numbers: List[str]
    has_existing_batches: bool
    stock_warning: Optional[str] = None

class ExpiryWriteOut(BaseModel):
    id: int
    stock_warning: Optional[str] = None
