# backoffice_hub/services/__init__.py
"""
Business logic services for Backoffice Hub.
"""
from backoffice_hub.services.catalog import CatalogService, CatalogEntry
from backoffice_hub.services.inventory import InventoryReconciler
from backoffice_hub.services.expiry import ExpiryLedgerService, SkuBatchState
from backoffice_hub.services.expiry_import import (
    ExpiryImportValidator, ExpiryImporter, ImportValidationResult, ImportOutcome,
)
from backoffice_hub.services.purchase_orders import (
    PurchaseOrderService, ItemOutcome, OrderWriteResult, check_transition,
)

__all__ = [
    "CatalogService",
    "CatalogEntry",
    "InventoryReconciler",
    "ExpiryLedgerService",
    "SkuBatchState",
    "ExpiryImportValidator",
    "ExpiryImporter",
    "ImportValidationResult",
    "ImportOutcome",
    "PurchaseOrderService",
    "ItemOutcome",
    "OrderWriteResult",
    "check_transition",
]
