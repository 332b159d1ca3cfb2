# backoffice_hub/errors.py
"""
Exceptions raised by the back-office services.

Every message is written for direct display: it names the SKU, batch
number and row involved so the user can fix the input.
"""
from __future__ import annotations
from typing import Optional


class BackofficeError(Exception):
    """Base class for all service errors."""


class ValidationFailed(BackofficeError):
    """Caller-fixable input error; raised before anything is written."""


class DuplicateBatchError(ValidationFailed):
    def __init__(self, sku: str, batch_number: str, row: Optional[int] = None):
        self.sku = sku
        self.batch_number = batch_number
        self.row = row
        prefix = f"Row {row}: " if row is not None else ""
        super().__init__(
            f'{prefix}Batch Number "{batch_number}" already exists for SKU "{sku}"'
        )


class StatusTransitionError(ValidationFailed):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change purchase order status from '{current}' to '{requested}'"
        )


class BatchConflictError(BackofficeError):
    """Batch number collision detected by the database at write time."""

    def __init__(self, sku: str, batch_number: Optional[str]):
        self.sku = sku
        self.batch_number = batch_number
        super().__init__(
            f'Batch Number "{batch_number}" for SKU "{sku}" was written concurrently; reload and retry'
        )


class NotFoundError(BackofficeError):
    pass
