"""
Tests for the expiry batch ledger.
"""
from datetime import date, timedelta

import pytest

from backoffice_hub.errors import DuplicateBatchError, NotFoundError, ValidationFailed
from backoffice_hub.models import ExpiryRecordIn, ExpiryRecordPatch
from backoffice_hub.services.expiry import ExpiryLedgerService, SkuBatchState

from conftest import PARENT_TEE_ID, RED_M_VARIATION_ID


def rec(sku, batch, qty, expiry=date(2030, 1, 31), **kw):
    return ExpiryRecordIn(sku=sku, batch_number=batch, quantity=qty, expiry_date=expiry, **kw)


# ---------------------------------------------------------------------------
# Batch number rules
# ---------------------------------------------------------------------------

def test_batch_state_rules():
    state = SkuBatchState(sku="X")
    state.check(None)  # first record may be unbatched
    state.include("B1", 5)

    with pytest.raises(DuplicateBatchError) as exc:
        state.check("B1", row=4)
    assert str(exc.value) == 'Row 4: Batch Number "B1" already exists for SKU "X"'

    with pytest.raises(ValidationFailed):
        state.check(None)

    state.exclude("B1", 5)
    assert not state.has_existing_batches
    state.check("B1")


async def test_duplicate_batch_rejected_and_new_batch_accepted(db):
    ledger = ExpiryLedgerService(db)
    await ledger.add(rec("X", "B1", 5))

    with pytest.raises(DuplicateBatchError) as exc:
        await ledger.add(rec("X", "B1", 3))
    assert 'Batch Number "B1" already exists for SKU "X"' in str(exc.value)

    await ledger.add(rec("X", "B2", 3))
    assert await ledger.total_quantity_by_sku("X") == 8
    assert await ledger.batch_numbers_by_sku("X") == ["B1", "B2"]


async def test_batch_number_required_once_sku_has_records(db):
    ledger = ExpiryLedgerService(db)
    assert not await ledger.has_existing_batches("X")

    await ledger.add(rec("X", None, 5))
    assert await ledger.has_existing_batches("X")

    with pytest.raises(ValidationFailed) as exc:
        await ledger.add(rec("X", None, 2))
    assert "Batch Number is required" in str(exc.value)

    # The unbatched record must be named before more batches can join it
    with pytest.raises(ValidationFailed):
        await ledger.add(rec("X", "B1", 2))

    assert len(await ledger.list_by_sku("X")) == 1


async def test_same_batch_number_is_fine_for_another_sku(db):
    ledger = ExpiryLedgerService(db)
    await ledger.add(rec("X", "B1", 1))
    await ledger.add(rec("Y", "B1", 1))
    assert await ledger.batch_numbers_by_sku("Y") == ["B1"]


async def test_add_rejects_non_positive_quantity(db):
    with pytest.raises(ValidationFailed):
        await ExpiryLedgerService(db).add(rec("X", "B1", 0))


async def test_add_resolves_variation_identity(db):
    ledger = ExpiryLedgerService(db)
    record_id = await ledger.add(rec("P1-RED-M", "LOT7", 2))

    stored = await ledger.get(record_id)
    assert stored.product_id == PARENT_TEE_ID
    assert stored.variation_id == RED_M_VARIATION_ID
    assert stored.product_name == "Parent Tee (Red, M)"
    assert stored.stock_quantity == 4


# ---------------------------------------------------------------------------
# Bulk writes
# ---------------------------------------------------------------------------

async def test_add_bulk_is_all_or_nothing(db):
    ledger = ExpiryLedgerService(db)
    await ledger.add(rec("X", "B1", 5))

    with pytest.raises(ValidationFailed) as exc:
        await ledger.add_bulk([rec("X", "B2", 1), rec("X", "B1", 1), rec("Y", "B3", 1)])
    assert "SKU: X, Batch: B1" in str(exc.value)
    assert len(await ledger.list_all()) == 1


async def test_add_bulk_checks_duplicates_inside_the_batch(db):
    ledger = ExpiryLedgerService(db)
    with pytest.raises(ValidationFailed) as exc:
        await ledger.add_bulk([rec("Y", "B1", 1), rec("Y", "B1", 2)])
    assert "SKU: Y, Batch: B1" in str(exc.value)
    assert await ledger.list_all() == []


async def test_add_bulk_writes_every_record(db):
    ledger = ExpiryLedgerService(db)
    ids = await ledger.add_bulk([rec("X", "B1", 1), rec("X", "B2", 2), rec("Y", "L1", 3)])
    assert len(ids) == 3
    assert await ledger.total_quantity_by_sku("X") == 3


# ---------------------------------------------------------------------------
# Update / delete
# ---------------------------------------------------------------------------

async def test_update_checks_batch_only_when_it_changes(db):
    ledger = ExpiryLedgerService(db)
    first = await ledger.add(rec("X", "B1", 5))
    await ledger.add(rec("X", "B2", 5))

    updated = await ledger.update(first, ExpiryRecordPatch(quantity=9))
    assert updated.quantity == 9
    assert updated.batch_number == "B1"

    with pytest.raises(DuplicateBatchError):
        await ledger.update(first, ExpiryRecordPatch(batch_number="B2"))

    await ledger.update(first, ExpiryRecordPatch(batch_number="B3"))
    assert await ledger.batch_numbers_by_sku("X") == ["B2", "B3"]
    assert await ledger.batch_numbers_by_sku("X", excluding=first) == ["B2"]


async def test_moving_a_record_to_another_sku_follows_the_catalog(db):
    ledger = ExpiryLedgerService(db)
    record_id = await ledger.add(rec("X", "B1", 5))

    moved = await ledger.update(record_id, ExpiryRecordPatch(sku="Y"))
    assert moved.product_id == 2
    assert moved.variation_id is None
    assert moved.product_name == "Yoghurt Y"
    assert moved.stock_quantity == 100

    details = {r.id: r for r in await ledger.list_with_details()}
    assert details[record_id].sku == "Y"
    assert details[record_id].product_name == "Yoghurt Y"
    assert details[record_id].stock_quantity == 100

    # Variation SKU: product points at the parent
    await ledger.update(record_id, ExpiryRecordPatch(sku="P1-RED-M"))
    stored = await ledger.get(record_id)
    assert stored.product_id == PARENT_TEE_ID
    assert stored.variation_id == RED_M_VARIATION_ID
    assert stored.product_name == "Parent Tee (Red, M)"


async def test_update_and_delete_unknown_record(db):
    ledger = ExpiryLedgerService(db)
    with pytest.raises(NotFoundError):
        await ledger.update(999, ExpiryRecordPatch(quantity=1))
    with pytest.raises(NotFoundError):
        await ledger.delete(999)


async def test_delete_frees_the_batch_number(db):
    ledger = ExpiryLedgerService(db)
    record_id = await ledger.add(rec("X", "B1", 5))
    await ledger.delete(record_id)
    assert not await ledger.has_existing_batches("X")
    await ledger.add(rec("X", "B1", 2))


# ---------------------------------------------------------------------------
# Listings and reports
# ---------------------------------------------------------------------------

async def test_list_with_details_joins_the_catalog(db):
    ledger = ExpiryLedgerService(db)
    await ledger.add(rec("X", "B1", 5))
    await ledger.add(rec("GHOST", "G1", 1))

    details = {r.sku: r for r in await ledger.list_with_details()}
    assert details["X"].product_name == "Widget X"
    assert details["X"].stock_quantity == 10
    assert details["GHOST"].product_name == "Unknown Product"
    assert details["GHOST"].stock_quantity == 0


async def test_expiring_within_includes_already_expired(db):
    today = date(2026, 3, 1)
    ledger = ExpiryLedgerService(db)
    await ledger.add(rec("X", "SOON", 1, expiry=today + timedelta(days=10)))
    await ledger.add(rec("X", "LATER", 1, expiry=today + timedelta(days=200)))
    await ledger.add(rec("Y", "PAST", 1, expiry=today - timedelta(days=5)))

    expiring = await ledger.expiring_within(30, today=today)
    assert [r.batch_number for r in expiring] == ["PAST", "SOON"]

    newest_first = await ledger.list_by_expiry_date(ascending=False)
    assert newest_first[0].batch_number == "LATER"


async def test_stock_warning_and_summaries(db):
    ledger = ExpiryLedgerService(db)
    await ledger.add(rec("X", "B1", 8))
    assert await ledger.stock_warning("X") is None

    await ledger.add(rec("X", "B2", 5, expiry=date(2029, 6, 30)))
    assert await ledger.stock_warning("X") == 'Total quantity (13) for SKU "X" exceeds current stock (10)'

    summaries = {s.sku: s for s in await ledger.sku_summaries()}
    x = summaries["X"]
    assert x.total_quantity == 13
    assert x.batch_count == 2
    assert x.stock_exceeded
    assert x.earliest_expiry == date(2029, 6, 30)
