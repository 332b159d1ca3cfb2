"""
Tests for bulk expiry import validation and writing.
"""
from datetime import date

from backoffice_hub.models import ExpiryRecordIn
from backoffice_hub.services.expiry import ExpiryLedgerService
from backoffice_hub.services.expiry_import import ExpiryImporter, ExpiryImportValidator


def row(sku, expiry="31/12/2030", qty="1", batch="", notes=""):
    return {"SKU": sku, "Expiry Date": expiry, "Quantity": qty, "Batch Number": batch, "Notes": notes}


async def _ledger_add(db, sku, batch, qty):
    await ExpiryLedgerService(db).add(
        ExpiryRecordIn(sku=sku, batch_number=batch, quantity=qty, expiry_date=date(2030, 1, 1))
    )


async def test_same_batch_twice_in_file_is_one_error_and_no_valid_rows(db):
    result = await ExpiryImportValidator(db).validate([
        row("Y", batch="B9", qty="2"),
        row("Y", batch="B9", qty="3"),
    ])
    assert len(result.errors) == 1
    assert result.errors[0].startswith('Row 3: Duplicate Batch Number "B9" for SKU "Y"')
    assert "also on row 2" in result.errors[0]
    assert [r for r in result.valid_records if r.sku == "Y"] == []
    assert not result.valid


async def test_valid_file(db):
    result = await ExpiryImportValidator(db).validate([
        row("X", expiry="05/03/2030", qty="2", batch="B1", notes="first"),
        row("P1-RED-M", qty="1", batch="L1"),
    ])
    assert result.valid
    assert result.errors == []
    first, second = result.valid_records
    assert first.expiry_date == date(2030, 3, 5)
    assert first.product_name == "Widget X"
    assert first.notes == "first"
    assert second.variation_id is not None
    assert second.product_name == "Parent Tee (Red, M)"


async def test_empty_input_and_missing_columns(db):
    validator = ExpiryImportValidator(db)
    assert (await validator.validate([])).errors == ["No data found in CSV file"]

    result = await validator.validate([{"SKU": "X", "Expiry Date": "31/12/2030"}])
    assert result.errors == ["Missing required field: Quantity"]


async def test_row_level_errors_carry_row_numbers(db):
    result = await ExpiryImportValidator(db).validate([
        row("NOPE", batch="B1"),
        row("X", expiry="31/02/2030", batch="B1"),
        row("X", qty="0", batch="B2"),
        row("X", qty="abc", batch="B3"),
        row("", qty="1"),
        row("X", expiry="", batch="B4"),
    ])
    assert result.errors == [
        'Row 2: SKU "NOPE" not found in products or variations',
        "Row 3: Invalid date format. Use DD/MM/YYYY",
        "Row 4: Quantity must be a positive number",
        "Row 5: Quantity must be a positive number",
        "Row 6: Missing SKU",
        "Row 7: Missing Expiry Date",
    ]
    assert result.valid_records == []


async def test_quantity_must_be_plain_digits(db):
    result = await ExpiryImportValidator(db).validate([
        row("X", qty="1_000", batch="B1"),
        row("X", qty="\u0661\u0662", batch="B2"),
        row("X", qty="+3", batch="B3"),
        row("X", qty="12", batch="B4"),
    ])
    assert result.errors == [
        "Row 2: Quantity must be a positive number",
        "Row 3: Quantity must be a positive number",
        "Row 4: Quantity must be a positive number",
    ]
    assert [r.quantity for r in result.valid_records] == [12]


async def test_batch_checks_against_the_ledger(db):
    await _ledger_add(db, "X", "B1", 6)

    result = await ExpiryImportValidator(db).validate([
        row("X", batch="B1"),
        row("X", batch=""),
        row("X", batch="B2", qty="5"),
    ])
    assert result.errors == [
        'Row 2: Batch Number "B1" already exists for SKU "X"',
        'Row 3: Batch Number is required for SKU "X" because it already has expiry records',
    ]
    assert [r.batch_number for r in result.valid_records] == ["B2"]
    # Widget X stock is 10: 6 in the ledger + 5 imported
    assert result.warnings == [
        'Total quantity (11) for SKU "X" exceeds current stock (10). Existing: 6, Importing: 5'
    ]


async def test_unbatched_row_blocks_later_batches_of_same_sku(db):
    result = await ExpiryImportValidator(db).validate([
        row("Y", batch=""),
        row("Y", batch="B5"),
    ])
    assert len(result.valid_records) == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Row 3:")


async def test_validation_is_repeatable(db):
    rows = [row("X", batch="B1"), row("X", batch="B1"), row("NOPE")]
    validator = ExpiryImportValidator(db)
    first = await validator.validate(rows)
    second = await validator.validate(rows)
    assert first.errors == second.errors
    assert first.warnings == second.warnings
    assert first.valid_records == second.valid_records


async def test_importer_writes_nothing_when_a_row_fails(db):
    outcome = await ExpiryImporter(db).import_rows([row("X", batch="B1"), row("NOPE")])
    assert outcome.imported_ids == []
    assert outcome.summary == "0 imported, 1 skipped"
    assert await ExpiryLedgerService(db).list_all() == []


async def test_importer_partial_writes_valid_rows(db):
    outcome = await ExpiryImporter(db).import_rows(
        [row("X", batch="B1", qty="2"), row("NOPE"), row("Y", batch="L1", qty="3")],
        partial=True,
    )
    assert len(outcome.imported_ids) == 2
    assert outcome.summary == "2 imported, 1 skipped"

    ledger = ExpiryLedgerService(db)
    assert await ledger.total_quantity_by_sku("X") == 2
    assert await ledger.total_quantity_by_sku("Y") == 3
