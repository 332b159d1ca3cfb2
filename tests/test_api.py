"""
HTTP tests over the ASGI app (one committed transaction per request).
"""
from decimal import Decimal

EXPIRY_HEADER = "SKU,Expiry Date,Quantity,Batch Number,Notes\n"


def _csv(body: str):
    return {"file": ("expiry.csv", (EXPIRY_HEADER + body).encode("utf-8"), "text/csv")}


async def test_purchase_order_lifecycle(client):
    resp = await client.post("/purchase-orders", json={
        "order": {"date": "2025-01-15", "supplier_name": "Acme Foods", "reference_number": "PO-1"},
        "items": [
            {"sku": "A", "quantity": 5, "unit_price": "2.00"},
            {"sku": "B", "quantity": 3, "unit_price": "10.00"},
        ],
    })
    assert resp.status_code == 200
    order_id = resp.json()["order_id"]

    po = (await client.get(f"/purchase-orders/{order_id}")).json()
    assert po["status"] == "ordered"
    assert Decimal(str(po["total_amount"])) == Decimal("40")
    assert len(po["items"]) == 2

    item_id = po["items"][0]["id"]
    resp = await client.patch(f"/purchase-orders/items/{item_id}", json={"quantity": 10})
    assert resp.status_code == 200
    po = (await client.get(f"/purchase-orders/{order_id}")).json()
    assert Decimal(str(po["total_amount"])) == Decimal("50")

    resp = await client.put(f"/purchase-orders/{order_id}", json={"order": {"status": "received"}})
    assert resp.status_code == 200
    assert resp.json()["summary"] == "2 applied, 0 skipped, 0 failed"

    resp = await client.put(f"/purchase-orders/{order_id}", json={"order": {"status": "ordered"}})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot change purchase order status from 'received' to 'ordered'"

    listed = (await client.get("/purchase-orders", params={"status": "received"})).json()
    assert [p["id"] for p in listed] == [order_id]

    by_sku = (await client.get("/purchase-orders/by-sku/A")).json()
    assert by_sku[0]["quantity"] == 10
    assert by_sku[0]["stock_applied"] == 10

    assert (await client.delete(f"/purchase-orders/{order_id}")).status_code == 200
    assert (await client.get(f"/purchase-orders/{order_id}")).status_code == 404
    assert (await client.delete(f"/purchase-orders/{order_id}")).status_code == 404


async def test_create_rejects_invalid_item(client):
    resp = await client.post("/purchase-orders", json={
        "order": {"date": "2025-01-15", "supplier_name": "Acme Foods"},
        "items": [{"sku": "A", "quantity": 0, "unit_price": "2.00"}],
    })
    assert resp.status_code == 422


async def test_expiry_record_endpoints(client):
    record = {"sku": "X", "expiry_date": "2030-01-31", "quantity": 5, "batch_number": "B1"}
    resp = await client.post("/expiry", json=record)
    assert resp.status_code == 200
    record_id = resp.json()["id"]
    assert resp.json()["stock_warning"] is None

    resp = await client.post("/expiry", json={**record, "quantity": 3})
    assert resp.status_code == 400
    assert resp.json()["detail"] == 'Batch Number "B1" already exists for SKU "X"'

    resp = await client.post("/expiry", json={**record, "batch_number": "B2", "quantity": 8})
    assert resp.json()["stock_warning"] == 'Total quantity (13) for SKU "X" exceeds current stock (10)'

    ledger = (await client.get("/expiry/sku/X")).json()
    assert ledger["total_quantity"] == 13
    assert ledger["batch_numbers"] == ["B1", "B2"]
    assert ledger["has_existing_batches"] is True

    resp = await client.put(f"/expiry/{record_id}", json={"quantity": 2})
    assert resp.status_code == 200
    assert resp.json()["quantity"] == 2

    summary = (await client.get("/expiry/summary")).json()
    assert summary[0]["sku"] == "X"
    assert summary[0]["total_quantity"] == 10

    assert (await client.delete("/expiry/999")).status_code == 404


async def test_import_validate_reports_in_file_duplicates(client):
    resp = await client.post("/expiry/import/validate", files=_csv("Y,31/12/2030,2,B9,\nY,31/12/2030,3,B9,\n"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"] is False
    assert len(body["errors"]) == 1
    assert body["records"] == []
    assert (await client.get("/expiry")).json() == []


async def test_import_writes_valid_file(client):
    resp = await client.post("/expiry/import", files=_csv("X,31/12/2030,2,B1,first\nY,15/06/2031,3,L1,\n"))
    body = resp.json()
    assert resp.status_code == 200
    assert body["valid"] is True
    assert len(body["imported_ids"]) == 2

    records = (await client.get("/expiry")).json()
    assert {r["sku"] for r in records} == {"X", "Y"}


async def test_import_rejects_non_csv_upload(client):
    resp = await client.post("/expiry/import/validate", files={"file": ("expiry.xlsx", b"PK", "application/octet-stream")})
    assert resp.status_code == 400


async def test_templates(client):
    resp = await client.get("/expiry/template")
    assert resp.status_code == 200
    assert resp.text.startswith("SKU,Expiry Date,Quantity,Batch Number,Notes")

    template = (await client.get("/purchase-orders/template")).text
    resp = await client.post(
        "/purchase-orders/items/parse",
        files={"file": ("items.csv", template.encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    items = resp.json()
    assert [i["sku"] for i in items] == ["SKU123", "SKU456"]
    assert items[0]["quantity"] == 10
    assert Decimal(str(items[0]["unit_price"])) == Decimal("15.99")
    assert items[1]["expiry_date"] == "2026-06-30"
