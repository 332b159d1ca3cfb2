from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Dict, Any
import io

import pandas as pd

# Upload templates: header + example rows
EXPIRY_TEMPLATE_HEADERS = ["SKU", "Expiry Date", "Quantity", "Batch Number", "Notes"]
EXPIRY_TEMPLATE_ROWS = [["SKU123", "31/12/2025", "10", "BATCH001", "Example note"]]

PO_ITEM_TEMPLATE_HEADERS = ["sku", "product_name", "quantity", "unit_price", "batch_number", "expiry_date", "notes"]
PO_ITEM_TEMPLATE_ROWS = [
    ["SKU123", "Sample Product 1", "10", "15.99", "BATCH001", "2025-12-31", "Sample notes"],
    ["SKU456", "Sample Product 2", "5", "25.50", "BATCH002", "2026-06-30", ""],
]


def render_template(headers: List[str], rows: List[List[str]]) -> str:
    return "\n".join(",".join(r) for r in [headers, *rows])


def expiry_template() -> str:
    return render_template(EXPIRY_TEMPLATE_HEADERS, EXPIRY_TEMPLATE_ROWS)


def purchase_order_template() -> str:
    return render_template(PO_ITEM_TEMPLATE_HEADERS, PO_ITEM_TEMPLATE_ROWS)


# CSV helpers
def read_csv_bytes(data: bytes) -> pd.DataFrame:
    """Comma-delimited upload -> all-string DataFrame with trimmed headers."""
    encodings = ["utf-8-sig", "cp1250", "latin-1"]
    last_err = None
    for enc in encodings:
        try:
            df = pd.read_csv(
                io.BytesIO(data),
                encoding=enc,
                sep=",",
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                on_bad_lines="skip",
            )
            df.columns = [str(c).replace("\u00A0", " ").strip() for c in df.columns]
            return df
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except UnicodeDecodeError as e:
            last_err = e
            continue
    raise ValueError(f"Cannot decode CSV upload: {last_err}")


def csv_rows(data: bytes) -> List[Dict[str, str]]:
    df = read_csv_bytes(data)
    return [{k: str(v or "").strip() for k, v in row.items()} for row in df.to_dict("records")]


def parse_day_first_date(value: Any) -> Optional[date]:
    """
    DD/MM/YYYY when the value has three slash-separated parts, otherwise the
    generic pandas parser. None when nothing sensible comes out.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    if len(s.split("/")) == 3:
        try:
            return datetime.strptime(s, "%d/%m/%Y").date()
        except ValueError:
            return None
    ts = pd.to_datetime(s, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts.date()


def parse_positive_int(value: Any) -> Optional[int]:
    """Positive integer written in plain ASCII digits, else None."""
    if value is None:
        return None
    s = str(value).strip()
    if not (s.isascii() and s.isdigit()):
        return None
    n = int(s)
    return n if n > 0 else None


def _int_or(value: Any, default: int) -> int:
    n = parse_positive_int(value)
    return default if n is None else n


def _money_or(value: Any, default: Decimal) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default


def parse_purchase_order_items(data: bytes) -> List[Dict[str, Any]]:
    """
    Purchase order item upload (7-column template) -> item dicts.

    Missing or unreadable quantity becomes 1, unit price 0; rows without a
    SKU are dropped.
    """
    items: List[Dict[str, Any]] = []
    for row in csv_rows(data):
        sku = row.get("sku", "")
        if not sku:
            continue
        quantity = _int_or(row.get("quantity"), 1)
        unit_price = _money_or(row.get("unit_price"), Decimal("0"))
        items.append({
            "sku": sku,
            "product_name": row.get("product_name", ""),
            "quantity": quantity,
            "unit_price": unit_price,
            "batch_number": row.get("batch_number") or None,
            "expiry_date": parse_day_first_date(row.get("expiry_date")),
            "notes": row.get("notes") or None,
        })
    return items
