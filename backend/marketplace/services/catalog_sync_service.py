# Overview: Service-layer catalog sync; bulk price/stock updates and item upserts keyed by merchant item code.

"""
Catalog Sync Ingestor

Merchants push price and stock snapshots from their back-office (1C, POS
exports, spreadsheets). Payloads arrive out of order and may repeat codes.

PIPELINE:
1. Normalize every entry (code trimmed, numbers parsed); one bad number
   rejects the whole batch before anything is written.
2. Deduplicate by code; the last occurrence wins.
3. Split codes into chunks; each chunk is one UPDATE ... FROM (literal rows)
   scoped to the business, committed on its own.
4. A chunk that fails is rolled back and reported; the others stay applied.

The summed rowcount is the number of items actually updated; codes unknown
to the business are silently not matched.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import Numeric, String, case, func, literal, select, union_all, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Item
from ..time_utils import utcnow
from ..validation import MAX_MONEY, ValidationError, parse_number, to_text


CODE_KEYS = ("code", "Code", "Kod")
PRICE_KEYS = ("price", "Cena")
AMOUNT_KEYS = ("amount", "Kol")

EXCEL_EXTENSIONS = {"xlsx", "xlsm", "xltx", "xltm"}


@dataclass
class SyncEntry:
    code: str
    price: Decimal | None = None
    amount: Decimal | None = None


@dataclass
class SyncResult:
    received: int
    normalized: int
    updated: int = 0
    chunks: int = 0
    failed_chunks: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "received": self.received,
            "normalized": self.normalized,
            "updated": self.updated,
            "chunks": self.chunks,
            "failed_chunks": self.failed_chunks,
        }


def _first(entry: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def _non_negative(value: Any, field_name: str, code: str) -> Decimal | None:
    number = parse_number(value, f"{field_name} for code {code}")
    if number is None:
        return None
    if number < 0:
        raise ValidationError(f"{field_name} for code {code} must not be negative")
    return number


def normalize_entries(entries: Any) -> tuple[int, list[SyncEntry]]:
    """
    Validate and deduplicate raw sync entries.

    Returns:
        (received count, entries in first-seen code order with last-wins values)

    Raises:
        ValidationError: Empty batch or any malformed numeric field
    """
    if not isinstance(entries, list) or not entries:
        raise ValidationError("items must be a non-empty list")

    by_code: dict[str, SyncEntry] = {}
    for raw in entries:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        code = to_text(_first(raw, CODE_KEYS))
        if not code:
            continue
        price = _non_negative(_first(raw, PRICE_KEYS), "price", code)
        if price is not None and price > MAX_MONEY:
            raise ValidationError(f"price for code {code} exceeds {MAX_MONEY}")
        amount = _non_negative(_first(raw, AMOUNT_KEYS), "amount", code)
        by_code[code] = SyncEntry(code=code, price=price, amount=amount)

    return len(entries), list(by_code.values())


def _chunked(values: list, size: int):
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _chunk_size(chunk_size: int | None) -> int:
    size = chunk_size or int(current_app.config.get("CATALOG_SYNC_CHUNK_SIZE", 500))
    if size <= 0:
        raise ValidationError("chunk_size must be positive")
    return size


def _values_source(chunk: list[SyncEntry]):
    rows = [
        select(
            literal(entry.code, String()).label("code"),
            literal(entry.price, Numeric(12, 2)).label("price"),
            literal(entry.amount, Numeric(12, 3)).label("amount"),
        )
        for entry in chunk
    ]
    source = rows[0] if len(rows) == 1 else union_all(*rows)
    return source.subquery("src")


def _update_chunk(business_id: int, chunk: list[SyncEntry]) -> int:
    src = _values_source(chunk)
    stmt = (
        update(Item)
        .where(Item.business_id == business_id)
        .where(Item.code == src.c.code)
        .values(
            price=func.coalesce(src.c.price, Item.price),
            amount=func.coalesce(src.c.amount, Item.amount),
            visible=case((src.c.amount.is_(None), Item.visible), else_=src.c.amount > 0),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return int(result.rowcount or 0)


def sync_prices(business_id: int, entries: Any, chunk_size: int | None = None) -> SyncResult:
    """Apply a price/stock snapshot to the business's catalog."""
    received, normalized = normalize_entries(entries)
    result = SyncResult(received=received, normalized=len(normalized))
    if not normalized:
        return result

    for index, chunk in enumerate(_chunked(normalized, _chunk_size(chunk_size))):
        result.chunks += 1
        try:
            updated = _update_chunk(business_id, chunk)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception(
                "Catalog sync chunk %s failed for business %s (%s codes)", index, business_id, len(chunk)
            )
            result.failed_chunks.append({
                "index": index,
                "codes": [entry.code for entry in chunk],
                "error": str(exc.__class__.__name__),
            })
            continue
        result.updated += updated

    current_app.logger.info(
        "Catalog sync for business %s: received=%s normalized=%s updated=%s failed_chunks=%s",
        business_id, result.received, result.normalized, result.updated, len(result.failed_chunks),
    )
    return result


def _normalize_item(raw: Any) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    code = to_text(_first(raw, CODE_KEYS))
    if not code:
        raise ValidationError("code is required for every item")
    price = _non_negative(_first(raw, PRICE_KEYS), "price", code)
    if price is not None and price > MAX_MONEY:
        raise ValidationError(f"price for code {code} exceeds {MAX_MONEY}")
    return {
        "code": code,
        "name": to_text(raw.get("name")),
        "barcode": to_text(raw.get("barcode")),
        "price": price,
        "amount": _non_negative(_first(raw, AMOUNT_KEYS), "amount", code),
        "visible": raw.get("visible"),
    }


def sync_items(business_id: int, entries: Any, chunk_size: int | None = None) -> dict:
    """
    Upsert catalog items by code.

    Existing codes get the supplied fields overwritten; unknown codes are
    inserted and must carry a name. Validation runs over the whole batch
    before the first write.
    """
    if not isinstance(entries, list) or not entries:
        raise ValidationError("items must be a non-empty list")

    by_code: dict[str, dict] = {}
    for raw in entries:
        row = _normalize_item(raw)
        by_code[row["code"]] = row

    size = _chunk_size(chunk_size)
    codes = list(by_code)

    existing_codes = set()
    for chunk in _chunked(codes, size):
        existing_codes.update(
            code for (code,) in
            db.session.query(Item.code).filter(Item.business_id == business_id, Item.code.in_(chunk)).all()
        )
    missing_name = [c for c in codes if c not in existing_codes and not by_code[c]["name"]]
    if missing_name:
        raise ValidationError(f"name is required for new items: {', '.join(missing_name)}")

    created = updated = 0
    now = utcnow()
    for chunk in _chunked(codes, size):
        items = {
            item.code: item for item in
            db.session.query(Item).filter(Item.business_id == business_id, Item.code.in_(chunk)).all()
        }
        for code in chunk:
            row = by_code[code]
            item = items.get(code)
            if item is None:
                item = Item(business_id=business_id, code=code, name=row["name"], price=0, amount=0, visible=True)
                db.session.add(item)
                created += 1
            else:
                updated += 1
            for key in ("name", "barcode", "price", "amount"):
                if row[key] is not None:
                    setattr(item, key, row[key])
            if row["visible"] is not None:
                item.visible = bool(row["visible"])
            elif row["amount"] is not None:
                item.visible = row["amount"] > 0
            item.updated_at = now
        db.session.commit()

    current_app.logger.info(
        "Catalog item upsert for business %s: created=%s updated=%s", business_id, created, updated
    )
    return {"received": len(entries), "created": created, "updated": updated}


def parse_upload(filename: str, stream) -> list[dict]:
    """
    Read an uploaded CSV, JSON or Excel file into sync entries.

    JSON may be a list or an object with an "items" (or "rows") list.
    """
    ext = (filename or "").rsplit(".", 1)[-1].lower()

    if ext == "csv":
        raw = stream.read()
        text = raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw
        sample = text[:2048]
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
        except csv.Error:
            dialect = csv.excel
        return [dict(row) for row in csv.DictReader(io.StringIO(text), dialect=dialect)]

    if ext == "json":
        try:
            rows = json.load(stream)
        except ValueError:
            raise ValidationError("Upload is not valid JSON")
        if isinstance(rows, dict):
            rows = rows.get("items", rows.get("rows", []))
        if not isinstance(rows, list):
            raise ValidationError("JSON upload must contain a list of items")
        return rows

    if ext in EXCEL_EXTENSIONS:
        from openpyxl import load_workbook

        wb = load_workbook(stream, read_only=True, data_only=True)
        try:
            data = list(wb.active.values)
        finally:
            wb.close()
        if not data:
            return []
        headers = [str(h).strip() if h is not None else "" for h in data[0]]
        return [
            {headers[i]: row[i] for i in range(min(len(headers), len(row))) if headers[i]}
            for row in data[1:]
            if any(cell is not None for cell in row)
        ]

    raise ValidationError("Unsupported file format")
