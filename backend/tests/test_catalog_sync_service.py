# Overview: Pytest coverage for catalog price/stock sync, item upsert and upload parsing.

import io
import json
from decimal import Decimal

import pytest
from openpyxl import Workbook
from sqlalchemy.exc import OperationalError

from marketplace.models import Item
from marketplace.services import catalog_sync_service
from marketplace.services.catalog_sync_service import parse_upload, sync_items, sync_prices
from marketplace.validation import ValidationError


def _item(db_session, business_id, code):
    db_session.expire_all()
    return db_session.query(Item).filter_by(business_id=business_id, code=code).one()


class TestSyncPrices:

    def test_updates_price_and_amount(self, db_session, business, make_item):
        make_item("A-1", "100", amount="1")

        result = sync_prices(business.id, [{"code": "A-1", "price": 150, "amount": 7}])

        assert result.updated == 1
        item = _item(db_session, business.id, "A-1")
        assert item.price == Decimal("150.00")
        assert item.amount == Decimal("7.000")
        assert item.visible is True

    def test_duplicate_codes_last_wins(self, db_session, business, make_item):
        make_item("A-1", "1")

        result = sync_prices(business.id, [
            {"code": "A-1", "price": "10", "amount": "5"},
            {"code": "A-1", "price": "12", "amount": "3"},
        ])

        assert (result.received, result.normalized, result.updated) == (2, 1, 1)
        item = _item(db_session, business.id, "A-1")
        assert (item.price, item.amount) == (Decimal("12.00"), Decimal("3.000"))

    def test_non_numeric_rejects_whole_batch(self, db_session, business, make_item):
        make_item("A-1", "100")
        make_item("A-2", "200")

        with pytest.raises(ValidationError):
            sync_prices(business.id, [
                {"code": "A-1", "price": "150"},
                {"code": "A-2", "price": "abc"},
            ])

        assert _item(db_session, business.id, "A-1").price == Decimal("100.00")

    @pytest.mark.parametrize("bad", ["-1", -5, "NaN", "Infinity", float("inf"), True])
    def test_invalid_numbers_rejected(self, db_session, business, make_item, bad):
        make_item("A-1", "100")
        with pytest.raises(ValidationError):
            sync_prices(business.id, [{"code": "A-1", "amount": bad}])

    def test_empty_batch_rejected(self, db_session, business):
        with pytest.raises(ValidationError):
            sync_prices(business.id, [])

    def test_missing_field_leaves_column_unchanged(self, db_session, business, make_item):
        make_item("A-1", "100", amount="4")

        sync_prices(business.id, [{"code": "A-1", "price": "99.90"}])

        item = _item(db_session, business.id, "A-1")
        assert item.price == Decimal("99.90")
        assert item.amount == Decimal("4.000")
        assert item.visible is True

    def test_zero_amount_hides_item(self, db_session, business, make_item):
        make_item("A-1", "100", amount="4")
        sync_prices(business.id, [{"code": "A-1", "amount": 0}])
        assert _item(db_session, business.id, "A-1").visible is False

    def test_restock_shows_item(self, db_session, business, make_item):
        make_item("A-1", "100", amount="0", visible=False)
        sync_prices(business.id, [{"code": "A-1", "amount": "2"}])
        assert _item(db_session, business.id, "A-1").visible is True

    def test_merchant_number_formats(self, db_session, business, make_item):
        make_item("A-1", "1")
        sync_prices(business.id, [{"Kod": " A-1 ", "Cena": "1 200,50", "Kol": "2,5"}])
        item = _item(db_session, business.id, "A-1")
        assert item.price == Decimal("1200.50")
        assert item.amount == Decimal("2.500")

    def test_entries_without_code_dropped(self, db_session, business, make_item):
        make_item("A-1", "1")
        result = sync_prices(business.id, [{"code": "  ", "price": 5}, {"price": 6}, {"code": "A-1", "price": 7}])
        assert (result.received, result.normalized, result.updated) == (3, 1, 1)

    def test_unknown_codes_not_counted(self, db_session, business, make_item):
        make_item("A-1", "1")
        result = sync_prices(business.id, [{"code": "A-1", "price": 2}, {"code": "NOPE", "price": 3}])
        assert result.updated == 1
        assert db_session.query(Item).count() == 1

    def test_scoped_to_business(self, db_session, business, other_business, make_item):
        make_item("A-1", "100", business_id=other_business.id)
        result = sync_prices(business.id, [{"code": "A-1", "price": 1}])
        assert result.updated == 0
        assert _item(db_session, other_business.id, "A-1").price == Decimal("100.00")

    def test_chunked_updates(self, db_session, business, make_item):
        for n in range(5):
            make_item(f"C-{n}", "1")

        result = sync_prices(
            business.id,
            [{"code": f"C-{n}", "price": 10 + n} for n in range(5)],
            chunk_size=2,
        )

        assert result.chunks == 3
        assert result.updated == 5
        assert _item(db_session, business.id, "C-4").price == Decimal("14.00")

    def test_chunk_size_from_config(self, app, db_session, business, make_item):
        make_item("C-1", "1")
        make_item("C-2", "1")
        app.config["CATALOG_SYNC_CHUNK_SIZE"] = 1
        try:
            result = sync_prices(business.id, [{"code": "C-1", "price": 2}, {"code": "C-2", "price": 2}])
        finally:
            app.config["CATALOG_SYNC_CHUNK_SIZE"] = 500
        assert result.chunks == 2

    def test_failed_chunk_reported_others_applied(self, db_session, business, make_item, monkeypatch):
        for n in range(4):
            make_item(f"C-{n}", "1")

        real_update = catalog_sync_service._update_chunk

        def flaky(business_id, chunk):
            if chunk[0].code == "C-2":
                raise OperationalError("UPDATE items", {}, Exception("database is locked"))
            return real_update(business_id, chunk)

        monkeypatch.setattr(catalog_sync_service, "_update_chunk", flaky)

        result = sync_prices(
            business.id,
            [{"code": f"C-{n}", "price": 50} for n in range(4)],
            chunk_size=2,
        )

        assert result.updated == 2
        assert result.failed_chunks[0]["index"] == 1
        assert result.failed_chunks[0]["codes"] == ["C-2", "C-3"]
        assert _item(db_session, business.id, "C-0").price == Decimal("50.00")
        assert _item(db_session, business.id, "C-3").price == Decimal("1.00")


class TestSyncItems:

    def test_inserts_and_updates(self, db_session, business, make_item):
        make_item("A-1", "100")

        result = sync_items(business.id, [
            {"code": "A-1", "name": "Renamed", "price": "110"},
            {"code": "N-1", "name": "New thing", "price": "5", "amount": "0", "barcode": "4870001"},
        ])

        assert result == {"received": 2, "created": 1, "updated": 1}
        assert _item(db_session, business.id, "A-1").name == "Renamed"
        new = _item(db_session, business.id, "N-1")
        assert (new.price, new.barcode, new.visible) == (Decimal("5.00"), "4870001", False)

    def test_new_item_requires_name(self, db_session, business):
        with pytest.raises(ValidationError):
            sync_items(business.id, [{"code": "N-1", "price": 1}])
        assert db_session.query(Item).count() == 0

    def test_repeated_upsert_creates_no_duplicates(self, db_session, business):
        rows = [{"code": "N-1", "name": "Thing", "price": 1}]
        sync_items(business.id, rows)
        sync_items(business.id, rows)
        assert db_session.query(Item).filter_by(business_id=business.id, code="N-1").count() == 1


class TestParseUpload:

    def test_csv(self):
        data = b"code,price,amount\nA-1,10.5,3\nA-2,7,0\n"
        rows = parse_upload("prices.csv", io.BytesIO(data))
        assert rows == [
            {"code": "A-1", "price": "10.5", "amount": "3"},
            {"code": "A-2", "price": "7", "amount": "0"},
        ]

    def test_semicolon_csv(self):
        data = "Kod;Cena;Kol\nA-1;1 200,50;2\n".encode("utf-8")
        rows = parse_upload("export.CSV", io.BytesIO(data))
        assert rows == [{"Kod": "A-1", "Cena": "1 200,50", "Kol": "2"}]

    def test_json_list_and_object(self):
        payload = [{"code": "A-1", "price": 1}]
        assert parse_upload("a.json", io.BytesIO(json.dumps(payload).encode())) == payload
        wrapped = io.BytesIO(json.dumps({"items": payload}).encode())
        assert parse_upload("a.json", wrapped) == payload

    def test_invalid_json(self):
        with pytest.raises(ValidationError):
            parse_upload("a.json", io.BytesIO(b"{not json"))

    def test_xlsx(self):
        wb = Workbook()
        sheet = wb.active
        sheet.append(["code", "price", "amount"])
        sheet.append(["A-1", 10.5, 3])
        sheet.append([None, None, None])
        sheet.append(["A-2", 7, 0])
        buffer = io.BytesIO()
        wb.save(buffer)
        buffer.seek(0)

        rows = parse_upload("prices.xlsx", buffer)

        assert rows == [
            {"code": "A-1", "price": 10.5, "amount": 3},
            {"code": "A-2", "price": 7, "amount": 0},
        ]

    def test_unsupported_extension(self):
        with pytest.raises(ValidationError):
            parse_upload("prices.txt", io.BytesIO(b"whatever"))
