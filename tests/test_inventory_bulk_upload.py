import random
from io import BytesIO

import pytest
from openpyxl import Workbook

from app.core.errors import ValidationError
from app.services.inventory_bulk_upload import (
    ALREADY_EXISTS,
    parse_upload_to_rows,
    submit_batch,
    validate_batch,
)
from app.services.pharmacy_inventory import add_medicine, deactivate_medicine, get_medicine, list_medicines


def _row(n, name, qty=10, price="12.50"):
    return {"row": n, "med_name": name, "quantity": qty, "price": price}


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_duplicate_row_reported_by_row_number_regardless_of_order(db, doctor, seed):
    add_medicine(db, doctor, name="Amoxicillin", dosage=None, price="20", quantity=5)
    rows = [
        _row(1, "Metformin"),
        _row(2, "Pantoprazole"),
        _row(3, "amoxicillin"),
        _row(4, "Losartan"),
    ]
    random.Random(seed).shuffle(rows)

    result = submit_batch(db, doctor, rows)

    assert result.inserted_count == 3
    assert [(e.row, e.message) for e in result.errors] == [(3, ALREADY_EXISTS)]
    _, total = list_medicines(db, doctor.doctor_id)
    assert total == 4


def test_duplicate_inside_same_batch(db, doctor):
    rows = [_row(2, "Aspirin"), _row(3, "ASPIRIN"), _row(4, " aspirin ")]
    result = submit_batch(db, doctor, rows)
    assert result.inserted_count == 1
    assert [e.row for e in result.errors] == [3, 4]


def test_deactivated_medicine_is_reactivated_not_rejected(db, doctor):
    old = add_medicine(db, doctor, name="Atorvastatin", dosage=None, price="15", quantity=4)
    deactivate_medicine(db, doctor, old.id)

    result = submit_batch(db, doctor, [_row(2, "atorvastatin", qty=30, price="18")])

    assert result.inserted_count == 1
    assert result.errors == []
    med = get_medicine(db, doctor.doctor_id, old.id)
    assert med.is_active is True
    assert med.quantity == 30
    assert str(med.price) == "18.00"


def test_invalid_rows_do_not_block_valid_ones(db, doctor):
    rows = [
        _row(2, "Dolo 650"),
        _row(3, "Bad Qty", qty="lots"),
        _row(4, "", qty=1),
        _row(5, "Negative", price="-4"),
        _row(6, "Rabeprazole", price="1,234.50"),
    ]
    result = submit_batch(db, doctor, rows)

    assert result.inserted_count == 2
    assert sorted({e.row for e in result.errors}) == [3, 4, 5]
    meds, _ = list_medicines(db, doctor.doctor_id)
    assert {m.name: str(m.price) for m in meds} == {"Dolo 650": "12.50", "Rabeprazole": "1234.50"}


def test_row_number_defaults_to_position(db, doctor):
    rows = [{"med_name": "A1", "quantity": 1, "price": 1}, {"med_name": None, "quantity": 1, "price": 1}]
    _, errors = validate_batch(rows)
    assert [e.row for e in errors] == [2]


def test_percent_and_optional_columns():
    normalized, errors = validate_batch([{
        "row": 2,
        "med_name": "Ondansetron",
        "quantity": "30",
        "price": "8",
        "cgst": "6%",
        "gst": "n/a",
    }])
    assert errors == []
    assert str(normalized[0]["cgst"]) == "6"
    assert normalized[0]["gst"] == 0


def test_too_many_rows_rejected(db, doctor, monkeypatch):
    from app.core.config import settings
    monkeypatch.setattr(settings, "BULK_IMPORT_MAX_ROWS", 2)
    with pytest.raises(ValidationError):
        submit_batch(db, doctor, [_row(i, f"M{i}") for i in range(1, 4)])


def test_parse_csv_with_friendly_headers():
    raw = "Medicine Name,Qty,MRP,Dosage\nCrocin,10,25.00,Tablet\n,,,\nBenadryl,2,110,Syrup\n".encode("utf-8-sig")
    file_type, rows = parse_upload_to_rows("meds.csv", "text/csv", raw)

    assert file_type == "csv"
    assert [r["row"] for r in rows] == [2, 4]
    assert rows[0]["med_name"] == "Crocin"
    assert rows[1]["quantity"] == "2"
    assert rows[1]["price"] == "110"


def test_parse_xlsx():
    wb = Workbook()
    ws = wb.active
    ws.append(["medName", "quantity", "price", "GST %"])
    ws.append(["Azee 500", 6, 71.5, 12])
    ws.append([None, None, None, None])
    ws.append(["Allegra", 10, 180, 12])
    buf = BytesIO()
    wb.save(buf)

    file_type, rows = parse_upload_to_rows("meds.xlsx", "", buf.getvalue())

    assert file_type == "xlsx"
    assert [r["row"] for r in rows] == [2, 4]
    assert rows[0]["med_name"] == "Azee 500"
    assert rows[0]["gst"] == 12

    normalized, errors = validate_batch(rows)
    assert errors == []
    assert [n["quantity"] for n in normalized] == [6, 10]
