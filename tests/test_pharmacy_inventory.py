from decimal import Decimal

import pytest

from app.core.errors import DuplicateMedicine, NotFound, ValidationError
from app.services.pharmacy_inventory import (
    add_medicine,
    deactivate_medicine,
    find_medicine_by_name,
    get_medicine,
    list_medicines,
    update_medicine,
)


def _add(db, doctor, name, price="5", quantity=10):
    return add_medicine(db, doctor, name=name, dosage=None, price=price, quantity=quantity)


def test_add_and_find_case_insensitive(db, doctor):
    med = _add(db, doctor, "  Amoxicillin   500 ")
    assert med.name == "Amoxicillin 500"
    assert med.price == Decimal("5.00")
    assert find_medicine_by_name(db, doctor.doctor_id, "amoxicillin 500").id == med.id


def test_duplicate_name_is_a_conflict(db, doctor):
    _add(db, doctor, "Cetirizine")
    with pytest.raises(DuplicateMedicine) as exc:
        _add(db, doctor, "CETIRIZINE")
    assert exc.value.message == "Medicine already exists"


def test_same_name_allowed_for_another_doctor(db, doctor, other_doctor):
    _add(db, doctor, "Cetirizine")
    other = _add(db, other_doctor, "Cetirizine")
    assert other.doctor_id == "doc-2"


@pytest.mark.parametrize("field", ["price", "quantity"])
def test_negative_numbers_rejected(db, doctor, field):
    kwargs = {"price": "5", "quantity": 1}
    kwargs[field] = -1
    with pytest.raises(ValidationError):
        add_medicine(db, doctor, name="Zinc", dosage=None, **kwargs)


def test_non_numeric_price_rejected(db, doctor):
    with pytest.raises(ValidationError):
        add_medicine(db, doctor, name="Zinc", dosage=None, price="ten", quantity=1)


def test_update_and_rename_clash(db, doctor):
    a = _add(db, doctor, "Azithromycin")
    _add(db, doctor, "Ibuprofen")

    updated = update_medicine(db, doctor, a.id, {"price": "42.5", "quantity": 7})
    assert updated.price == Decimal("42.50")
    assert updated.quantity == 7

    with pytest.raises(DuplicateMedicine):
        update_medicine(db, doctor, a.id, {"med_name": "ibuprofen"})


def test_update_rejects_fractional_quantity(db, doctor):
    med = _add(db, doctor, "Metformin", price="5", quantity=10)

    with pytest.raises(ValidationError):
        update_medicine(db, doctor, med.id, {"price": "9", "quantity": "2.5"})

    again = get_medicine(db, doctor.doctor_id, med.id)
    assert again.quantity == 10
    assert again.price == Decimal("5.00")


def test_update_unknown_or_foreign_medicine(db, doctor, other_doctor):
    med = _add(db, other_doctor, "Ranitidine")
    with pytest.raises(NotFound):
        update_medicine(db, doctor, med.id, {"price": 1})
    with pytest.raises(NotFound):
        update_medicine(db, doctor, 99999, {"price": 1})


def test_list_is_ordered_and_paged(db, doctor):
    for name in ["zinc", "Bcomplex", "aspirin", "Calcium", "dolo"]:
        _add(db, doctor, name)

    rows, total = list_medicines(db, doctor.doctor_id, page=1, page_size=2)
    assert total == 5
    assert [r.name for r in rows] == ["aspirin", "Bcomplex"]

    rows, _ = list_medicines(db, doctor.doctor_id, page=3, page_size=2)
    assert [r.name for r in rows] == ["zinc"]


def test_deactivated_medicine_is_hidden_and_can_be_readded(db, doctor):
    med = _add(db, doctor, "Vitamin D3", price="30")
    deactivate_medicine(db, doctor, med.id)

    rows, total = list_medicines(db, doctor.doctor_id)
    assert total == 0 and rows == []
    assert find_medicine_by_name(db, doctor.doctor_id, "vitamin d3") is None

    again = _add(db, doctor, "Vitamin D3", price="35")
    assert again.id == med.id
    assert again.is_active is True
    assert again.price == Decimal("35.00")
