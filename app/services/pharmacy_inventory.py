from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateMedicine, NotFound, ValidationError
from app.models.pharmacy_inventory import PharmacyMedicine, name_key
from app.schemas.auth import DoctorContext
from app.services.billing_math import money2

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def _non_negative(value, field: str) -> Decimal:
    try:
        d = Decimal(str(value))
    except Exception:
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if not d.is_finite() or d < 0:
        raise ValidationError(f"{field} must be non-negative", details={"field": field})
    return d


def _whole_quantity(value) -> int:
    qty = _non_negative(value, "quantity")
    if qty != qty.to_integral_value():
        raise ValidationError("quantity must be a whole number", details={"field": "quantity"})
    return int(qty)


def _clean_name(name: Optional[str]) -> str:
    s = " ".join((name or "").split())
    if not s:
        raise ValidationError("Medicine name is required", details={"field": "med_name"})
    return s


def find_medicine_by_name(
    db: Session,
    doctor_id: str,
    name: str,
    *,
    include_inactive: bool = False,
) -> Optional[PharmacyMedicine]:
    q = db.query(PharmacyMedicine).filter(
        PharmacyMedicine.doctor_id == doctor_id,
        PharmacyMedicine.name_key == name_key(name),
    )
    if not include_inactive:
        q = q.filter(PharmacyMedicine.is_active.is_(True))
    return q.first()


def get_medicine(db: Session, doctor_id: str, medicine_id: int) -> PharmacyMedicine:
    med = (db.query(PharmacyMedicine).filter(
        PharmacyMedicine.id == int(medicine_id),
        PharmacyMedicine.doctor_id == doctor_id,
    ).first())
    if not med:
        raise NotFound("Medicine not found")
    return med


def new_medicine(
    doctor_id: str,
    *,
    name: str,
    dosage: Optional[str],
    price,
    quantity,
    cgst=0,
    gst=0,
) -> PharmacyMedicine:
    """Build a validated, unsaved catalog row."""
    clean = _clean_name(name)
    qty = _whole_quantity(quantity)
    return PharmacyMedicine(
        doctor_id=doctor_id,
        name=clean,
        name_key=name_key(clean),
        dosage=(dosage or "").strip() or None,
        price=money2(_non_negative(price, "price")),
        quantity=qty,
        cgst_percent=_non_negative(cgst or 0, "cgst"),
        gst_percent=_non_negative(gst or 0, "gst"),
        is_active=True,
    )


def add_medicine(
    db: Session,
    doctor: DoctorContext,
    *,
    name: str,
    dosage: Optional[str],
    price,
    quantity,
    cgst=0,
    gst=0,
) -> PharmacyMedicine:
    med = new_medicine(doctor.doctor_id,
                       name=name,
                       dosage=dosage,
                       price=price,
                       quantity=quantity,
                       cgst=cgst,
                       gst=gst)

    existing = find_medicine_by_name(db, doctor.doctor_id, med.name, include_inactive=True)
    if existing:
        if existing.is_active:
            raise DuplicateMedicine("Medicine already exists",
                                    details={"medicine_id": existing.id})
        # re-adding a deactivated medicine brings it back with the new values
        existing.name = med.name
        existing.dosage = med.dosage
        existing.price = med.price
        existing.quantity = med.quantity
        existing.cgst_percent = med.cgst_percent
        existing.gst_percent = med.gst_percent
        existing.is_active = True
        db.commit()
        logger.info("Reactivated medicine id=%s doctor=%s", existing.id, doctor.doctor_id)
        return existing

    db.add(med)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateMedicine("Medicine already exists")
    logger.info("Added medicine id=%s doctor=%s", med.id, doctor.doctor_id)
    return med


def update_medicine(
    db: Session,
    doctor: DoctorContext,
    medicine_id: int,
    fields: dict,
) -> PharmacyMedicine:
    med = get_medicine(db, doctor.doctor_id, medicine_id)

    # a rejected field discards the ones already applied
    try:
        if fields.get("med_name") is not None:
            clean = _clean_name(fields["med_name"])
            key = name_key(clean)
            if key != med.name_key:
                clash = find_medicine_by_name(db, doctor.doctor_id, clean, include_inactive=True)
                if clash and clash.id != med.id:
                    raise DuplicateMedicine("Medicine already exists",
                                            details={"medicine_id": clash.id})
            med.name = clean
            med.name_key = key
        if "dosage" in fields and fields["dosage"] is not None:
            med.dosage = fields["dosage"].strip() or None
        if fields.get("price") is not None:
            med.price = money2(_non_negative(fields["price"], "price"))
        if fields.get("quantity") is not None:
            med.quantity = _whole_quantity(fields["quantity"])
        if fields.get("cgst") is not None:
            med.cgst_percent = _non_negative(fields["cgst"], "cgst")
        if fields.get("gst") is not None:
            med.gst_percent = _non_negative(fields["gst"], "gst")

        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateMedicine("Medicine already exists")
    except Exception:
        db.rollback()
        raise
    return med


def deactivate_medicine(db: Session, doctor: DoctorContext, medicine_id: int) -> PharmacyMedicine:
    med = get_medicine(db, doctor.doctor_id, medicine_id)
    if med.is_active:
        med.is_active = False
        db.commit()
        logger.info("Deactivated medicine id=%s doctor=%s", med.id, doctor.doctor_id)
    return med


def list_medicines(
    db: Session,
    doctor_id: str,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[PharmacyMedicine], int]:
    """
    Page of active medicines ordered by name; total is an exact count.
    """
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    base = db.query(PharmacyMedicine).filter(
        PharmacyMedicine.doctor_id == doctor_id,
        PharmacyMedicine.is_active.is_(True),
    )
    total = (db.query(func.count(PharmacyMedicine.id)).filter(
        PharmacyMedicine.doctor_id == doctor_id,
        PharmacyMedicine.is_active.is_(True),
    ).scalar()) or 0

    rows = (base.order_by(PharmacyMedicine.name_key.asc(),
                          PharmacyMedicine.id.asc()).offset(
                              (page - 1) * page_size).limit(page_size).all())
    return rows, int(total)
