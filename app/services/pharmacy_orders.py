from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from app.core.errors import NotFound, ValidationError
from app.models.pharmacy_order import (
    LineStatus,
    PaymentMethod,
    PaymentState,
    PharmacyOrder,
    PharmacyOrderLine,
)
from app.schemas.auth import DoctorContext
from app.schemas.pharmacy_order import (
    OrderCreate,
    OrderLineOut,
    OrderOut,
)
from app.services.billing_math import (
    compute_line_total,
    compute_order_total,
    validate_price,
)
from app.services.pharmacy_inventory import find_medicine_by_name, get_medicine

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200

ORDER_PENDING = "pending"
ORDER_COMPLETED = "completed"


# ---------- State helpers ----------


def has_unpriced_pending(order: PharmacyOrder) -> bool:
    return any(l.status == LineStatus.PENDING and l.unit_price is None
               for l in order.lines)


def recompute_state(order: PharmacyOrder) -> None:
    """
    Put an open order back on the pricing track:
    AWAITING_PRICING while a pending line has no price, else READY_FOR_PAYMENT.
    Any method selection (and an in-flight QR request) is dropped.
    """
    if order.payment_state == PaymentState.SETTLED:
        return
    order.payment_method = PaymentMethod.NONE
    order.qr_reference = None
    order.failure_reason = None
    if has_unpriced_pending(order):
        order.payment_state = PaymentState.AWAITING_PRICING
    else:
        order.payment_state = PaymentState.READY_FOR_PAYMENT


def order_status(order: PharmacyOrder) -> str:
    if order.lines and all(l.status == LineStatus.COMPLETED for l in order.lines):
        return ORDER_COMPLETED
    return ORDER_PENDING


# ---------- Builder ----------


def _build_line(db: Session, doctor_id: str, line_in) -> PharmacyOrderLine:
    med = None
    if line_in.medicine_id is not None:
        med = get_medicine(db, doctor_id, line_in.medicine_id)
    else:
        med = find_medicine_by_name(db, doctor_id, line_in.med_name)

    unit_price = None
    if line_in.unit_price is not None:
        unit_price = validate_price(line_in.unit_price)

    line = PharmacyOrderLine(
        med_name=" ".join(line_in.med_name.split()),
        dosage=(line_in.dosage or "").strip() or None,
        quantity=int(line_in.quantity),
        status=LineStatus.PENDING,
    )
    if med is not None:
        # catalog match: price prefilled, tax rates frozen on the line
        line.medicine_id = med.id
        line.dosage = line.dosage or med.dosage
        line.unit_price = unit_price if unit_price is not None else med.price
        line.cgst_percent = med.cgst_percent or 0
        line.gst_percent = med.gst_percent or 0
    else:
        line.unit_price = unit_price
        line.cgst_percent = 0
        line.gst_percent = 0
    return line


def create_order(db: Session, doctor: DoctorContext, payload: OrderCreate) -> PharmacyOrder:
    """
    Build an order from a prescription (or a walk-in request).
    Lines found in the doctor's catalog are prefilled with its price;
    the rest wait for a price to be entered.
    """
    order = PharmacyOrder(
        doctor_id=doctor.doctor_id,
        patient_id=payload.patient_id.strip(),
        patient_name=payload.patient_name,
        patient_mobile=payload.patient_mobile,
        clinic_address_id=(payload.clinic_address_id or "").strip() or None,
        pharmacy_name=payload.pharmacy_name,
        pharmacy_address=payload.pharmacy_address,
        pharmacy_gst=payload.pharmacy_gst,
        source=payload.source,
        prescription_id=payload.prescription_id,
        qr_attempt=0,
    )
    for line_in in payload.lines:
        order.lines.append(_build_line(db, doctor.doctor_id, line_in))

    recompute_state(order)
    db.add(order)
    db.commit()
    logger.info(
        "Created pharmacy order id=%s doctor=%s lines=%s state=%s",
        order.id,
        doctor.doctor_id,
        len(order.lines),
        order.payment_state,
    )
    return order


# ---------- Reads ----------


def get_order(db: Session, doctor_id: str, order_id: int) -> PharmacyOrder:
    order = (db.query(PharmacyOrder).options(
        selectinload(PharmacyOrder.lines),
        selectinload(PharmacyOrder.invoice),
    ).filter(
        PharmacyOrder.id == int(order_id),
        PharmacyOrder.doctor_id == doctor_id,
    ).first())
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(
    db: Session,
    doctor_id: str,
    *,
    status: Optional[str] = None,
    q: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[PharmacyOrder], int]:
    """
    status: pending / completed (completed == settled).
    q: matches patient name, mobile or id.
    Newest first.
    """
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    filters = [PharmacyOrder.doctor_id == doctor_id]
    if status:
        status = status.strip().lower()
        if status == ORDER_COMPLETED:
            filters.append(PharmacyOrder.payment_state == PaymentState.SETTLED)
        elif status == ORDER_PENDING:
            filters.append(PharmacyOrder.payment_state != PaymentState.SETTLED)
        else:
            raise ValidationError("status must be pending or completed")
    if q and q.strip():
        like = f"%{q.strip()}%"
        filters.append(
            or_(
                PharmacyOrder.patient_name.ilike(like),
                PharmacyOrder.patient_mobile.ilike(like),
                PharmacyOrder.patient_id.ilike(like),
            ))

    total = db.query(func.count(PharmacyOrder.id)).filter(*filters).scalar() or 0
    rows = (db.query(PharmacyOrder).options(
        selectinload(PharmacyOrder.lines),
        selectinload(PharmacyOrder.invoice),
    ).filter(*filters).order_by(
        PharmacyOrder.created_at.desc(),
        PharmacyOrder.id.desc(),
    ).offset((page - 1) * page_size).limit(page_size).all())
    return rows, int(total)


# ---------- Output ----------


def line_to_out(line: PharmacyOrderLine) -> OrderLineOut:
    return OrderLineOut(
        id=line.id,
        order_id=line.order_id,
        medicine_id=line.medicine_id,
        med_name=line.med_name,
        dosage=line.dosage,
        quantity=line.quantity,
        unit_price=line.unit_price,
        cgst=line.cgst_percent or 0,
        gst=line.gst_percent or 0,
        line_total=compute_line_total(line),
        status=line.status,
    )


def order_to_out(order: PharmacyOrder) -> OrderOut:
    return OrderOut(
        id=order.id,
        doctor_id=order.doctor_id,
        patient_id=order.patient_id,
        patient_name=order.patient_name,
        patient_mobile=order.patient_mobile,
        clinic_address_id=order.clinic_address_id,
        source=order.source,
        prescription_id=order.prescription_id,
        status=order_status(order),
        payment_state=order.payment_state,
        payment_method=order.payment_method,
        failure_reason=order.failure_reason,
        qr_reference=order.qr_reference,
        total_amount=compute_order_total(order.lines),
        total_medicines=len(order.lines),
        settled_amount=order.settled_amount,
        settled_at=order.settled_at,
        invoice_number=order.invoice.invoice_number if order.invoice else None,
        lines=[line_to_out(l) for l in order.lines],
        created_at=order.created_at,
    )
