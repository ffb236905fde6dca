from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.errors import InvalidState
from app.models.pharmacy_order import (
    LineStatus,
    PaymentState,
    PharmacyInvoice,
    PharmacyOrder,
)
from app.schemas.auth import DoctorContext
from app.schemas.pharmacy_invoice import InvoiceLineOut, InvoiceOut, InvoicePartyOut
from app.services.billing_math import line_tax_breakdown, money2
from app.services.billing_numbers import next_invoice_number
from app.services.pharmacy_orders import get_order

logger = logging.getLogger(__name__)


def issue_invoice(db: Session, order: PharmacyOrder, issued_at: datetime) -> PharmacyInvoice:
    """
    Runs inside the settlement transaction. One invoice per order:
    a second call hands back the existing row.
    """
    existing = (db.query(PharmacyInvoice).filter(
        PharmacyInvoice.order_id == order.id).first())
    if existing:
        return existing

    inv = PharmacyInvoice(
        doctor_id=order.doctor_id,
        invoice_number=next_invoice_number(db,
                                           doctor_id=order.doctor_id,
                                           issued_at=issued_at),
        grand_total=money2(order.settled_amount),
        issued_at=issued_at,
    )
    inv.order = order
    db.add(inv)
    db.flush()
    logger.info("Issued invoice %s for order=%s", inv.invoice_number, order.id)
    return inv


def build_invoice(db: Session, doctor: DoctorContext, order_id: int) -> InvoiceOut:
    order = get_order(db, doctor.doctor_id, order_id)
    if order.payment_state != PaymentState.SETTLED or not order.invoice:
        raise InvalidState("Invoice is available after payment is completed",
                           details={"payment_state": order.payment_state})

    lines = []
    for l in order.lines:
        if l.status != LineStatus.COMPLETED:
            continue
        tax = line_tax_breakdown(l)
        lines.append(
            InvoiceLineOut(
                med_name=l.med_name,
                dosage=l.dosage,
                quantity=l.quantity,
                unit_price=money2(l.unit_price),
                cgst_percent=l.cgst_percent or 0,
                gst_percent=l.gst_percent or 0,
                cgst_amount=tax["cgst_amount"],
                gst_amount=tax["gst_amount"],
                subtotal=tax["subtotal"],
            ))

    inv = order.invoice
    return InvoiceOut(
        invoice_number=inv.invoice_number,
        issued_at=inv.issued_at,
        order_id=order.id,
        payment_method=order.payment_method,
        clinic=InvoicePartyOut(
            id=order.clinic_address_id,
            name=order.pharmacy_name,
            address=order.pharmacy_address,
            gst_number=order.pharmacy_gst,
        ),
        doctor=InvoicePartyOut(id=order.doctor_id, name=doctor.name),
        patient=InvoicePartyOut(
            id=order.patient_id,
            name=order.patient_name,
            mobile=order.patient_mobile,
        ),
        lines=lines,
        grand_total=money2(inv.grand_total),
    )
