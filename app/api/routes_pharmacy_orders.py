from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_doctor, get_db, get_notifier
from app.schemas.auth import DoctorContext
from app.schemas.pharmacy_invoice import InvoiceOut
from app.schemas.pharmacy_order import (
    ConfirmPaymentIn,
    LinePriceIn,
    OrderCreate,
    OrderOut,
    OrderPageOut,
    PaymentResultOut,
    SelectMethodIn,
)
from app.services.notifications import Notifier
from app.services.payment_qr import QRCodeProvider, get_qr_provider
from app.services.pharmacy_invoice import build_invoice
from app.services.pharmacy_orders import (
    create_order,
    get_order,
    list_orders,
    order_to_out,
)
from app.services.pharmacy_payment import (
    cancel_payment_attempt,
    confirm_payment,
    select_method,
    set_line_price,
)

router = APIRouter(prefix="/pharmacy/orders", tags=["Pharmacy - Orders"])


@router.post("", response_model=OrderOut, status_code=201)
def create_order_route(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return order_to_out(create_order(db, doctor, payload))


@router.get("", response_model=OrderPageOut)
def list_orders_route(
    status: Optional[str] = Query(None, pattern="^(pending|completed)$"),
    q: Optional[str] = Query(None, description="Patient name / mobile / id"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=200),
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    rows, total = list_orders(db,
                              doctor.doctor_id,
                              status=status,
                              q=q,
                              page=page,
                              page_size=page_size)
    return OrderPageOut(
        items=[order_to_out(o) for o in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.get("/{order_id}", response_model=OrderOut)
def get_order_route(
    order_id: int,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return order_to_out(get_order(db, doctor.doctor_id, order_id))


@router.put("/{order_id}/lines/{line_id}/price", response_model=OrderOut)
def set_line_price_route(
    order_id: int,
    line_id: int,
    payload: LinePriceIn,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return order_to_out(set_line_price(db, doctor, order_id, line_id, payload.price))


@router.post("/{order_id}/payment-method", response_model=OrderOut)
def select_method_route(
    order_id: int,
    payload: SelectMethodIn,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
    qr_provider: QRCodeProvider = Depends(get_qr_provider),
    notifier: Notifier = Depends(get_notifier),
):
    order = select_method(db,
                          doctor,
                          order_id,
                          payload.method,
                          qr_provider=qr_provider,
                          notifier=notifier)
    return order_to_out(order)


@router.post("/{order_id}/payment-method/cancel", response_model=OrderOut)
def cancel_payment_route(
    order_id: int,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return order_to_out(cancel_payment_attempt(db, doctor, order_id))


@router.post("/{order_id}/confirm-payment", response_model=PaymentResultOut)
def confirm_payment_route(
    order_id: int,
    payload: ConfirmPaymentIn,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
    notifier: Notifier = Depends(get_notifier),
):
    return confirm_payment(db,
                           doctor,
                           order_id,
                           payload.method,
                           payload.amount,
                           notifier=notifier)


@router.get("/{order_id}/invoice", response_model=InvoiceOut)
def get_invoice_route(
    order_id: int,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return build_invoice(db, doctor, order_id)
