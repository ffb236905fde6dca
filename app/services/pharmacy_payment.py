"""
Payment lifecycle of a pharmacy order.

    AWAITING_PRICING -> READY_FOR_PAYMENT -> METHOD_SELECTED -> SETTLED
    READY_FOR_PAYMENT -> AWAITING_QR (upi) -> METHOD_SELECTED | PAYMENT_FAILED
    PAYMENT_FAILED behaves like READY_FOR_PAYMENT: a method can be picked again.

Every mutation holds the order's in-process lock, reads the row with
SELECT ... FOR UPDATE and commits before the lock is released. The QR
provider is called with no lock held; its answer is applied only if the
attempt it belongs to is still current.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional

from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    ConflictError,
    InvalidAmount,
    InvalidState,
    MissingClinicAddress,
    NotFound,
    QRUnavailable,
    ValidationError,
)
from app.core.locks import doctor_locks, order_locks
from app.models.pharmacy_inventory import PharmacyMedicine
from app.models.pharmacy_order import (
    LineStatus,
    PaymentMethod,
    PaymentState,
    PharmacyOrder,
)
from app.schemas.auth import DoctorContext
from app.schemas.pharmacy_order import PaymentResultOut
from app.services.billing_math import compute_order_total, validate_price
from app.services.notifications import (
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SETTLED,
    Notifier,
    notify_safely,
)
from app.services.payment_qr import QRCodeProvider, get_qr_provider
from app.services.pharmacy_invoice import issue_invoice
from app.services.pharmacy_orders import has_unpriced_pending, recompute_state
from app.services.pharmacy_revenue import record_settlement, settlement_lock_key
from app.utils.timezone import now_local

logger = logging.getLogger(__name__)

QR_UNAVAILABLE = "QR_UNAVAILABLE"

SELECTABLE_STATES = {
    PaymentState.READY_FOR_PAYMENT,
    PaymentState.PAYMENT_FAILED,
    PaymentState.METHOD_SELECTED,
    PaymentState.AWAITING_QR,
}


# ---------- helpers ----------


def _norm_method(method) -> str:
    m = (str(method or "")).strip().upper()
    if m not in (PaymentMethod.CASH, PaymentMethod.UPI):
        raise ValidationError("Payment method must be cash or upi",
                              details={"method": method})
    return m


def _parse_amount(amount) -> Decimal:
    if amount is None or isinstance(amount, bool):
        raise InvalidAmount("Amount is required")
    try:
        d = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount '{amount}'")
    if not d.is_finite():
        raise InvalidAmount(f"Invalid amount '{amount}'")
    return d


@contextmanager
def _order_txn(db: Session, order_id: int) -> Iterator[None]:
    """Order lock + commit-before-release; anything raised rolls back."""
    with order_locks.hold(int(order_id)):
        try:
            yield
            db.commit()
        except Exception:
            db.rollback()
            raise


def _lock_order(db: Session, doctor_id: str, order_id: int) -> PharmacyOrder:
    order = (db.query(PharmacyOrder).options(
        selectinload(PharmacyOrder.lines),
        selectinload(PharmacyOrder.invoice),
    ).filter(
        PharmacyOrder.id == int(order_id),
        PharmacyOrder.doctor_id == doctor_id,
    ).with_for_update().populate_existing().first())
    if not order:
        raise NotFound("Order not found")
    return order


def _ensure_selectable(order: PharmacyOrder) -> None:
    if order.payment_state == PaymentState.SETTLED:
        raise InvalidState("Order is already paid")
    if order.payment_state == PaymentState.AWAITING_PRICING:
        raise InvalidState("Please enter a price for every medicine",
                           details={"payment_state": order.payment_state})
    if order.payment_state not in SELECTABLE_STATES:
        raise InvalidState(f"Cannot select a payment method in {order.payment_state}")


def _settled_result(order: PharmacyOrder, already_settled: bool) -> PaymentResultOut:
    return PaymentResultOut(
        order_id=order.id,
        payment_state=order.payment_state,
        payment_method=order.payment_method,
        amount=order.settled_amount,
        invoice_number=order.invoice.invoice_number if order.invoice else None,
        settled_at=order.settled_at,
        already_settled=already_settled,
    )


# ---------- pricing ----------


def set_line_price(
    db: Session,
    doctor: DoctorContext,
    order_id: int,
    line_id: int,
    price,
) -> PharmacyOrder:
    """
    Set (or change) a line's unit price until the order is settled.
    The payment selection is reset since the payable total moved.
    """
    new_price = validate_price(price)

    with _order_txn(db, order_id):
        order = _lock_order(db, doctor.doctor_id, order_id)
        if order.payment_state == PaymentState.SETTLED:
            raise InvalidState("Order is already paid; prices are locked")

        line = next((l for l in order.lines if l.id == int(line_id)), None)
        if line is None:
            raise NotFound("Order line not found")

        line.unit_price = new_price
        recompute_state(order)

    logger.info("Order %s line %s priced %s -> %s", order.id, line.id, new_price,
                order.payment_state)
    return order


# ---------- method selection ----------


def _select_cash(db: Session, doctor: DoctorContext, order_id: int) -> PharmacyOrder:
    with _order_txn(db, order_id):
        order = _lock_order(db, doctor.doctor_id, order_id)
        _ensure_selectable(order)
        order.payment_method = PaymentMethod.CASH
        order.payment_state = PaymentState.METHOD_SELECTED
        order.qr_reference = None
        order.failure_reason = None
    logger.info("Order %s -> METHOD_SELECTED(CASH)", order.id)
    return order


def _select_upi(
    db: Session,
    doctor: DoctorContext,
    order_id: int,
    qr_provider: QRCodeProvider,
    notifier: Optional[Notifier],
) -> PharmacyOrder:
    # 1) claim a new QR attempt
    with _order_txn(db, order_id):
        order = _lock_order(db, doctor.doctor_id, order_id)
        _ensure_selectable(order)
        if not order.clinic_address_id:
            raise MissingClinicAddress("Clinic address is required for UPI payment")
        order.qr_attempt = int(order.qr_attempt or 0) + 1
        order.payment_method = PaymentMethod.UPI
        order.payment_state = PaymentState.AWAITING_QR
        order.qr_reference = None
        order.failure_reason = None
        attempt = order.qr_attempt
        address_id = order.clinic_address_id

    # 2) provider call, no lock held
    qr: Optional[str] = None
    provider_error: Optional[Exception] = None
    try:
        qr = qr_provider.get_qr_code(address_id, doctor.doctor_id)
    except Exception as e:
        logger.warning("QR provider failed for order=%s: %s", order_id, e)
        provider_error = e

    # 3) apply, unless the attempt was superseded meanwhile
    with _order_txn(db, order_id):
        order = _lock_order(db, doctor.doctor_id, order_id)
        current = (order.payment_state == PaymentState.AWAITING_QR
                   and order.qr_attempt == attempt)
        if current:
            if qr:
                order.qr_reference = qr
                order.payment_state = PaymentState.METHOD_SELECTED
            else:
                order.payment_state = PaymentState.PAYMENT_FAILED
                order.failure_reason = QR_UNAVAILABLE

    if not current:
        logger.info("Order %s QR attempt %s superseded (now %s)", order.id, attempt,
                    order.payment_state)
        raise InvalidState("Payment attempt was cancelled",
                           details={"payment_state": order.payment_state})

    if order.payment_state == PaymentState.PAYMENT_FAILED:
        logger.warning("Order %s -> PAYMENT_FAILED(%s)", order.id, QR_UNAVAILABLE)
        notify_safely(notifier, EVENT_PAYMENT_FAILED, order.doctor_id, {
            "order_id": order.id,
            "reason": QR_UNAVAILABLE,
        })
        exc = QRUnavailable("Payment QR code is not available for this clinic",
                            details={"order_id": order.id})
        if provider_error is not None:
            raise exc from provider_error
        raise exc

    logger.info("Order %s -> METHOD_SELECTED(UPI)", order.id)
    return order


def select_method(
    db: Session,
    doctor: DoctorContext,
    order_id: int,
    method,
    qr_provider: Optional[QRCodeProvider] = None,
    notifier: Optional[Notifier] = None,
) -> PharmacyOrder:
    """
    cash -> METHOD_SELECTED right away.
    upi  -> needs a clinic address; fetches the clinic QR (AWAITING_QR while
            in flight). No QR -> PAYMENT_FAILED and QRUnavailable.
    """
    m = _norm_method(method)
    if m == PaymentMethod.CASH:
        return _select_cash(db, doctor, order_id)
    return _select_upi(db, doctor, order_id, qr_provider or get_qr_provider(), notifier)


def cancel_payment_attempt(db: Session, doctor: DoctorContext, order_id: int) -> PharmacyOrder:
    with _order_txn(db, order_id):
        order = _lock_order(db, doctor.doctor_id, order_id)
        if order.payment_state == PaymentState.SETTLED:
            raise InvalidState("Order is already paid")
        recompute_state(order)
    logger.info("Order %s payment attempt cancelled -> %s", order.id, order.payment_state)
    return order


# ---------- settlement ----------


def _decrement_stock(db: Session, order: PharmacyOrder) -> None:
    for line in order.lines:
        if line.medicine_id is None or line.status != LineStatus.COMPLETED:
            continue
        # the session may still hold this row from an earlier transaction
        med = (db.query(PharmacyMedicine).filter(
            PharmacyMedicine.id == line.medicine_id,
        ).with_for_update().populate_existing().first())
        if med is None:
            continue
        left = int(med.quantity or 0) - int(line.quantity)
        if left < 0:
            logger.warning(
                "Stock for medicine=%s went below zero (order=%s); clamped to 0",
                med.id,
                order.id,
            )
            left = 0
        med.quantity = left


def _settle(db: Session, order: PharmacyOrder, amount: Decimal) -> None:
    settled_at = now_local()
    for line in order.lines:
        if line.status == LineStatus.PENDING and line.unit_price is not None:
            line.status = LineStatus.COMPLETED
            line.completed_at = settled_at
    _decrement_stock(db, order)

    order.payment_state = PaymentState.SETTLED
    order.settled_amount = amount
    order.settled_at = settled_at
    order.failure_reason = None

    issue_invoice(db, order, settled_at)
    record_settlement(db, order, amount, settled_at)


def confirm_payment(
    db: Session,
    doctor: DoctorContext,
    order_id: int,
    method,
    amount,
    notifier: Optional[Notifier] = None,
) -> PaymentResultOut:
    """
    Settle the order. Safe to repeat: a settled order answers with its
    recorded result and nothing is applied twice.
    """
    m = _norm_method(method)
    paid = _parse_amount(amount)

    try:
        with order_locks.hold(int(order_id)), \
                doctor_locks.hold(settlement_lock_key(doctor.doctor_id)):
            try:
                order = _lock_order(db, doctor.doctor_id, order_id)
                if order.payment_state == PaymentState.SETTLED:
                    db.commit()
                    return _settled_result(order, already_settled=True)

                if order.payment_state != PaymentState.METHOD_SELECTED:
                    raise InvalidState("Select a payment method first",
                                       details={"payment_state": order.payment_state})
                if order.payment_method != m:
                    raise InvalidState(
                        f"Order is set up for {order.payment_method} payment",
                        details={"payment_method": order.payment_method})
                if m == PaymentMethod.UPI and not order.qr_reference:
                    raise InvalidState("UPI QR code has not been generated")
                if has_unpriced_pending(order):
                    raise InvalidState("Please enter a price for every medicine")

                total = compute_order_total(order.lines)
                if paid <= 0 or paid != total:
                    raise InvalidAmount("Amount does not match the order total",
                                        details={
                                            "expected": str(total),
                                            "received": str(paid),
                                        })

                _settle(db, order, total)
                db.commit()
            except Exception:
                db.rollback()
                raise
    except StaleDataError:
        # another process settled or changed the order first
        order = _reload(db, doctor.doctor_id, order_id)
        if order.payment_state == PaymentState.SETTLED:
            return _settled_result(order, already_settled=True)
        raise ConflictError("Order was changed by another request; please retry",
                            code="CONCURRENT_UPDATE")

    result = _settled_result(order, already_settled=False)
    logger.info("Order %s SETTLED amount=%s method=%s invoice=%s", order.id,
                result.amount, m, result.invoice_number)
    notify_safely(notifier, EVENT_PAYMENT_SETTLED, order.doctor_id, {
        "order_id": order.id,
        "amount": str(result.amount),
        "method": m,
        "invoice_number": result.invoice_number,
    })
    return result


def _reload(db: Session, doctor_id: str, order_id: int) -> PharmacyOrder:
    with _order_txn(db, order_id):
        return _lock_order(db, doctor_id, order_id)
