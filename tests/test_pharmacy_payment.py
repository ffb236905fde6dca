from decimal import Decimal

import pytest
import requests

from app.core.errors import (
    InvalidAmount,
    InvalidPrice,
    InvalidState,
    MissingClinicAddress,
    QRUnavailable,
    ValidationError,
)
from app.models.pharmacy_order import LineStatus, PaymentMethod, PaymentState, PharmacyInvoice
from app.services.billing_math import compute_order_total
from app.services.notifications import EVENT_PAYMENT_FAILED, EVENT_PAYMENT_SETTLED
from app.services.pharmacy_inventory import get_medicine
from app.services.pharmacy_orders import get_order
from app.services.pharmacy_payment import (
    QR_UNAVAILABLE,
    cancel_payment_attempt,
    confirm_payment,
    select_method,
    set_line_price,
)
from app.services.pharmacy_revenue import get_revenue_summary

from tests.conftest import FakeQRProvider, line_named


def _price_syrup(db, doctor, order, price="45"):
    return set_line_price(db, doctor, order.id, line_named(order, "Cough Syrup").id, price)


def test_cash_settlement_scenario(db, doctor, paracetamol, priced_order, notifier):
    assert priced_order.payment_state == PaymentState.AWAITING_PRICING

    order = _price_syrup(db, doctor, priced_order)
    assert order.payment_state == PaymentState.READY_FOR_PAYMENT
    assert compute_order_total(order.lines) == Decimal("65.00")

    order = select_method(db, doctor, order.id, "cash")
    assert order.payment_state == PaymentState.METHOD_SELECTED
    assert order.payment_method == PaymentMethod.CASH

    result = confirm_payment(db, doctor, order.id, "cash", 65, notifier=notifier)
    assert result.payment_state == PaymentState.SETTLED
    assert result.amount == Decimal("65.00")
    assert result.already_settled is False
    assert result.invoice_number.endswith("-000001")

    order = get_order(db, doctor.doctor_id, order.id)
    assert all(l.status == LineStatus.COMPLETED for l in order.lines)
    assert order.settled_amount == Decimal("65.00")

    summary = get_revenue_summary(db, doctor.doctor_id, order.settled_at.date())
    assert summary.today.revenue == Decimal("65.00")
    assert summary.today.patients == 1
    assert summary.month.revenue == Decimal("65.00")

    assert get_medicine(db, doctor.doctor_id, paracetamol.id).quantity == 98
    assert [e[0] for e in notifier.events] == [EVENT_PAYMENT_SETTLED]


def test_confirm_twice_does_not_double_count(db, doctor, paracetamol, priced_order):
    _price_syrup(db, doctor, priced_order)
    select_method(db, doctor, priced_order.id, "CASH")

    first = confirm_payment(db, doctor, priced_order.id, "cash", "65")
    second = confirm_payment(db, doctor, priced_order.id, "cash", "65")

    assert second.already_settled is True
    assert second.invoice_number == first.invoice_number
    assert second.amount == first.amount
    assert second.settled_at == first.settled_at

    order = get_order(db, doctor.doctor_id, priced_order.id)
    summary = get_revenue_summary(db, doctor.doctor_id, order.settled_at.date())
    assert summary.today.revenue == Decimal("65.00")
    assert db.query(PharmacyInvoice).count() == 1
    assert get_medicine(db, doctor.doctor_id, paracetamol.id).quantity == 98


@pytest.mark.parametrize("amount", [0, -65, "64.99", "65.001", "sixty five"])
def test_wrong_amount_rejected(db, doctor, paracetamol, priced_order, amount):
    _price_syrup(db, doctor, priced_order)
    select_method(db, doctor, priced_order.id, "cash")

    with pytest.raises(InvalidAmount):
        confirm_payment(db, doctor, priced_order.id, "cash", amount)

    order = get_order(db, doctor.doctor_id, priced_order.id)
    assert order.payment_state == PaymentState.METHOD_SELECTED
    assert all(l.status == LineStatus.PENDING for l in order.lines)


def test_cannot_settle_with_unpriced_line(db, doctor, paracetamol, priced_order):
    with pytest.raises(InvalidState):
        select_method(db, doctor, priced_order.id, "cash")
    with pytest.raises(InvalidState):
        confirm_payment(db, doctor, priced_order.id, "cash", 20)

    order = get_order(db, doctor.doctor_id, priced_order.id)
    assert order.payment_state == PaymentState.AWAITING_PRICING


def test_confirm_needs_matching_method(db, doctor, paracetamol, priced_order):
    _price_syrup(db, doctor, priced_order)
    with pytest.raises(InvalidState):
        confirm_payment(db, doctor, priced_order.id, "cash", 65)

    select_method(db, doctor, priced_order.id, "cash")
    with pytest.raises(InvalidState):
        confirm_payment(db, doctor, priced_order.id, "upi", 65)


@pytest.mark.parametrize("bad", ["-1", "abc", "NaN", None])
def test_bad_price_does_not_mutate_line(db, doctor, paracetamol, priced_order, bad):
    para = line_named(priced_order, "Paracetamol")
    with pytest.raises(InvalidPrice):
        set_line_price(db, doctor, priced_order.id, para.id, bad)

    order = get_order(db, doctor.doctor_id, priced_order.id)
    assert line_named(order, "Paracetamol").unit_price == Decimal("10.00")
    assert order.payment_state == PaymentState.AWAITING_PRICING


def test_price_edit_resets_method(db, doctor, paracetamol, priced_order):
    _price_syrup(db, doctor, priced_order)
    select_method(db, doctor, priced_order.id, "cash")

    order = _price_syrup(db, doctor, priced_order, "50")
    assert order.payment_state == PaymentState.READY_FOR_PAYMENT
    assert order.payment_method == PaymentMethod.NONE
    assert compute_order_total(order.lines) == Decimal("70.00")


def test_price_locked_after_settlement(db, doctor, paracetamol, priced_order):
    _price_syrup(db, doctor, priced_order)
    select_method(db, doctor, priced_order.id, "cash")
    confirm_payment(db, doctor, priced_order.id, "cash", 65)

    with pytest.raises(InvalidState):
        _price_syrup(db, doctor, priced_order, "1")
    with pytest.raises(InvalidState):
        select_method(db, doctor, priced_order.id, "cash")
    with pytest.raises(InvalidState):
        cancel_payment_attempt(db, doctor, priced_order.id)


def test_unknown_method_rejected(db, doctor, paracetamol, priced_order):
    with pytest.raises(ValidationError):
        select_method(db, doctor, priced_order.id, "card")


# ---------- UPI ----------


def test_upi_without_clinic_address(db, doctor, paracetamol, make_order, fake_qr):
    order = make_order([("Paracetamol", 1)], clinic_address_id=None)
    assert order.payment_state == PaymentState.READY_FOR_PAYMENT

    with pytest.raises(MissingClinicAddress):
        select_method(db, doctor, order.id, "upi", qr_provider=fake_qr)

    order = get_order(db, doctor.doctor_id, order.id)
    assert order.payment_state == PaymentState.READY_FOR_PAYMENT
    assert order.payment_method == PaymentMethod.NONE
    assert fake_qr.calls == []


def test_upi_settlement(db, doctor, paracetamol, make_order, fake_qr):
    order = make_order([("Paracetamol", 3)])

    order = select_method(db, doctor, order.id, "upi", qr_provider=fake_qr)
    assert order.payment_state == PaymentState.METHOD_SELECTED
    assert order.payment_method == PaymentMethod.UPI
    assert order.qr_reference == fake_qr.qr
    assert fake_qr.calls == [("addr-1", "doc-1")]

    result = confirm_payment(db, doctor, order.id, "upi", "30.00")
    assert result.payment_state == PaymentState.SETTLED
    assert result.payment_method == PaymentMethod.UPI


@pytest.mark.parametrize("provider", [
    FakeQRProvider(qr=None),
    FakeQRProvider(error=requests.Timeout("provider timed out")),
])
def test_qr_unavailable_fails_attempt(db, doctor, paracetamol, make_order, notifier, provider):
    order = make_order([("Paracetamol", 1)])

    with pytest.raises(QRUnavailable):
        select_method(db, doctor, order.id, "upi", qr_provider=provider, notifier=notifier)

    order = get_order(db, doctor.doctor_id, order.id)
    assert order.payment_state == PaymentState.PAYMENT_FAILED
    assert order.failure_reason == QR_UNAVAILABLE
    assert order.qr_reference is None
    assert [e[0] for e in notifier.events] == [EVENT_PAYMENT_FAILED]

    # a failed attempt behaves like ready-for-payment
    order = select_method(db, doctor, order.id, "cash")
    assert order.payment_state == PaymentState.METHOD_SELECTED
    assert order.failure_reason is None


def test_qr_answer_ignored_after_cancel(db, doctor, session_factory, paracetamol, make_order):
    order = make_order([("Paracetamol", 1)])
    order_id = order.id

    class CancellingProvider(FakeQRProvider):
        def get_qr_code(self, clinic_address_id, doctor_id):
            # user backs out while the QR request is in flight
            other = session_factory()
            try:
                mid = get_order(other, doctor.doctor_id, order_id)
                assert mid.payment_state == PaymentState.AWAITING_QR
                cancel_payment_attempt(other, doctor, order_id)
            finally:
                other.close()
            return super().get_qr_code(clinic_address_id, doctor_id)

    with pytest.raises(InvalidState):
        select_method(db, doctor, order_id, "upi", qr_provider=CancellingProvider())

    order = get_order(db, doctor.doctor_id, order_id)
    assert order.payment_state == PaymentState.READY_FOR_PAYMENT
    assert order.qr_reference is None


def test_reselecting_cash_supersedes_inflight_qr(db, doctor, session_factory, paracetamol, make_order):
    order = make_order([("Paracetamol", 1)])
    order_id = order.id

    class SwitchToCashProvider(FakeQRProvider):
        def get_qr_code(self, clinic_address_id, doctor_id):
            # patient decides to pay cash while the QR request is in flight
            other = session_factory()
            try:
                switched = select_method(other, doctor, order_id, "cash")
                assert switched.payment_state == PaymentState.METHOD_SELECTED
            finally:
                other.close()
            return super().get_qr_code(clinic_address_id, doctor_id)

    provider = SwitchToCashProvider()
    with pytest.raises(InvalidState):
        select_method(db, doctor, order_id, "upi", qr_provider=provider)

    assert len(provider.calls) == 1
    order = get_order(db, doctor.doctor_id, order_id)
    assert order.payment_state == PaymentState.METHOD_SELECTED
    assert order.payment_method == PaymentMethod.CASH
    assert order.qr_reference is None

    result = confirm_payment(db, doctor, order_id, "cash", 10)
    assert result.payment_method == PaymentMethod.CASH


def test_cancel_returns_to_pricing_track(db, doctor, paracetamol, make_order, fake_qr):
    order = make_order([("Paracetamol", 1)])
    select_method(db, doctor, order.id, "upi", qr_provider=fake_qr)

    order = cancel_payment_attempt(db, doctor, order.id)
    assert order.payment_state == PaymentState.READY_FOR_PAYMENT
    assert order.payment_method == PaymentMethod.NONE
    assert order.qr_reference is None


def test_notifier_failure_does_not_undo_settlement(db, doctor, paracetamol, make_order):
    class BrokenNotifier:
        def notify(self, event, doctor_id, payload):
            raise RuntimeError("push service down")

    order = make_order([("Paracetamol", 1)])
    select_method(db, doctor, order.id, "cash")
    result = confirm_payment(db, doctor, order.id, "cash", 10, notifier=BrokenNotifier())

    assert result.payment_state == PaymentState.SETTLED
    assert get_order(db, doctor.doctor_id, order.id).payment_state == PaymentState.SETTLED


def test_stock_never_goes_negative(db, doctor, make_order):
    from app.services.pharmacy_inventory import add_medicine
    med = add_medicine(db, doctor, name="Insulin Pen", dosage=None, price="500", quantity=1)
    order = make_order([("Insulin Pen", 3)])
    select_method(db, doctor, order.id, "cash")
    confirm_payment(db, doctor, order.id, "cash", 1500)

    assert get_medicine(db, doctor.doctor_id, med.id).quantity == 0
