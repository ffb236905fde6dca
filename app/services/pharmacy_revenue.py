from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Optional, Set, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.core.locks import doctor_locks
from app.models.pharmacy_order import PaymentState, PharmacyOrder
from app.models.pharmacy_revenue import PharmacyRevenueSnapshot
from app.schemas.pharmacy_revenue import RevenueCounterOut, RevenueSummaryOut
from app.services.billing_math import money2
from app.utils.timezone import day_key, month_key, today_local

logger = logging.getLogger(__name__)

PERIOD_DAY = "DAY"
PERIOD_MONTH = "MONTH"


def settlement_lock_key(doctor_id: str) -> Tuple[str, str]:
    # settlements, invoice numbers and revenue counters of one doctor share it
    return ("settle", doctor_id)


def _day_bounds(d: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(d, time.min)
    return start, start + timedelta(days=1)


def _month_bounds(month: str) -> Tuple[datetime, datetime]:
    try:
        first = datetime.strptime(month, "%Y-%m")
    except ValueError:
        raise ValidationError("month must be YYYY-MM", details={"month": month})
    nxt = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first, nxt


def _snapshot(db: Session, doctor_id: str, period_type: str, period_key: str) -> PharmacyRevenueSnapshot:
    row = (db.query(PharmacyRevenueSnapshot).filter(
        PharmacyRevenueSnapshot.doctor_id == doctor_id,
        PharmacyRevenueSnapshot.period_type == period_type,
        PharmacyRevenueSnapshot.period_key == period_key,
    ).with_for_update().populate_existing().first())
    if not row:
        row = PharmacyRevenueSnapshot(
            doctor_id=doctor_id,
            period_type=period_type,
            period_key=period_key,
            revenue=Decimal("0.00"),
            patient_count=0,
        )
        db.add(row)
        db.flush()
    return row


def _is_first_visit_of_day(db: Session, order: PharmacyOrder, settled_at: datetime) -> bool:
    start, end = _day_bounds(settled_at.date())
    earlier = (db.query(PharmacyOrder.id).filter(
        PharmacyOrder.doctor_id == order.doctor_id,
        PharmacyOrder.patient_id == order.patient_id,
        PharmacyOrder.payment_state == PaymentState.SETTLED,
        PharmacyOrder.settled_at >= start,
        PharmacyOrder.settled_at < end,
        PharmacyOrder.id != order.id,
    ).first())
    return earlier is None


def record_settlement(
    db: Session,
    order: PharmacyOrder,
    amount: Decimal,
    settled_at: datetime,
) -> None:
    """
    Add one settlement to the doctor's DAY and MONTH counters.

    Runs inside the settlement transaction and does not de-duplicate:
    the caller guarantees it is invoked once per order.
    """
    amount = money2(amount)
    first_visit = _is_first_visit_of_day(db, order, settled_at)

    for period_type, key in (
        (PERIOD_DAY, day_key(settled_at)),
        (PERIOD_MONTH, month_key(settled_at)),
    ):
        snap = _snapshot(db, order.doctor_id, period_type, key)
        snap.revenue = money2(Decimal(str(snap.revenue or 0)) + amount)
        if first_visit:
            snap.patient_count = int(snap.patient_count or 0) + 1
    db.flush()
    logger.info(
        "Revenue +%s doctor=%s day=%s new_patient=%s",
        amount,
        order.doctor_id,
        day_key(settled_at),
        first_visit,
    )


def _counter(db: Session, doctor_id: str, period_type: str, key: str) -> RevenueCounterOut:
    row = (db.query(PharmacyRevenueSnapshot).filter(
        PharmacyRevenueSnapshot.doctor_id == doctor_id,
        PharmacyRevenueSnapshot.period_type == period_type,
        PharmacyRevenueSnapshot.period_key == key,
    ).first())
    if not row:
        return RevenueCounterOut(period_key=key)
    return RevenueCounterOut(
        period_key=key,
        revenue=money2(row.revenue),
        patients=int(row.patient_count or 0),
    )


def get_revenue_summary(
    db: Session,
    doctor_id: str,
    on_date: Optional[date] = None,
) -> RevenueSummaryOut:
    d = on_date or today_local()
    return RevenueSummaryOut(
        doctor_id=doctor_id,
        today=_counter(db, doctor_id, PERIOD_DAY, day_key(d)),
        month=_counter(db, doctor_id, PERIOD_MONTH, month_key(d)),
    )


def rebuild_snapshots(db: Session, doctor_id: str, month: str) -> int:
    """
    Recompute a month's DAY and MONTH counters from settled orders.
    Returns the number of snapshot rows written.
    """
    start, end = _month_bounds(month)

    with doctor_locks.hold(settlement_lock_key(doctor_id)):
        orders = (db.query(PharmacyOrder).filter(
            PharmacyOrder.doctor_id == doctor_id,
            PharmacyOrder.payment_state == PaymentState.SETTLED,
            PharmacyOrder.settled_at >= start,
            PharmacyOrder.settled_at < end,
        ).all())

        revenue: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        patients: Dict[str, Set[str]] = defaultdict(set)
        for o in orders:
            key = day_key(o.settled_at)
            revenue[key] += Decimal(str(o.settled_amount or 0))
            patients[key].add(o.patient_id)

        try:
            stale = (db.query(PharmacyRevenueSnapshot).filter(
                PharmacyRevenueSnapshot.doctor_id == doctor_id,
                or_(
                    and_(PharmacyRevenueSnapshot.period_type == PERIOD_DAY,
                         PharmacyRevenueSnapshot.period_key.like(f"{month}-%")),
                    and_(PharmacyRevenueSnapshot.period_type == PERIOD_MONTH,
                         PharmacyRevenueSnapshot.period_key == month),
                ),
            ).all())
            for row in stale:
                db.delete(row)
            # deletes must reach the table before the unique keys are reused
            db.flush()

            written = 0
            for key in sorted(revenue):
                db.add(
                    PharmacyRevenueSnapshot(
                        doctor_id=doctor_id,
                        period_type=PERIOD_DAY,
                        period_key=key,
                        revenue=money2(revenue[key]),
                        patient_count=len(patients[key]),
                    ))
                written += 1
            db.add(
                PharmacyRevenueSnapshot(
                    doctor_id=doctor_id,
                    period_type=PERIOD_MONTH,
                    period_key=month,
                    revenue=money2(sum(revenue.values(), Decimal("0"))),
                    patient_count=sum(len(p) for p in patients.values()),
                ))
            written += 1
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info("Rebuilt revenue doctor=%s month=%s rows=%s", doctor_id, month, written)
    return written
