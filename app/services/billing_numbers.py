from __future__ import annotations

from datetime import datetime
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.pharmacy_order import PharmacyNumberSeries

DOC_INVOICE = "INVOICE"


def _period_key(dt: datetime) -> str:
    # invoice numbers restart every calendar year
    return dt.strftime("%Y")


def next_document_number(
    db: Session,
    *,
    doctor_id: str,
    doc_type: str,
    issued_at: datetime,
    prefix: str,
    padding: int = 6,
) -> str:
    """
    Reserve the next number of a doctor's series, e.g. PHINV-2026-000001.
    Caller owns the transaction; the series row stays locked until commit.
    """
    pk = _period_key(issued_at)

    row = (db.query(PharmacyNumberSeries).filter(
        PharmacyNumberSeries.doctor_id == doctor_id,
        PharmacyNumberSeries.doc_type == doc_type,
        PharmacyNumberSeries.period_key == pk,
    ).with_for_update().populate_existing().first())

    if not row:
        row = PharmacyNumberSeries(
            doctor_id=doctor_id,
            doc_type=doc_type,
            period_key=pk,
            next_number=1,
        )
        db.add(row)
        db.flush()

    n = int(row.next_number or 1)
    row.next_number = n + 1
    db.flush()

    return f"{prefix}{pk}-{str(n).zfill(padding)}"


def next_invoice_number(db: Session, *, doctor_id: str, issued_at: datetime) -> str:
    return next_document_number(
        db,
        doctor_id=doctor_id,
        doc_type=DOC_INVOICE,
        issued_at=issued_at,
        prefix=settings.INVOICE_PREFIX,
    )
