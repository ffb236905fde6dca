from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_doctor, get_db
from app.schemas.auth import DoctorContext
from app.schemas.pharmacy_revenue import RevenueSummaryOut
from app.services.pharmacy_revenue import get_revenue_summary, rebuild_snapshots

router = APIRouter(prefix="/pharmacy/revenue", tags=["Pharmacy - Revenue"])


@router.get("/summary", response_model=RevenueSummaryOut)
def revenue_summary(
    on_date: Optional[date] = Query(None, description="Defaults to today (clinic time)"),
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return get_revenue_summary(db, doctor.doctor_id, on_date)


@router.post("/rebuild", response_model=RevenueSummaryOut)
def revenue_rebuild(
    month: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    rebuild_snapshots(db, doctor.doctor_id, month)
    first_day = date(int(month[:4]), int(month[5:7]), 1)
    return get_revenue_summary(db, doctor.doctor_id, first_day)
