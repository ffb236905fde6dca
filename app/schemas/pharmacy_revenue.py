from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel


class RevenueCounterOut(BaseModel):
    period_key: str
    revenue: Decimal = Decimal("0.00")
    patients: int = 0


class RevenueSummaryOut(BaseModel):
    doctor_id: str
    today: RevenueCounterOut
    month: RevenueCounterOut
