from __future__ import annotations

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    UniqueConstraint,
    func,
)

from app.db.base import Base


class PharmacyRevenueSnapshot(Base):
    """
    Dashboard counters per doctor and period.

    period_type:
      - DAY   -> period_key "YYYY-MM-DD"
      - MONTH -> period_key "YYYY-MM"

    Derived from settled orders only; rebuilt by
    app.services.pharmacy_revenue.rebuild_snapshots.
    """

    __tablename__ = "pharmacy_revenue_snapshots"
    __table_args__ = (
        UniqueConstraint("doctor_id",
                         "period_type",
                         "period_key",
                         name="uq_pharmacy_revenue_period"),
        {
            "mysql_engine": "InnoDB",
        },
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(64), nullable=False, index=True)
    period_type = Column(String(8), nullable=False)  # DAY / MONTH
    period_key = Column(String(10), nullable=False)

    revenue = Column(Numeric(14, 2), nullable=False, default=0)
    patient_count = Column(Integer, nullable=False, default=0)

    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
