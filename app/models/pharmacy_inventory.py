from __future__ import annotations

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    DateTime,
    UniqueConstraint,
    func,
)

from app.db.base import Base


def name_key(name: str | None) -> str:
    """Case-insensitive identity of a medicine name within a doctor's catalog."""
    return " ".join((name or "").split()).lower()


class PharmacyMedicine(Base):
    """
    A doctor's pharmacy catalog entry.

    Never hard-deleted: historical order lines keep pointing at it,
    so removal only flips is_active.
    """

    __tablename__ = "pharmacy_medicines"
    __table_args__ = (
        UniqueConstraint("doctor_id", "name_key",
                         name="uq_pharmacy_medicines_doctor_name"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(String(64), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    name_key = Column(String(255), nullable=False)
    dosage = Column(String(64), nullable=True)  # tablet / syrup / 500mg ...

    price = Column(Numeric(14, 2), nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=0)  # on hand
    cgst_percent = Column(Numeric(5, 2), nullable=False, default=0)
    gst_percent = Column(Numeric(5, 2), nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime,
                        nullable=False,
                        server_default=func.now(),
                        index=True)
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
