from __future__ import annotations

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Numeric,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class PaymentState:
    AWAITING_PRICING = "AWAITING_PRICING"
    READY_FOR_PAYMENT = "READY_FOR_PAYMENT"
    METHOD_SELECTED = "METHOD_SELECTED"
    AWAITING_QR = "AWAITING_QR"
    SETTLED = "SETTLED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class PaymentMethod:
    NONE = "NONE"
    CASH = "CASH"
    UPI = "UPI"


class LineStatus:
    PENDING = "pending"
    COMPLETED = "completed"


class PharmacyOrder(Base):
    """
    A patient's pharmacy order under one doctor.

    source:
      - PRESCRIPTION -> built from an e-prescription
      - WALK_IN      -> counter request

    The payable total is never stored while the order is open;
    it is always summed from the priced lines. settled_amount is the
    figure frozen at settlement.
    """

    __tablename__ = "pharmacy_orders"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(String(64), nullable=False, index=True)

    patient_id = Column(String(64), nullable=False, index=True)
    patient_name = Column(String(255), nullable=True)
    patient_mobile = Column(String(32), nullable=True)

    # clinic / address the pharmacy QR belongs to
    clinic_address_id = Column(String(64), nullable=True)
    pharmacy_name = Column(String(255), nullable=True)
    pharmacy_address = Column(Text, nullable=True)
    pharmacy_gst = Column(String(32), nullable=True)

    source = Column(String(16), nullable=False,
                    default="PRESCRIPTION")  # PRESCRIPTION / WALK_IN
    prescription_id = Column(String(64), nullable=True, index=True)

    payment_method = Column(String(8), nullable=False,
                            default=PaymentMethod.NONE)
    payment_state = Column(String(24),
                           nullable=False,
                           default=PaymentState.AWAITING_PRICING,
                           index=True)
    failure_reason = Column(String(64), nullable=True)

    qr_reference = Column(Text, nullable=True)
    qr_attempt = Column(Integer, nullable=False, default=0)

    settled_amount = Column(Numeric(14, 2), nullable=True)
    settled_at = Column(DateTime, nullable=True, index=True)

    version = Column(Integer, nullable=False, default=1)

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

    __mapper_args__ = {"version_id_col": version}

    lines = relationship(
        "PharmacyOrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PharmacyOrderLine.id",
    )
    invoice = relationship("PharmacyInvoice",
                           back_populates="order",
                           uselist=False)


class PharmacyOrderLine(Base):
    """
    One medicine on an order. Tax rates are copied from the catalog when the
    line is created and are not refreshed afterwards.
    """

    __tablename__ = "pharmacy_order_lines"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("pharmacy_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # may point at nothing when the medicine is not in inventory yet
    medicine_id = Column(Integer,
                         ForeignKey("pharmacy_medicines.id"),
                         nullable=True)

    med_name = Column(String(255), nullable=False)
    dosage = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(14, 2), nullable=True)

    cgst_percent = Column(Numeric(5, 2), nullable=False, default=0)
    gst_percent = Column(Numeric(5, 2), nullable=False, default=0)

    status = Column(String(16), nullable=False,
                    default=LineStatus.PENDING)  # pending / completed
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    order = relationship("PharmacyOrder", back_populates="lines")
    medicine = relationship("PharmacyMedicine")


class PharmacyInvoice(Base):
    """
    Issued exactly once per settled order (UNIQUE order_id).
    Numbers are unique per doctor.
    """

    __tablename__ = "pharmacy_invoices"
    __table_args__ = (
        UniqueConstraint("doctor_id",
                         "invoice_number",
                         name="uq_pharmacy_invoice_number"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer,
                      ForeignKey("pharmacy_orders.id", ondelete="CASCADE"),
                      nullable=False,
                      unique=True)
    doctor_id = Column(String(64), nullable=False, index=True)
    invoice_number = Column(String(64), nullable=False)
    grand_total = Column(Numeric(14, 2), nullable=False, default=0)
    issued_at = Column(DateTime, nullable=False)

    order = relationship("PharmacyOrder", back_populates="invoice")


class PharmacyNumberSeries(Base):
    """
    Per-doctor running counter for document numbers (invoice, ...).
    """

    __tablename__ = "pharmacy_number_series"
    __table_args__ = (
        UniqueConstraint("doctor_id",
                         "doc_type",
                         "period_key",
                         name="uq_pharmacy_number_series"),
        {
            "mysql_engine": "InnoDB",
        },
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(64), nullable=False)
    doc_type = Column(String(16), nullable=False)  # INVOICE
    period_key = Column(String(8), nullable=False, default="")  # "2026" / ""
    next_number = Column(Integer, nullable=False, default=1)
