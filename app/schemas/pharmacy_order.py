from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, ConfigDict

# ---------- Order lines ----------


class OrderLineIn(BaseModel):
    med_name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., gt=0)
    dosage: Optional[str] = None

    # walk-in requests may pin a catalog entry and/or a price up front
    medicine_id: Optional[int] = None
    unit_price: Optional[Decimal] = Field(None, ge=0)


class OrderLineOut(BaseModel):
    id: int
    order_id: int
    medicine_id: Optional[int]
    med_name: str
    dosage: Optional[str]
    quantity: int
    unit_price: Optional[Decimal]
    cgst: Decimal
    gst: Decimal
    line_total: Decimal
    status: str

    model_config = ConfigDict(from_attributes=True)


# ---------- Order header ----------


class OrderCreate(BaseModel):
    source: Literal["PRESCRIPTION", "WALK_IN"] = "PRESCRIPTION"
    prescription_id: Optional[str] = None

    patient_id: str = Field(..., min_length=1, max_length=64)
    patient_name: Optional[str] = None
    patient_mobile: Optional[str] = None

    clinic_address_id: Optional[str] = None
    pharmacy_name: Optional[str] = None
    pharmacy_address: Optional[str] = None
    pharmacy_gst: Optional[str] = None

    lines: List[OrderLineIn] = Field(..., min_length=1)


class OrderOut(BaseModel):
    id: int
    doctor_id: str
    patient_id: str
    patient_name: Optional[str]
    patient_mobile: Optional[str]
    clinic_address_id: Optional[str]
    source: str
    prescription_id: Optional[str]

    status: str  # pending / completed (derived from lines)
    payment_state: str
    payment_method: str
    failure_reason: Optional[str]
    qr_reference: Optional[str]

    total_amount: Decimal
    total_medicines: int
    settled_amount: Optional[Decimal]
    settled_at: Optional[datetime]
    invoice_number: Optional[str]

    lines: List[OrderLineOut]
    created_at: Optional[datetime] = None


class OrderPageOut(BaseModel):
    items: List[OrderOut]
    page: int
    page_size: int
    total: int


# ---------- Payment ----------


class LinePriceIn(BaseModel):
    price: Decimal


class SelectMethodIn(BaseModel):
    method: Literal["CASH", "UPI", "cash", "upi"]


class ConfirmPaymentIn(BaseModel):
    method: Literal["CASH", "UPI", "cash", "upi"]
    amount: Decimal


class PaymentResultOut(BaseModel):
    order_id: int
    payment_state: str
    payment_method: str
    amount: Decimal
    invoice_number: Optional[str]
    settled_at: Optional[datetime]
    already_settled: bool = False
