from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class InvoicePartyOut(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    mobile: Optional[str] = None
    address: Optional[str] = None
    gst_number: Optional[str] = None


class InvoiceLineOut(BaseModel):
    med_name: str
    dosage: Optional[str]
    quantity: int
    unit_price: Decimal
    cgst_percent: Decimal
    gst_percent: Decimal
    cgst_amount: Decimal
    gst_amount: Decimal
    subtotal: Decimal


class InvoiceOut(BaseModel):
    """
    Data handed to the invoice renderer (HTML/PDF is produced elsewhere).
    Tax columns are informational; grand_total is what was paid.
    """
    invoice_number: str
    issued_at: datetime
    order_id: int
    payment_method: str

    clinic: InvoicePartyOut
    doctor: InvoicePartyOut
    patient: InvoicePartyOut

    lines: List[InvoiceLineOut]
    grand_total: Decimal
    tax_included: bool = True
