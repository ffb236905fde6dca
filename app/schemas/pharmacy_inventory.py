from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


class MedicineCreate(BaseModel):
    med_name: str = Field(..., min_length=1, max_length=255)
    dosage: Optional[str] = Field(None, max_length=64)
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    cgst: Decimal = Field(Decimal("0"), ge=0)
    gst: Decimal = Field(Decimal("0"), ge=0)


class MedicineUpdate(BaseModel):
    med_name: Optional[str] = Field(None, min_length=1, max_length=255)
    dosage: Optional[str] = Field(None, max_length=64)
    price: Optional[Decimal] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    cgst: Optional[Decimal] = Field(None, ge=0)
    gst: Optional[Decimal] = Field(None, ge=0)


class MedicineOut(BaseModel):
    id: int
    doctor_id: str
    med_name: str = Field(validation_alias="name")
    dosage: Optional[str]
    price: Decimal
    quantity: int
    cgst: Decimal = Field(validation_alias="cgst_percent")
    gst: Decimal = Field(validation_alias="gst_percent")
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class MedicinePageOut(BaseModel):
    items: List[MedicineOut]
    page: int
    page_size: int
    total: int
