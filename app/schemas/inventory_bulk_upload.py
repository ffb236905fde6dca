from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class BulkRowIn(BaseModel):
    """
    One parsed spreadsheet row. Values stay raw (strings, numbers or None);
    coercion happens per row in the importer so one bad cell never
    rejects the whole request.
    """
    row: Optional[int] = Field(None, ge=1, description="1-based source row number")
    med_name: Any = None
    quantity: Any = None
    price: Any = None
    dosage: Any = None
    cgst: Any = None
    gst: Any = None


class BulkImportIn(BaseModel):
    medicines: List[BulkRowIn] = Field(..., min_length=1)


class BulkUploadErrorOut(BaseModel):
    row: int = Field(..., description="Source row number (header is row 1 for files)")
    column: Optional[str] = None
    message: str


class BulkUploadPreviewOut(BaseModel):
    file_type: str
    total_rows: int
    valid_rows: int
    error_rows: int
    required_columns: List[str]
    optional_columns: List[str]
    sample_rows: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[BulkUploadErrorOut] = Field(default_factory=list)


class BulkImportResultOut(BaseModel):
    inserted_count: int
    errors: List[BulkUploadErrorOut] = Field(default_factory=list)
