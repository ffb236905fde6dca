from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import load_workbook
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationError
from app.core.locks import doctor_locks
from app.models.pharmacy_inventory import PharmacyMedicine, name_key
from app.schemas.auth import DoctorContext
from app.services.billing_math import money2

logger = logging.getLogger(__name__)


# -----------------------------
# Template columns (header names)
# -----------------------------
TEMPLATE_HEADERS = [
    "med_name",
    "quantity",
    "price",
    "dosage",
    "cgst",
    "gst",
]

REQUIRED_HEADERS = ["med_name", "quantity", "price"]

# Allow user-friendly column names in sheets
HEADER_ALIASES = {
    "medname": "med_name",
    "medicine": "med_name",
    "medicine_name": "med_name",
    "name": "med_name",
    "item_name": "med_name",
    "qty": "quantity",
    "stock": "quantity",
    "rate": "price",
    "mrp": "price",
    "unit_price": "price",
    "form": "dosage",
    "cgst_percent": "cgst",
    "sgst": "gst",
    "gst_percent": "gst",
    "tax": "gst",
    "tax_percent": "gst",
}

NA_SET = {"", "-", "na", "n/a", "null", "none", "nil"}

ALREADY_EXISTS = "already exists"


def _norm_header(h: Any) -> str:
    s = ("" if h is None else str(h)).strip()
    s = s.replace("\ufeff", "")
    # medName -> med_name
    s = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", s).lower()
    s = s.replace("%", "_percent")
    s = re.sub(r"[\s_]+", "_", s).strip("_")
    return HEADER_ALIASES.get(s, HEADER_ALIASES.get(s.replace("_", ""), s))


def _safe_text(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    if s.lower() in NA_SET:
        return None
    return s


def _parse_decimal(v: Any) -> Optional[Decimal]:
    """
    Safe Decimal parser:
    - accepts 1,234.50
    - accepts 5% as 5
    - empty/NA -> None
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, Decimal):
        d = v
    elif isinstance(v, (int, float)):
        d = Decimal(str(v))
    else:
        s = str(v).strip()
        if s.lower() in NA_SET:
            return None

        # remove commas
        s = s.replace(",", "").strip()

        # percent "5%" -> "5"
        if s.endswith("%"):
            s = s[:-1].strip()

        try:
            d = Decimal(s)
        except InvalidOperation as e:
            raise ValueError(f"Invalid number '{v}'") from e

    if not d.is_finite():
        raise ValueError(f"Invalid number '{v}'")
    return d


@dataclass
class UploadError:
    row: int
    column: Optional[str]
    message: str


@dataclass
class BulkImportResult:
    inserted_count: int = 0
    errors: List[UploadError] = field(default_factory=list)


def parse_upload_to_rows(filename: str, content_type: str, raw: bytes) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Returns: (file_type, list_of_row_dicts_normalized_headers)
    Each dict carries "row": its sheet row number (header is row 1).
    Supports: CSV/TSV/TXT and XLSX
    """
    name = (filename or "").lower()

    # XLSX
    if name.endswith(".xlsx") or content_type in {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    }:
        try:
            wb = load_workbook(BytesIO(raw), read_only=True, data_only=True)
        except Exception as e:
            raise ValueError("Could not read Excel file") from e
        ws = wb.active

        rows = list(ws.iter_rows(values_only=True))
        if not rows:
            return ("xlsx", [])

        headers = [_norm_header(h) for h in rows[0]]
        out: List[Dict[str, Any]] = []
        for i, r in enumerate(rows[1:], start=2):  # Excel row numbers start at 1, header at 1
            if r is None or all(c is None or str(c).strip() == "" for c in r):
                continue
            d: Dict[str, Any] = {"row": i}
            for j, h in enumerate(headers):
                if not h:
                    continue
                d[h] = r[j] if j < len(r) else None
            out.append(d)
        return ("xlsx", out)

    # CSV / TSV / TXT
    # Try decode robustly
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = raw.decode("latin-1", errors="replace")

    # detect delimiter
    sample = text[:2048]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=[",", "\t", ";", "|"])
        delim = dialect.delimiter
    except csv.Error:
        delim = ","  # default

    reader = csv.DictReader(StringIO(text), delimiter=delim)
    out = []
    for i, row in enumerate(reader, start=2):
        values = list((row or {}).values())
        if all(v is None or str(v).strip() == "" for v in values):
            continue
        d = {_norm_header(k): v for k, v in (row or {}).items() if k is not None}
        d["row"] = i
        out.append(d)

    return ("csv", out)


def _row_number(row: Dict[str, Any], position: int) -> int:
    n = row.get("row")
    try:
        n = int(n)
    except (TypeError, ValueError):
        return position
    return n if n >= 1 else position


def validate_batch(rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[UploadError]]:
    """
    Normalizes + validates rows, each on its own.
    - Returns normalized_rows (typed) and errors
    - A bad row never stops the others
    - Does not touch DB
    """
    errors: List[UploadError] = []
    normalized: List[Dict[str, Any]] = []

    for position, row in enumerate(rows, start=1):
        idx = _row_number(row, position)
        row_errors: List[UploadError] = []

        med_name = _safe_text(row.get("med_name"))
        if not med_name:
            row_errors.append(UploadError(idx, "med_name", "medName is required"))

        def dec(col: str, required: bool) -> Optional[Decimal]:
            raw_value = row.get(col)
            try:
                d = _parse_decimal(raw_value)
            except ValueError as e:
                row_errors.append(UploadError(idx, col, str(e)))
                return None
            if d is None:
                if required:
                    row_errors.append(UploadError(idx, col, f"{col} is required"))
                return None
            if d < 0:
                row_errors.append(UploadError(idx, col, f"{col} must be non-negative"))
                return None
            return d

        quantity = dec("quantity", True)
        price = dec("price", True)
        cgst = dec("cgst", False)
        gst = dec("gst", False)

        if quantity is not None and quantity != quantity.to_integral_value():
            row_errors.append(UploadError(idx, "quantity", "quantity must be a whole number"))

        if row_errors:
            errors.extend(row_errors)
            continue

        normalized.append({
            "row": idx,
            "med_name": " ".join(med_name.split()),
            "quantity": int(quantity),
            "price": money2(price),
            "dosage": _safe_text(row.get("dosage")),
            "cgst": cgst or Decimal("0"),
            "gst": gst or Decimal("0"),
        })

    return normalized, errors


def submit_batch(
    db: Session,
    doctor: DoctorContext,
    rows: List[Dict[str, Any]],
) -> BulkImportResult:
    """
    Insert-or-reject every row against the doctor's catalog.

    - Name already in the catalog (or inserted earlier in this batch) -> "already exists"
    - Name of a deactivated medicine -> reactivated with the row's values
    - Everything else is created
    - Partial success is committed; there is no all-or-nothing rollback
    """
    if len(rows) > settings.BULK_IMPORT_MAX_ROWS:
        raise ValidationError(
            f"Too many rows: {len(rows)} (max {settings.BULK_IMPORT_MAX_ROWS})")

    normalized, validation_errors = validate_batch(rows)
    result = BulkImportResult(errors=list(validation_errors))

    with doctor_locks.hold(("catalog", doctor.doctor_id)):
        keys = {name_key(r["med_name"]) for r in normalized}
        existing = set()
        inactive: Dict[str, PharmacyMedicine] = {}
        if keys:
            for m in db.query(PharmacyMedicine).filter(
                    PharmacyMedicine.doctor_id == doctor.doctor_id,
                    PharmacyMedicine.name_key.in_(keys),
            ).all():
                if m.is_active:
                    existing.add(m.name_key)
                else:
                    inactive[m.name_key] = m

        for r in normalized:
            key = name_key(r["med_name"])
            if key in existing:
                result.errors.append(UploadError(r["row"], "med_name", ALREADY_EXISTS))
                continue

            if key in inactive:
                # a deactivated medicine comes back with the row's values, as in add_medicine
                med = inactive.pop(key)
                med.name = r["med_name"]
                med.dosage = r["dosage"]
                med.price = r["price"]
                med.quantity = r["quantity"]
                med.cgst_percent = r["cgst"]
                med.gst_percent = r["gst"]
                med.is_active = True
                existing.add(key)
                result.inserted_count += 1
                continue

            med = PharmacyMedicine(
                doctor_id=doctor.doctor_id,
                name=r["med_name"],
                name_key=key,
                dosage=r["dosage"],
                price=r["price"],
                quantity=r["quantity"],
                cgst_percent=r["cgst"],
                gst_percent=r["gst"],
                is_active=True,
            )
            try:
                with db.begin_nested():
                    db.add(med)
            except IntegrityError:
                # another process inserted the same name after our read
                result.errors.append(UploadError(r["row"], "med_name", ALREADY_EXISTS))
                existing.add(key)
                continue

            existing.add(key)
            result.inserted_count += 1

        db.commit()

    result.errors.sort(key=lambda e: (e.row, e.column or ""))
    logger.info(
        "Bulk import doctor=%s rows=%s inserted=%s errors=%s",
        doctor.doctor_id,
        len(rows),
        result.inserted_count,
        len(result.errors),
    )
    return result
