from __future__ import annotations

import csv
from io import BytesIO, StringIO

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from sqlalchemy.orm import Session

from app.api.deps import current_doctor, get_db
from app.schemas.auth import DoctorContext
from app.schemas.inventory_bulk_upload import (
    BulkImportIn,
    BulkImportResultOut,
    BulkUploadErrorOut,
    BulkUploadPreviewOut,
)
from app.schemas.pharmacy_inventory import (
    MedicineCreate,
    MedicineOut,
    MedicinePageOut,
    MedicineUpdate,
)
from app.services.inventory_bulk_upload import (
    REQUIRED_HEADERS,
    TEMPLATE_HEADERS,
    BulkImportResult,
    parse_upload_to_rows,
    submit_batch,
    validate_batch,
)
from app.services.pharmacy_inventory import (
    add_medicine,
    deactivate_medicine,
    get_medicine,
    list_medicines,
    update_medicine,
)

router = APIRouter(prefix="/pharmacy", tags=["Pharmacy - Inventory"])

SAMPLE_ROW = ["Paracetamol 500mg", "100", "10.00", "Tablet", "6", "12"]


def _result_out(result: BulkImportResult) -> BulkImportResultOut:
    return BulkImportResultOut(
        inserted_count=result.inserted_count,
        errors=[BulkUploadErrorOut(row=e.row, column=e.column, message=e.message) for e in result.errors],
    )


def _read_upload(file: UploadFile):
    raw = file.file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    try:
        return parse_upload_to_rows(file.filename or "", file.content_type or "", raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================================
# Medicines
# ============================================================
@router.get("/medicines", response_model=MedicinePageOut)
def list_medicines_route(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=200),
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    rows, total = list_medicines(db, doctor.doctor_id, page=page, page_size=page_size)
    return MedicinePageOut(
        items=[MedicineOut.model_validate(r) for r in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.post("/medicines", response_model=MedicineOut, status_code=201)
def create_medicine(
    payload: MedicineCreate,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    med = add_medicine(
        db,
        doctor,
        name=payload.med_name,
        dosage=payload.dosage,
        price=payload.price,
        quantity=payload.quantity,
        cgst=payload.cgst,
        gst=payload.gst,
    )
    return MedicineOut.model_validate(med)


@router.get("/medicines/{medicine_id}", response_model=MedicineOut)
def get_medicine_route(
    medicine_id: int,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return MedicineOut.model_validate(get_medicine(db, doctor.doctor_id, medicine_id))


@router.put("/medicines/{medicine_id}", response_model=MedicineOut)
def update_medicine_route(
    medicine_id: int,
    payload: MedicineUpdate,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    med = update_medicine(db, doctor, medicine_id, payload.model_dump(exclude_unset=True))
    return MedicineOut.model_validate(med)


@router.delete("/medicines/{medicine_id}", response_model=MedicineOut)
def delete_medicine_route(
    medicine_id: int,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    return MedicineOut.model_validate(deactivate_medicine(db, doctor, medicine_id))


# ============================================================
# Bulk import
# ============================================================
@router.post("/medicines/bulk", response_model=BulkImportResultOut)
def bulk_import_medicines(
    payload: BulkImportIn,
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    rows = [r.model_dump() for r in payload.medicines]
    return _result_out(submit_batch(db, doctor, rows))


@router.get("/medicines/bulk-upload/template")
def download_medicines_template(
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    doctor: DoctorContext = Depends(current_doctor),
):
    if format == "csv":
        output = StringIO()
        w = csv.writer(output)
        w.writerow(TEMPLATE_HEADERS)
        w.writerow(SAMPLE_ROW)
        data = output.getvalue().encode("utf-8-sig")
        return StreamingResponse(
            BytesIO(data),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=medicines_template.csv"},
        )

    wb = Workbook()
    ws = wb.active
    ws.title = "Medicines"
    ws.append(TEMPLATE_HEADERS)
    ws.append(SAMPLE_ROW)

    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return StreamingResponse(
        buf,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=medicines_template.xlsx"},
    )


@router.post("/medicines/bulk-upload/preview", response_model=BulkUploadPreviewOut)
def preview_medicines_upload(
    file: UploadFile = File(...),
    doctor: DoctorContext = Depends(current_doctor),
):
    file_type, rows = _read_upload(file)
    normalized, errs = validate_batch(rows)

    return BulkUploadPreviewOut(
        file_type=file_type,
        total_rows=len(rows),
        valid_rows=len(normalized),
        error_rows=len({e.row for e in errs}),
        required_columns=REQUIRED_HEADERS,
        optional_columns=[c for c in TEMPLATE_HEADERS if c not in REQUIRED_HEADERS],
        sample_rows=normalized[:20],
        errors=[BulkUploadErrorOut(row=e.row, column=e.column, message=e.message) for e in errs],
    )


@router.post("/medicines/bulk-upload/commit", response_model=BulkImportResultOut)
def commit_medicines_upload(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    doctor: DoctorContext = Depends(current_doctor),
):
    _, rows = _read_upload(file)
    return _result_out(submit_batch(db, doctor, rows))
