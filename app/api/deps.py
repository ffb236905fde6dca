from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.schemas.auth import DoctorContext
from app.services.notifications import Notifier, default_notifier
from app.utils.jwt import decode_doctor_context


# =========================================================
# DB
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def current_doctor(authorization: Optional[str] = Header(None)) -> DoctorContext:
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    ctx = decode_doctor_context(token)
    if ctx is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return ctx


# =========================================================
# COLLABORATORS
# =========================================================
def get_notifier() -> Notifier:
    return default_notifier
