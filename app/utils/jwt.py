from datetime import datetime, timedelta
from typing import Optional

from jose import jwt, JWTError

from app.core.config import settings
from app.schemas.auth import DoctorContext


def create_access_token(
    *,
    user_id: str,
    role: str = "doctor",
    created_by: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: timedelta = timedelta(hours=12),
) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": str(user_id),
        "role": role,
        "created_by": created_by,  # owning doctor for staff accounts
        "name": name,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_doctor_context(token: str) -> Optional[DoctorContext]:
    """
    Read the caller identity out of a bearer token.
    Returns None when the token cannot be decoded or has no subject.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    role = (payload.get("role") or "doctor").lower()
    doctor_id = user_id if role == "doctor" else payload.get("created_by")
    if not doctor_id:
        return None
    return DoctorContext(
        doctor_id=str(doctor_id),
        user_id=str(user_id),
        role=role,
        name=payload.get("name"),
    )
