from pydantic import BaseModel
from typing import Optional


class DoctorContext(BaseModel):
    """
    Pre-validated caller identity, passed explicitly into every pharmacy call.

    doctor_id is the owner of the catalog and orders. For staff accounts it
    is the doctor who created them; for doctors it is their own user id.
    """
    doctor_id: str
    user_id: str
    role: str = "doctor"
    name: Optional[str] = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
