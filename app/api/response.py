from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """
    Error envelope shared by every pharmacy endpoint:
    {
      "ok": false,
      "error": {"msg": "...", "code": "INVALID_AMOUNT", "details": ...}
    }
    """
    payload: Dict[str, Any] = {
        "ok": False,
        "error": {
            "msg": msg,
            "code": code,
            "details": details,
        },
    }
    # Decimal / datetime in details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))
