from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from app.core.config import settings

logger = logging.getLogger(__name__)

# keys the clinic service has used for the pharmacy QR image/URL
_QR_KEYS = ("pharmacyQR", "pharmacyQr", "qrCode", "qr_code", "qr", "url")


class QRCodeProvider:
    """
    Resolves the payment QR for a clinic address.
    Implementations return None when no QR is available; they never retry.
    """

    def get_qr_code(self, clinic_address_id: str, doctor_id: str) -> Optional[str]:
        raise NotImplementedError


def _extract_qr(body: Any) -> Optional[str]:
    if isinstance(body, str):
        return body.strip() or None
    if isinstance(body, dict):
        for key in _QR_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return _extract_qr(body.get("data"))
    return None


class HttpQRCodeProvider(QRCodeProvider):

    def __init__(
        self,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url or settings.QR_PROVIDER_BASE_URL).rstrip("/")
        self.path = path or settings.QR_PROVIDER_PATH
        self.timeout = timeout or settings.QR_PROVIDER_TIMEOUT_SECONDS

    def get_qr_code(self, clinic_address_id: str, doctor_id: str) -> Optional[str]:
        url = self.base_url + self.path.format(address_id=clinic_address_id)
        try:
            resp = requests.get(url,
                                params={"doctorId": doctor_id},
                                timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("QR provider unreachable (%s): %s", url, e)
            return None

        if resp.status_code != 200:
            logger.warning("QR provider returned %s for address=%s",
                           resp.status_code, clinic_address_id)
            return None

        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        qr = _extract_qr(body)
        if not qr:
            logger.warning("No pharmacy QR configured for address=%s", clinic_address_id)
        return qr


def get_qr_provider() -> QRCodeProvider:
    return HttpQRCodeProvider()
