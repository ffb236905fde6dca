"""Domain errors raised by the pharmacy services.

Services raise these instead of HTTP errors so they can be called outside a
request. ``app.api.exception_handlers`` maps each family onto a status code.
"""
from __future__ import annotations

from typing import Any, Optional


class PharmacyError(Exception):
    """Base exception for pharmacy order and payment errors."""

    code = "PHARMACY_ERROR"

    def __init__(self, message: str, *, details: Any = None,
                 code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code


class ValidationError(PharmacyError):
    """Bad input; rejected before anything is applied."""
    code = "VALIDATION_ERROR"


class InvalidPrice(ValidationError):
    code = "INVALID_PRICE"


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"


class MissingClinicAddress(ValidationError):
    code = "MISSING_CLINIC_ADDRESS"


class ConflictError(PharmacyError):
    """Request collides with existing state."""
    code = "CONFLICT"


class DuplicateMedicine(ConflictError):
    code = "DUPLICATE_MEDICINE"


class InvalidState(ConflictError):
    """Operation not allowed from the order's current payment state."""
    code = "INVALID_STATE"


class DependencyError(PharmacyError):
    """An external collaborator (QR provider, storage) did not answer."""
    code = "DEPENDENCY_ERROR"


class QRUnavailable(DependencyError):
    code = "QR_UNAVAILABLE"


class NotFound(PharmacyError):
    code = "NOT_FOUND"
