from .pharmacy_inventory import PharmacyMedicine
from .pharmacy_order import (
    PharmacyOrder,
    PharmacyOrderLine,
    PharmacyInvoice,
    PharmacyNumberSeries,
    PaymentState,
    PaymentMethod,
    LineStatus,
)
from .pharmacy_revenue import PharmacyRevenueSnapshot

__all__ = [
    "PharmacyMedicine",
    "PharmacyOrder",
    "PharmacyOrderLine",
    "PharmacyInvoice",
    "PharmacyNumberSeries",
    "PaymentState",
    "PaymentMethod",
    "LineStatus",
    "PharmacyRevenueSnapshot",
]
