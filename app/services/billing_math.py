from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable

from app.core.errors import InvalidPrice

MONEY = Decimal("0.01")


def D(x) -> Decimal:
    try:
        return Decimal(str(x or 0))
    except Exception:
        return Decimal("0")


def money2(x) -> Decimal:
    return D(x).quantize(MONEY, rounding=ROUND_HALF_UP)


def validate_price(value) -> Decimal:
    """
    Coerce a submitted price to Decimal(0.01).
    Rejects None, non-numeric, NaN/Infinity and negatives.
    """
    if value is None or isinstance(value, bool):
        raise InvalidPrice("Please enter a valid price")
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidPrice(f"Invalid price '{value}'")
    if not price.is_finite():
        raise InvalidPrice(f"Invalid price '{value}'")
    if price < 0:
        raise InvalidPrice("Price must be non-negative")
    return money2(price)


def compute_line_total(line) -> Decimal:
    """unit_price x quantity; an unpriced line is worth 0. Tax is not added."""
    if line.unit_price is None:
        return Decimal("0.00")
    return money2(D(line.unit_price) * D(line.quantity))


def compute_order_total(lines: Iterable) -> Decimal:
    return money2(sum((compute_line_total(l) for l in lines), Decimal("0")))


def line_tax_breakdown(line) -> Dict[str, Decimal]:
    """
    Informational tax split for invoices. The rates are treated as already
    included in the unit price, so nothing here changes the payable total.
    """
    subtotal = compute_line_total(line)
    cgst_rate = D(line.cgst_percent)
    gst_rate = D(line.gst_percent)
    return {
        "subtotal": subtotal,
        "cgst_amount": money2(subtotal * cgst_rate / Decimal("100")),
        "gst_amount": money2(subtotal * gst_rate / Decimal("100")),
    }
