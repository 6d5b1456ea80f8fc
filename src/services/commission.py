"""Commission math. All money is Decimal, quantized to the minor unit."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from src.errors import ValidationError

MINOR_UNIT = Decimal("0.01")
# Largest value a Numeric(12, 2) money column holds
MAX_PURCHASE_AMOUNT = Decimal("9999999999.99")


def to_decimal(value) -> Decimal:
    """Convert ints/floats/strings to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def compute_commission(purchase_amount, commission_rate) -> Decimal:
    """commission = amount * rate / 100, rounded half-up to 0.01.

    >>> compute_commission(1000, 5)
    Decimal('50.00')
    >>> compute_commission("10.01", "2.5")
    Decimal('0.25')
    """
    amount = to_decimal(purchase_amount)
    rate = to_decimal(commission_rate)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Purchase amount must be a positive number")
    if quantize_money(amount) > MAX_PURCHASE_AMOUNT:
        raise ValidationError(f"Purchase amount must not exceed {MAX_PURCHASE_AMOUNT}")
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError("Commission rate must be between 0 and 100")
    return quantize_money(amount * rate / Decimal(100))
