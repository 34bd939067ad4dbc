"""Monetary amount helpers. Amounts are always ``Decimal``."""

from decimal import Decimal, InvalidOperation

from expense_kernel.exceptions import InvalidAmountError

ZERO = Decimal("0")


def to_amount(value: Decimal | int | str) -> Decimal:
    """Coerce ``value`` to Decimal. Floats are rejected to avoid binary rounding."""
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be float; use Decimal or str")
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise InvalidAmountError(value) from exc


def require_positive(value: Decimal | int | str) -> Decimal:
    """Return ``value`` as Decimal, raising InvalidAmountError unless > 0."""
    amount = to_amount(value)
    if not amount.is_finite() or amount <= ZERO:
        raise InvalidAmountError(amount)
    return amount


def format_amount(amount: Decimal) -> str:
    """Render an amount for notification and audit text, e.g. ``40,000.00``."""
    return f"{Decimal(amount):,.2f}"
