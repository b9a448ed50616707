# accounting/services/amounts.py

"""
MONEY MATH

All amounts are Decimal, rounded half-up to cents. Wherever a total is split
into rounded parts, the LAST computed part absorbs the residual so the parts
always sum exactly to the total.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from accounting.services.exceptions import AccountingError

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Debits and credits must agree to the cent; a difference of one full minor
# unit is already an imbalance.
BALANCE_TOLERANCE = Decimal("0.01")


def money(value) -> Decimal:
    if value is None or value == "":
        return ZERO

    if isinstance(value, Decimal):
        amt = value
    else:
        try:
            amt = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise AccountingError(f"Invalid money value: {value!r}") from exc

    if not amt.is_finite():
        raise AccountingError(f"Invalid money value: {value!r}")

    return amt.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def split_inclusive_tax(
    gross: Decimal,
    *,
    tax_type: str,
    rate: Decimal = ZERO,
    fixed_amount: Decimal = ZERO,
) -> tuple[Decimal, Decimal]:
    """
    Split a tax-inclusive gross into (subtotal, tax).

    percentage: tax = gross - gross / (1 + rate/100)
    fixed:      tax = min(fixed_amount, gross)
    """
    gross = money(gross)

    if tax_type == "fixed":
        tax = min(money(fixed_amount), gross)
    else:
        rate = Decimal(str(rate or 0))
        if rate <= 0:
            return gross, ZERO
        net = gross / (Decimal("1") + rate / HUNDRED)
        tax = money(gross - net)

    tax = max(tax, ZERO)
    return gross - tax, tax


def exclusive_tax(base: Decimal, rate: Decimal) -> Decimal:
    rate = Decimal(str(rate or 0))
    if rate <= 0:
        return ZERO
    return money(money(base) * rate / HUNDRED)


def allocate_proportionally(amounts: list[Decimal], target: Decimal) -> list[Decimal]:
    """
    Scale `amounts` so they sum to `target`.

    scale = target / sum(amounts); every part is rounded to cents except the
    last, which takes whatever is left.
    """
    if not amounts:
        return []

    target = money(target)
    total = sum((Decimal(str(a)) for a in amounts), ZERO)
    if total <= 0:
        raise AccountingError("Line items must sum to a positive amount")

    scale = target / total
    scaled = [money(Decimal(str(a)) * scale) for a in amounts[:-1]]
    scaled.append(target - sum(scaled, ZERO))
    return scaled


def is_balanced(total_debits: Decimal, total_credits: Decimal) -> bool:
    return abs(money(total_debits) - money(total_credits)) < BALANCE_TOLERANCE
