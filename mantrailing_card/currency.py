"""
Currency Support Module

All balances are Euro amounts held as Decimal with two places. NEVER uses
float for monetary values. Parsing accepts both "18.00" and the German
"18,00" / "1.234,56" forms typed into the booking dialog.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union
import re

from .errors import ValidationError

getcontext().prec = 28

CURRENCY_CODE = "EUR"
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, str, int, float]


def quantize(value: Decimal) -> Decimal:
    """Round to cent precision"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _normalize_separators(value: str) -> str:
    clean_value = re.sub(r'[^\d.,\-+eE]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # The separator that appears last is the decimal one
        if clean_value.rfind(',') > clean_value.rfind('.'):
            clean_value = clean_value.replace('.', '').replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        if clean_value.count(',') == 1 and len(clean_value.split(',')[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    return clean_value


def parse_amount(value: AmountLike) -> Decimal:
    """
    Parse user input into a positive, finite Euro amount

    Args:
        value: Decimal, int, float or string representation

    Returns:
        Amount with exactly two decimal places

    Raises:
        ValidationError: If the value is empty, not a number, not finite,
            has sub-cent digits or is not strictly positive
    """
    if value is None or isinstance(value, bool):
        raise ValidationError("Betrag fehlt")

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        elif isinstance(value, str):
            if not value.strip():
                raise ValidationError("Betrag fehlt")
            amount = Decimal(_normalize_separators(value))
        else:
            raise ValidationError(f"Ungültiger Betrag: {value!r}")
        if not amount.is_finite():
            raise ValidationError(f"Ungültiger Betrag: {value!r}")
        rounded = quantize(amount)
    except InvalidOperation:
        raise ValidationError(f"Ungültiger Betrag: {value!r}")

    if rounded != amount:
        raise ValidationError(f"Betrag darf höchstens zwei Nachkommastellen haben: {value!r}")
    amount = rounded

    if amount <= ZERO:
        raise ValidationError("Betrag muss größer als 0 sein")
    return amount


def to_decimal(value: AmountLike) -> Decimal:
    """Convert a stored value (string or number) back to a cent amount"""
    if isinstance(value, Decimal):
        return quantize(value)
    return quantize(Decimal(str(value)))


def format_eur(amount: Decimal) -> str:
    """Format like de-DE locale currency, e.g. ``1.234,50 €``"""
    sign = "-" if amount < 0 else ""
    text = f"{abs(quantize(amount)):,.2f}"
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}{text} €"
