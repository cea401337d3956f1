"""
Formatter for the PFSFill engine.

Turns a resolved value and its declared field type into the string written to
the document. The empty string means "leave blank": absent values, numeric
zero and the literal text "0" all render as "". Formatting never raises.

Blanking the text "0" also blanks a genuine "0" answer in a free-text field.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any, Optional, Union

from pfsfill.config import get_settings
from pfsfill.fill_engine.models import FieldType, ResolvedValue

_ISO_DATE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?\s*$")

_WHOLE = Decimal(1)
_CENTS = Decimal("0.01")
_THOUSANDTHS = Decimal("0.001")


def to_number(value: Any) -> Optional[Decimal]:
    """
    Parse a numeric value.

    Accepts int, float, Decimal and numeric strings with optional "$" and
    thousands separators. Returns None for anything else, including NaN.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip().replace("$", "").replace(",", "")
        if not cleaned:
            return None
        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def _strip_fraction(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _round(number: Decimal, step: Decimal) -> Decimal:
    """Half-up rounding to ``step`` for any magnitude."""
    digits = max(number.adjusted() + 1, 1) - step.as_tuple().exponent
    with localcontext() as ctx:
        # quantize fails once the result needs more digits than the precision
        ctx.prec = max(ctx.prec, digits + 1)
        return number.quantize(step, rounding=ROUND_HALF_UP)


class ValueFormatter:
    """Renders resolved values per field type."""

    def __init__(self, currency_symbol: str = "$"):
        self.currency_symbol = currency_symbol

    def format(self, resolved: Union[ResolvedValue, Any], field_type: Union[FieldType, str]) -> str:
        """
        Render a value.

        Args:
            resolved: ResolvedValue or a bare raw value.
            field_type: Declared render type; unknown types render as text.

        Returns:
            Render string, "" to leave the field blank.
        """
        if isinstance(resolved, ResolvedValue):
            if not resolved.present or resolved.is_error:
                return ""
            value = resolved.value
        else:
            value = resolved

        if value is None or value == "":
            return ""

        if field_type == FieldType.CURRENCY:
            return self.format_currency(value)
        if field_type == FieldType.PERCENTAGE:
            return self.format_percentage(value)
        if field_type == FieldType.NUMBER:
            return self.format_number(value)
        if field_type == FieldType.DATE:
            return self.format_date(value)
        return self.format_text(value)

    def format_currency(self, value: Any) -> str:
        """Whole units, half-up, thousands separators: 1500 -> "$1,500"."""
        number = to_number(value)
        if number is None or number == 0:
            return ""
        rounded = _round(number, _WHOLE)
        sign = "-" if rounded < 0 else ""
        return f"{sign}{self.currency_symbol}{rounded.copy_abs():,f}"

    def format_percentage(self, value: Any) -> str:
        """Exactly two decimals: 4.5 -> "4.50%"."""
        number = to_number(value)
        if number is None or number == 0:
            return ""
        rounded = _round(number, _CENTS)
        if rounded == 0:
            rounded = rounded.copy_abs()
        return f"{rounded:f}%"

    def format_number(self, value: Any) -> str:
        """Thousands separators, up to three fraction digits: 1234.5 -> "1,234.5"."""
        number = to_number(value)
        if number is None or number == 0:
            return ""
        rounded = _round(number, _THOUSANDTHS)
        if rounded == 0:
            return "0"
        return _strip_fraction(f"{rounded:,f}")

    @staticmethod
    def format_date(value: Any) -> str:
        """ISO date or native date -> "MM/DD/YYYY"; anything invalid -> ""."""
        if isinstance(value, datetime):
            value = value.date()
        if isinstance(value, date):
            return value.strftime("%m/%d/%Y")
        if not isinstance(value, str):
            return ""
        match = _ISO_DATE.match(value)
        if not match:
            return ""
        try:
            parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return ""
        return parsed.strftime("%m/%d/%Y")

    @staticmethod
    def format_text(value: Any) -> str:
        """Trimmed text; "" and "0" render blank."""
        if not isinstance(value, bool):
            number = to_number(value) if isinstance(value, (int, float, Decimal)) else None
            if number is not None and number == 0:
                return ""
        text = str(value).strip()
        if text in ("", "0"):
            return ""
        return text


def get_formatter(currency_symbol: Optional[str] = None) -> ValueFormatter:
    """Get ValueFormatter instance using the configured currency symbol."""
    if currency_symbol is None:
        currency_symbol = get_settings().currency_symbol
    return ValueFormatter(currency_symbol=currency_symbol)
