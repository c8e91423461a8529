import logging
import math
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)


def _coerce_to_decimal(value: Any) -> Optional[Decimal]:
    """Attempt to parse value into a Decimal."""
    if isinstance(value, Decimal):
        return value
    if value in (None, '', False):
        return None

    if isinstance(value, str):
        text = value.strip()
    else:
        text = str(value).strip()

    if not text:
        return None

    # Remove common number formatting such as commas
    text = text.replace(',', '')

    try:
        with localcontext() as ctx:
            ctx.prec = max(28, ctx.prec)
            return Decimal(text)
    except (InvalidOperation, ValueError):
        return None


def to_float(value: Any, field: str = '') -> float:
    """
    Coerce an exchange numeric field (str / int / float / Decimal) into a float.

    Exchanges disagree on numeric encodings (Binance sends strings, Gate.io mixes
    strings and numbers). Anything that cannot be parsed becomes ``0.0`` with a
    warning so downstream JSON serialisation never sees NaN/Inf or error objects.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        LOGGER.warning("float_coerce_unsupported field=%s type=bool value=%r", field, value)
        return 0.0
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, (str, Decimal)):
        dec = _coerce_to_decimal(value)
        if dec is None:
            if isinstance(value, str) and not value.strip():
                return 0.0
            LOGGER.warning("float_coerce_failed field=%s value=%r", field, value)
            return 0.0
        result = float(dec)
    else:
        LOGGER.warning("float_coerce_unsupported field=%s type=%s value=%r", field, type(value).__name__, value)
        return 0.0
    if math.isnan(result) or math.isinf(result):
        LOGGER.warning("float_coerce_non_finite field=%s value=%r", field, value)
        return 0.0
    return result


def finite_or_zero(value: float) -> float:
    """Return ``value`` unless it is NaN/Inf, in which case return ``0.0``."""
    if value is None or math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def format_decimal_for_step(value: Decimal, step: Decimal) -> str:
    """Format ``value`` using decimal places implied by ``step`` (rounding down)."""

    step_normalized = step.normalize()
    exponent = step_normalized.as_tuple().exponent
    quant = Decimal(1).scaleb(exponent) if exponent < 0 else Decimal(1)
    formatted = value.quantize(quant, rounding=ROUND_DOWN)
    return format(formatted, "f")


def snap_down(value: Decimal, step: Decimal) -> Decimal:
    """Round ``value`` down to a whole multiple of ``step``."""
    if step <= 0:
        return value
    units = (value / step).to_integral_value(rounding=ROUND_DOWN)
    return units * step
