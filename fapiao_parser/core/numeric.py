"""Numeric coercion for model-supplied values."""
import math
import re
from typing import Any

# Thousands separators: ASCII comma, full-width comma, any whitespace
_SEPARATORS = re.compile(r"[,，\s]")
_NUMBER = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)")


def coerce_number(value: Any) -> float:
    """Turn a loosely formatted value into a float, defaulting to 0.

    Accepts numbers and strings such as ``"1,234.50元"`` or ``"¥ 88"``.
    Never raises; NaN, infinities and values without a digit become 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            return 0.0
    elif isinstance(value, str):
        match = _NUMBER.search(_SEPARATORS.sub("", value))
        if not match:
            return 0.0
        try:
            number = float(match.group(0))
        except ValueError:
            return 0.0
    else:
        return 0.0

    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number
