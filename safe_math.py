"""
Numeric guards shared by the calculation modules.

Financial inputs never raise: a non-finite intermediate (NaN, +/-Infinity) is
replaced with a safe default instead of being carried into a running total.
"""

from __future__ import annotations
import math

# Upper bound for any single monetary value (£100bn)
MAX_MONEY_VALUE = 1e11


def is_finite(value) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def finite_or(value: float, default: float = 0.0) -> float:
    """Return value, or default when value is NaN or infinite."""
    return value if is_finite(value) else default


def cap_value(value: float) -> float:
    """Clamp to +/-MAX_MONEY_VALUE; non-finite values become 0."""
    if not is_finite(value):
        return 0.0
    return max(-MAX_MONEY_VALUE, min(MAX_MONEY_VALUE, value))


def safe_add(*values: float) -> float:
    """Sum the finite values, skipping NaN/Infinity, capped to the money range."""
    total = 0.0
    for v in values:
        if is_finite(v):
            total += v
    return cap_value(total)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    if not denominator or not is_finite(denominator):
        return default
    return finite_or(numerator / denominator, default)


def round_whole(value: float) -> int:
    """Round half up to the nearest whole unit (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(finite_or(value) + 0.5))


def round_pence(value: float) -> float:
    """Round half up to the nearest penny."""
    return math.floor(finite_or(value) * 100 + 0.5) / 100


def round_units(value: float) -> float:
    """Round a unit count to 8 decimal places to drop float artefacts."""
    return math.floor(finite_or(value) * 1e8 + 0.5) / 1e8
