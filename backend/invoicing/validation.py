from __future__ import annotations

from datetime import datetime
from typing import Any

from invoicing.time_utils import coerce_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999

# 100% expressed in basis points
MAX_RATE_BPS = 10_000

AMOUNT_PERCENTAGE = "percentage"
AMOUNT_FIXED = "fixed"

VALID_AMOUNT_TYPES = [AMOUNT_PERCENTAGE, AMOUNT_FIXED]


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., cancelling a paid invoice)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON payloads.

    Rejects floats, booleans, decimals-in-strings and scientific notation so
    that money in cents never silently loses precision.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_amount_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    cents = coerce_int(value, field)
    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    qty = coerce_int(value, field)
    if qty < 1:
        raise ValidationError(f"{field} must be >= 1")
    return qty


def coerce_optional_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return coerce_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def coerce_amount_rule(kind: Any, value: Any, field: str) -> tuple[str | None, int]:
    """
    Validate a (type, value) pair used for discounts and GST.

    percentage values are basis points (1000 = 10%), fixed values are cents.
    A missing type means "no adjustment".
    """
    if kind in (None, ""):
        return None, 0
    if kind not in VALID_AMOUNT_TYPES:
        raise ValidationError(f"{field}_type must be one of {VALID_AMOUNT_TYPES}")
    amount = coerce_int(value if value is not None else 0, f"{field}_value")
    if amount < 0:
        raise ValidationError(f"{field}_value must be >= 0")
    if kind == AMOUNT_PERCENTAGE and amount > MAX_RATE_BPS:
        raise ValidationError(f"{field}_value cannot exceed {MAX_RATE_BPS} basis points")
    return kind, amount


def apply_amount_rule(base_cents: int, kind: str | None, value: int) -> int:
    """Resolve a discount/GST rule against a base amount (half-up rounding)."""
    if kind is None or not value:
        return 0
    if kind == AMOUNT_PERCENTAGE:
        return (base_cents * value + 5_000) // 10_000
    return value


def require_text(payload: dict, key: str, *, max_length: int | None = None) -> str:
    raw = payload.get(key)
    if raw is None or str(raw).strip() == "":
        raise ValidationError(f"{key} is required")
    text = str(raw).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text


def optional_text(payload: dict, key: str, *, max_length: int | None = None) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    text = str(raw).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text or None
