from __future__ import annotations

from typing import Any

from .errors import ValidationError

# Upper bound for any money or quantity input; prevents nonsensical values
MAX_AMOUNT = 99_999_999
MAX_QUANTITY = 9_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats, scientific notation and decimal strings.
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


def require_positive_int(value: Any, field: str, *, maximum: int = MAX_AMOUNT) -> int:
    n = coerce_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be positive")
    if n > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return n


def require_non_negative_int(value: Any, field: str, *, maximum: int = MAX_AMOUNT) -> int:
    n = coerce_int(value, field)
    if n < 0:
        raise ValidationError(f"{field} cannot be negative")
    if n > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return n


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} required")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def normalize_card_uid(value: Any) -> str | None:
    """Blank UIDs mean "no card"; everything else is compared verbatim."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("uid must be a string")
    uid = value.strip()
    if not uid:
        return None
    if len(uid) > 64:
        raise ValidationError("uid must be at most 64 characters")
    return uid
