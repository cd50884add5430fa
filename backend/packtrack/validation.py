from __future__ import annotations

from typing import Any, Mapping


class ValidationError(ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate pack, illegal transition)."""

    code = "CONFLICT"


class NotFoundError(LookupError):
    """404-level missing entity."""

    code = "NOT_FOUND"


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for request payloads.

    Accepts ints (not bools) and plain digit strings. Rejects floats,
    decimals and scientific notation so "1e3" never sneaks in as 1000.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def optional_int(data: Mapping[str, Any], field: str, **bounds) -> int | None:
    value = data.get(field)
    if value is None or value == "":
        return None
    return coerce_int(value, field, **bounds)


def require_fields(data: Mapping[str, Any] | None, *fields: str) -> Mapping[str, Any]:
    """Ensure a JSON body exists and carries every named field."""
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return data


def clean_str(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    """Trim a text field; empty strings collapse to None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        return None
    if max_length is not None and len(stripped) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return stripped
