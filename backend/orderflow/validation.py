from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .money import to_decimal
from .time_utils import normalize_utc, parse_iso_datetime


# Maximum price: 9,999,999.99
# Keeps Numeric(12, 2) columns clear of overflow
MAX_PRICE = Decimal("9999999.99")


class DomainError(Exception):
    """
    Base for business rule failures.

    Carries a human-readable message plus structured details that routes
    return to the caller unchanged.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(DomainError, ValueError):
    """400-level input problem."""


class ConflictError(DomainError, ValueError):
    """409-level business rule conflict (e.g., duplicate coupon code)."""
    status_code = 409


class NotFoundError(DomainError, LookupError):
    """404-level missing entity."""
    status_code = 404


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns an admin payload may touch.

    writable_fields is the allowlist for create and patch; required_on_create
    lists the keys a create payload must carry.
    """
    writable_fields: set[str]
    required_on_create: frozenset[str] = frozenset()


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        # no "1.0", no "1e3"
        if text.lstrip("-").isdigit():
            return int(text)
        raise ValidationError(f"{key} must be a plain integer")
    raise ValidationError(f"{key} must be an integer")


def _as_decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    return amount


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    raise ValidationError(f"{key} must be true or false")


def _as_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return normalize_utc(value)
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    raise ValidationError(f"{key} must be a datetime")


def _as_text(key: str, value: Any, column) -> str:
    text = str(value).strip()
    if not text and not column.nullable:
        raise ValidationError(f"{key} cannot be blank")
    limit = getattr(column.type, "length", None)
    if limit and len(text) > limit:
        raise ValidationError(f"{key} exceeds max length {limit}")
    return text


def _coerce(column, value: Any):
    key, coltype = column.key, column.type
    if isinstance(coltype, Numeric):
        return _as_decimal(key, value)
    if isinstance(coltype, Integer):
        return _as_int(key, value)
    if isinstance(coltype, Boolean):
        return _as_bool(key, value)
    if isinstance(coltype, DateTime):
        return _as_datetime(key, value)
    if isinstance(coltype, (String, Text)):
        return _as_text(key, value, column)
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn an admin JSON body into a dict of typed column values.

    Keys outside policy.writable_fields are rejected, values are coerced by
    the column's SQLAlchemy type, and NOT NULL columns refuse null. A create
    (partial=False) must also carry every key in policy.required_on_create.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(set(policy.required_on_create) - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    cleaned: dict = {}
    for key, value in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        column = columns.get(key)
        if column is None:
            raise ValidationError(f"Unknown field: {key}")
        if value is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
        else:
            cleaned[key] = _coerce(column, value)
    return cleaned


def require_positive_int(value: Any, field: str) -> int:
    """Quantities from JSON: ints >= 1, numeric strings allowed, bools and floats rejected."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValidationError(f"{field} must be a positive integer")
        value = int(stripped)
    if not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def enforce_rules_pricing_slab(patch: dict) -> None:
    """
    Slab shape rules. Overlap between bands is not checked here; resolution
    takes the first matching band in ascending min_qty order.
    """
    min_qty = patch.get("min_qty")
    max_qty = patch.get("max_qty")
    if min_qty is not None and min_qty < 1:
        raise ValidationError("min_qty must be >= 1")
    if max_qty is not None and min_qty is not None and max_qty < min_qty:
        raise ValidationError("max_qty must be >= min_qty")
    if "price" in patch:
        price = patch["price"]
        if price is None or price < 0:
            raise ValidationError("price must be >= 0")
        if price > MAX_PRICE:
            raise ValidationError(f"price cannot exceed {MAX_PRICE}")


def enforce_rules_flash_sale(patch: dict) -> None:
    pct = patch.get("discount_percentage")
    if pct is not None and not (Decimal("0") < pct < Decimal("100")):
        raise ValidationError("discount_percentage must be between 0 and 100")
    start, end = patch.get("start_time"), patch.get("end_time")
    if start is not None and end is not None and end <= start:
        raise ValidationError("end_time must be after start_time")
    max_quantity = patch.get("max_quantity")
    if max_quantity is not None and max_quantity < 1:
        raise ValidationError("max_quantity must be >= 1")
