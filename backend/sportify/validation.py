# Overview: Request payload validation driven by SQLAlchemy column metadata and per-model allowlists.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text

from sportify.time_utils import parse_iso_datetime, to_utc_naive


# 99,999,999.99 in the store currency
MAX_AMOUNT_CENTS = 9_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    writable_fields: keys a client may send (anything else is rejected)
    required_on_create: keys that must be present when partial=False
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


def parse_int(value: Any, name: str) -> int:
    """
    Strict integer parsing for JSON input.

    Accepts ints and plain digit strings. Floats, booleans and scientific
    notation are rejected rather than truncated.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s or "e" in s.lower() or "." in s:
            raise ValidationError(f"{name} must be a plain integer")
        try:
            return int(s)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    raise ValidationError(f"{name} must be an integer")


def require_int(payload: dict, name: str, *, minimum: int | None = None) -> int:
    if name not in payload or payload[name] is None:
        raise ValidationError(f"{name} is required")
    value = parse_int(payload[name], name)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


def optional_int(payload: dict, name: str, *, minimum: int | None = None) -> int | None:
    if payload.get(name) is None:
        return None
    return require_int(payload, name, minimum=minimum)


def require_str(payload: dict, name: str, *, max_length: int = 255) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return value


def _coerce(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{col.key} must be true or false")
        return value

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return to_utc_naive(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON body against the model's columns.

    partial=False is create semantics (required fields enforced);
    partial=True validates only the keys that were sent.
    Returns a dict holding only writable, type-coerced fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = {c.key: c for c in model.__mapper__.columns}
    patch: dict = {}

    for key, raw in payload.items():
        if key not in policy.writable_fields or key not in cols:
            raise ValidationError(f"Field not allowed: {key}")
        col = cols[key]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        val = _coerce(col, raw)
        if isinstance(val, str):
            if val == "" and not col.nullable:
                raise ValidationError(f"{key} cannot be blank")
            length = getattr(col.type, "length", None)
            if length and len(val) > length:
                raise ValidationError(f"{key} exceeds max length {length}")
        patch[key] = val

    return patch


DISCOUNT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "code", "name", "description", "discount_type", "discount_value",
        "min_order_cents", "max_discount_cents", "start_date", "end_date",
        "usage_limit", "is_active",
    }),
    required_on_create=frozenset({"code", "name", "discount_type", "start_date", "end_date"}),
)

SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "site_name", "site_description", "currency", "tax_rate_bps",
        "shipping_standard_cents", "shipping_express_cents", "shipping_overnight_cents",
        "low_stock_threshold", "site_commission_bps",
    }),
)


def enforce_rules_amount(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")
