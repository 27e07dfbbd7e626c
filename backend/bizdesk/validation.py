from __future__ import annotations
from datetime import datetime
from bizdesk.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount in whole currency units (~1e12 VND)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT = 999_999_999_999

# Largest quantity accepted on a single order line or stock movement
MAX_QUANTITY = 1_000_000

PHONE_MAX_DIGITS = 11


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate product code)."""


class NotFoundError(ValueError):
    """404-level: a referenced record does not exist."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats with fractions, scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # JSON clients often send 100000.0 for whole amounts
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_amount(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        amount = patch[key]
        if amount < 0:
            raise ValidationError(f"{key} must be >= 0")
        if amount > MAX_AMOUNT:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT:,}")


def _check_phone(patch: dict, key: str = "phone") -> None:
    phone = patch.get(key)
    if phone:
        if not phone.isdigit() or not (10 <= len(phone) <= PHONE_MAX_DIGITS):
            raise ValidationError(f"{key} must be 10-11 digits")


def _check_email(patch: dict, key: str = "email") -> None:
    email = patch.get(key)
    if email:
        local, _, domain = email.partition("@")
        if not local or "." not in domain or " " in email:
            raise ValidationError(f"{key} is not a valid email address")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_amount(patch, "current_price")
    _check_amount(patch, "avg_import_price")
    if "min_stock" in patch and patch["min_stock"] is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")


def enforce_rules_customer(patch: dict) -> None:
    _check_phone(patch)
    _check_email(patch)
    tax_code = patch.get("tax_code")
    if tax_code and (not tax_code.isdigit() or not (10 <= len(tax_code) <= 13)):
        raise ValidationError("tax_code must be 10-13 digits")


def enforce_rules_agent(patch: dict) -> None:
    _check_phone(patch)
    _check_email(patch)
    rate = patch.get("commission_rate")
    if rate is not None and not (0 <= rate <= 100):
        raise ValidationError("commission_rate must be between 0 and 100")


def enforce_rules_user(patch: dict) -> None:
    _check_phone(patch)
    _check_email(patch)
    role = patch.get("role")
    if role is not None and role not in ("admin", "employee"):
        raise ValidationError("role must be admin or employee")


def parse_pagination(args) -> tuple[int, int]:
    """page (1-indexed, default 1) and limit (default 10, max 100) from query args."""
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", 10))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    return max(page, 1), min(max(limit, 1), 100)


def parse_bool_arg(args, key: str) -> bool | None:
    """Optional boolean query arg: "true"/"1" or "false"/"0"; absent -> None."""
    raw = args.get(key)
    if raw is None or raw == "":
        return None
    value = raw.strip().lower()
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    raise ValidationError(f"{key} must be true or false")
