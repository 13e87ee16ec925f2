from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from stockledger.errors import ValidationError
from stockledger.time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for request bodies:
    - int_fields / str_fields / datetime_fields: what clients are allowed to set
    - required: fields that must be present
    - choices: enum fields and their allowed values
    """
    int_fields: frozenset = frozenset()
    str_fields: frozenset = frozenset()
    datetime_fields: frozenset = frozenset()
    required: frozenset = frozenset()
    choices: dict = field(default_factory=dict)

    @property
    def writable_fields(self) -> frozenset:
        return self.int_fields | self.str_fields | self.datetime_fields | frozenset(self.choices)


def coerce_int(value: Any, key: str) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def validate_payload(payload: Any, policy: PayloadPolicy) -> dict:
    """
    Validates + normalizes an incoming JSON object against a PayloadPolicy.

    Unknown keys are rejected so typos surface as 400s instead of silently
    falling back to defaults. Returns a cleaned dict containing only the
    keys that were provided.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cleaned: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")

        if raw is None:
            cleaned[key] = None
            continue

        if key in policy.int_fields:
            cleaned[key] = coerce_int(raw, key)
        elif key in policy.datetime_fields:
            try:
                dt = parse_iso_datetime(str(raw))
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            cleaned[key] = dt
        elif key in policy.choices:
            value = str(raw).strip()
            if value not in policy.choices[key]:
                allowed = ", ".join(sorted(policy.choices[key]))
                raise ValidationError(f"{key} must be one of: {allowed}")
            cleaned[key] = value
        else:
            cleaned[key] = str(raw).strip()

    return cleaned


def validate_items(raw_items: Any, policy: PayloadPolicy, *, key: str = "items") -> list[dict]:
    """Validate a JSON array of line items; each element goes through validate_payload."""
    if not isinstance(raw_items, list):
        raise ValidationError(f"{key} must be a list")

    items = []
    for index, raw in enumerate(raw_items):
        try:
            items.append(validate_payload(raw, policy))
        except ValidationError as e:
            raise ValidationError(f"{key}[{index}]: {e.message}")
    return items


def enforce_price(value: int | None, key: str) -> None:
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def enforce_positive_quantity(value: int | None, key: str = "quantity") -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value <= 0:
        raise ValidationError(f"{key} must be > 0")
    return value


def validate_document_payload(
    payload: Any,
    header_policy: PayloadPolicy,
    item_policy: PayloadPolicy,
    *,
    items_key: str = "items",
) -> tuple[dict, list[dict]]:
    """Split a document body into a validated header dict and validated item list."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    header = dict(payload)
    raw_items = header.pop(items_key, None)
    if raw_items is None:
        raise ValidationError(f"Missing required fields: {items_key}")
    items = validate_items(raw_items, item_policy, key=items_key)
    if not items:
        raise ValidationError(f"At least one entry is required in {items_key}")
    return validate_payload(header, header_policy), items


def validate_update_payload(
    payload: Any,
    header_policy: PayloadPolicy,
    item_policy: PayloadPolicy,
    *,
    items_key: str = "items",
) -> tuple[dict, list[dict] | None]:
    """Like validate_document_payload, but items may be omitted (None = keep current lines)."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    header = dict(payload)
    raw_items = header.pop(items_key, None)
    items = None
    if raw_items is not None:
        items = validate_items(raw_items, item_policy, key=items_key)
        if not items:
            raise ValidationError(f"At least one entry is required in {items_key}")
    return validate_payload(header, header_policy), items


def parse_query_int(value: str | None, key: str, default: int | None = None, *, minimum: int | None = None, maximum: int | None = None) -> int | None:
    """Query-string integer with optional bounds (None/"" -> default)."""
    if value is None or not value.strip():
        return default
    number = coerce_int(value, key)
    if minimum is not None and number < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{key} must be <= {maximum}")
    return number


def parse_query_datetime(value: str | None, key: str, *, end_of_day: bool = False):
    """
    Query-string datetime. A bare date used as an upper bound (end_of_day=True)
    covers the whole day, so end=2024-03-15 includes movements on the 15th.
    """
    if value is None or not value.strip():
        return None
    try:
        dt = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    if end_of_day and len(value.strip()) == 10:
        dt = dt + timedelta(days=1) - timedelta(microseconds=1)
    return dt
