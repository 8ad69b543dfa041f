"""Input validation helpers for request parameters and SOQL literals."""
from __future__ import annotations
import datetime
import re
from typing import Any, Iterable, Optional

from relay.core.errors import ValidationError

ISO_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\Z")
US_DATE_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})\Z")

RECORD_ID_PATTERN = re.compile(r"^[0-9A-Za-z]{15}(?:[0-9A-Za-z]{3})?\Z")
FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*\Z")


def normalize_date(value: Any, default: Optional[str] = None) -> Optional[str]:
    """Normalize a YYYY-MM-DD or M/D/YYYY string to YYYY-MM-DD.

    Blank or missing input falls back to ``default``. Returns None when the
    value cannot be parsed or names an impossible calendar date.
    """
    raw = value.strip() if isinstance(value, str) and value.strip() else default
    if raw is None:
        return None

    match = ISO_DATE_PATTERN.match(raw)
    if match:
        year, month, day = (int(part) for part in match.groups())
    else:
        match = US_DATE_PATTERN.match(raw)
        if not match:
            return None
        month, day, year = (int(part) for part in match.groups())

    try:
        return datetime.date(year, month, day).isoformat()
    except ValueError:
        return None


def require_date(value: Any, field: str, default: Optional[str] = None) -> str:
    """Normalize a date or raise ValidationError naming the parameter."""
    normalized = normalize_date(value, default)
    if normalized is None:
        raise ValidationError(
            "Invalid date. Use YYYY-MM-DD or MM/DD/YYYY",
            {"field": field, "value": value if isinstance(value, str) else None},
        )
    return normalized


def clean_text(value: Any) -> str:
    """Trim a query/body value; non-strings become an empty string."""
    return value.strip() if isinstance(value, str) else ""


def validate_record_id(value: Any, field: str) -> str:
    """Validate a 15/18-character Salesforce record id.

    Raises:
        ValidationError: If the value is missing or malformed
    """
    record_id = clean_text(value)
    if not record_id:
        raise ValidationError(f"{field} is required", {"field": field})
    if not RECORD_ID_PATTERN.match(record_id):
        raise ValidationError(f"{field} is not a valid record id", {"field": field})
    return record_id


def validate_field_name(value: Any, field: str) -> Optional[str]:
    """Validate an optional caller-supplied API field name override."""
    name = clean_text(value)
    if not name:
        return None
    if not FIELD_NAME_PATTERN.match(name):
        raise ValidationError(f"{field} is not a valid field name", {"field": field})
    return name


def soql_quote(value: str) -> str:
    """Quote a string literal for SOQL."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def soql_like_prefix(value: str) -> str:
    """Quote a LIKE pattern matching values that start with ``value``."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    escaped = escaped.replace("%", "\\%").replace("_", "\\_")
    return f"'{escaped}%'"


def soql_id_list(ids: Iterable[str]) -> str:
    return ",".join(soql_quote(record_id) for record_id in ids)
