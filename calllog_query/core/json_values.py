"""Typed access to semi-structured JSON payloads."""

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]

_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")


class _Missing:
    """Marker for a key that is absent, as opposed to present-and-null."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def lookup(document: Any, path: str) -> Union[JsonValue, _Missing]:
    """Walk a dotted ``path`` through nested objects.

    Returns ``MISSING`` when any segment is absent or the walk hits a
    non-object, so callers never confuse a missing key with JSON null.
    """
    current = document
    for segment in path.split(".") if path else []:
        if not isinstance(current, dict) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def get_path(document: Any, path: str) -> Optional[JsonValue]:
    """Like :func:`lookup` but folds ``MISSING`` into ``None``."""
    value = lookup(document, path)
    return None if value is MISSING else value


def as_number(value: Any) -> Optional[float]:
    """Numeric view of a JSON scalar, ``None`` when it is not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def looks_like_date(value: str) -> bool:
    if not _DATE_PREFIX.match(value):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            datetime.strptime(value[:10], "%Y-%m-%d")
        except ValueError:
            return False
    return True


def infer_type(value: Any) -> str:
    """Field-catalog type of a JSON value."""
    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, str) and looks_like_date(value):
        return "date"
    return "string"


def canonical_key(value: Any) -> str:
    """Hashable, order-independent identity for any JSON value."""
    return json.dumps(value, sort_keys=True, default=str)
