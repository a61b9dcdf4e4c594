"""Sentinel defaults.

Annotation attributes cannot be null, so an attribute that was not written
carries a default such as ``""``, ``False``, ``[]`` or ``Integer.MAX_VALUE``.
Those values mean "unset" and are removed before any merging happens, so
that e.g. an empty method-level description never hides an inherited one.
"""

from typing import Any

MAX_INT = 2147483647

# Numeric attributes whose annotation default is a real number.
NUMERIC_SENTINELS = {
    "multiple_of": 0,
    "min_length": 0,
    "max_length": MAX_INT,
    "min_items": MAX_INT,
    "max_items": MAX_INT,
    "min_properties": 0,
    "max_properties": 0,
}

# Tri-state attributes: an explicit ``False`` is a real value.
TRI_STATE = {"explode"}

# Free-form payloads; only a missing or empty-string value is unset and the
# payload itself is never inspected.
OPAQUE = {"value", "example", "default_value"}


def is_unset(key: str | None, value: Any) -> bool:
    """Return True when ``value`` is the default an unwritten attribute carries."""
    if value is None or value == "":
        return True
    if key in OPAQUE:
        return False
    if value is False:
        return key not in TRI_STATE
    if isinstance(value, (list, dict)) and not value:
        return True
    if key in NUMERIC_SENTINELS and not isinstance(value, bool):
        return value == NUMERIC_SENTINELS[key]
    return False


def strip_unset(values: dict[str, Any]) -> dict[str, Any]:
    """Recursively drop unset fields, keeping only what was declared."""
    stripped = {}
    for key, value in values.items():
        if key not in OPAQUE:
            value = _strip_value(value)
        if not is_unset(key, value):
            stripped[key] = value
    return stripped


def _strip_value(value: Any) -> Any:
    if isinstance(value, dict):
        return strip_unset(value)
    if isinstance(value, list):
        items = [_strip_value(item) for item in value]
        return [item for item in items if not is_unset(None, item) or item is False]
    return value
