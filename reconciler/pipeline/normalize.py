# -*- coding: utf-8 -*-
"""
Shared normalization helpers for comparing extracted values.

Matcher, differ and synthesizer all go through these so that "absent",
numbers, dates and additional-data maps are treated the same way everywhere.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from reconciler.shared.field_rules import FieldRules


_TRUE_STRINGS = {"true", "1", "yes", "y", "t"}


def is_absent(value: Any) -> bool:
    """None, empty string and whitespace-only strings are all "absent"."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def normalize_text(value: Any) -> Optional[str]:
    if is_absent(value):
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    return str(value).strip()


def normalize_numeric(value: Any) -> Union[Decimal, str, None]:
    """Parse to Decimal so "1.0" and "1" compare equal; unparsable text stays text."""
    text = normalize_text(value)
    if text is None:
        return None
    try:
        number = Decimal(text.replace(",", ""))
    except InvalidOperation:
        return text
    if not number.is_finite():
        return text
    return number


def calendar_day(value: Any) -> Optional[str]:
    """Truncate a date or timestamp to its UTC calendar day (YYYY-MM-DD)."""
    if is_absent(value):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value.isoformat()
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                return date.fromisoformat(text[:10]).isoformat()
            except ValueError:
                return text
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def normalize_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def normalize_field(name: str, value: Any, rules: FieldRules) -> Any:
    """Normalize a tracked field's value according to its kind."""
    if name in rules.boolean:
        return normalize_boolean(value)
    if name in rules.date:
        return calendar_day(value)
    if name in rules.numeric:
        return normalize_numeric(value)
    return normalize_text(value)


def flatten_data(data: Any) -> Dict[str, Any]:
    """
    Flatten an additional-data payload into a plain key -> value map.

    Extractors sometimes emit a list of {"key", "value"} objects, which may be
    stored either as a list or as an object with numeric keys. Those entries
    are resolved; any other array-shaped entry is dropped.
    """
    result: Dict[str, Any] = {}
    if data is None:
        return result

    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict) and "key" in item and "value" in item:
                result[str(item["key"])] = item["value"]
        return result

    if not isinstance(data, dict):
        return result

    for key, value in data.items():
        key = str(key)
        if key.isdigit() and isinstance(value, dict):
            if "key" in value and "value" in value:
                result[str(value["key"])] = value["value"]
            continue
        result[key] = value
    return result


def data_value(value: Any) -> str:
    """Comparable string form of an additional-data value."""
    return normalize_text(value) or ""
