#!/usr/bin/env python3
"""
coercion.py

Converts Personas trait values into what SendGrid custom fields accept.
SendGrid custom fields are Text, Number or Date only: there is no boolean or
array type, so those are stored as text.
"""

import json
import re
from typing import Any

# 2021-03-04T10:11:12.345Z
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}.\d*Z")


def _scalar_to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_destination_string(value: Any) -> Any:
    """
    Convert a trait value for a SendGrid custom field.

    Booleans become "true"/"false", strings and numbers pass through, None
    becomes "" and lists are joined with commas (elements are not escaped).
    """
    if isinstance(value, bool):
        return _scalar_to_string(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(_scalar_to_string(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


def get_field_type(value: Any) -> str:
    """Guess the SendGrid field type ("Number", "Date" or "Text") a value needs"""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return "Number"
    if isinstance(value, str) and ISO_DATE_RE.match(value):
        return "Date"
    return "Text"
