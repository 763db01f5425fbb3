"""Normalization of JSON array fields.

Assignee lists and attachment lists are stored as JSON arrays, but rows
written by older clients may hold JSON text, a bare scalar or NULL. Every
read and write goes through these functions so callers always get a list.
"""

import json
import math
from typing import Any

MAX_ID = 10**9

_ID_KEYS = ("id", "value", "userId", "user_id")


def coerce_id(value: Any) -> int | None:
    """Coerce a user id given as int, numeric string or ``{"id": ...}`` dict.

    Args:
        value: Raw id value

    Returns:
        Positive integer id, or None if the value is not a usable id
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, dict):
        for key in _ID_KEYS:
            if value.get(key) is not None:
                return coerce_id(value[key])
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            return None
    else:
        return None
    if 0 < number < MAX_ID:
        return number
    return None


def _load_json(value: str) -> Any:
    if not value.strip():
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def normalize_id_list(value: Any) -> list[int]:
    """Normalize a stored or submitted assignee list to unique positive ints.

    First-seen order is kept; duplicates and unusable entries are dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = _load_json(value)
        if value is None:
            return []
    if not isinstance(value, (list, tuple)):
        value = [value]

    ids: list[int] = []
    for item in value:
        number = coerce_id(item)
        if number is not None and number not in ids:
            ids.append(number)
    return ids


def normalize_list(value: Any) -> list:
    """Normalize a free-form list field (attachments).

    Plain text that is not JSON becomes a one-element list.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        parsed = _load_json(value)
        if parsed is None:
            return []
        if isinstance(parsed, list):
            return parsed
        return [parsed]
    return [value]
