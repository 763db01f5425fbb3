"""Column types for JSON array fields."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator

from taskdesk.utils.json_fields import normalize_id_list, normalize_list


class IdList(TypeDecorator):
    """JSON array of user ids, always read and written as ``list[int]``."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> list[int]:
        return normalize_id_list(value)

    def process_result_value(self, value: Any, dialect) -> list[int]:
        return normalize_id_list(value)


class JSONList(TypeDecorator):
    """JSON array of free-form entries, never NULL."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> list:
        return normalize_list(value)

    def process_result_value(self, value: Any, dialect) -> list:
        return normalize_list(value)
