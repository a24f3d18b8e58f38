"""
Cross-dialect column types for stored documents.
"""
from __future__ import annotations

import datetime as dt
import json
from typing import Any

from sqlalchemy.types import Text, TypeDecorator

# Marker key for values that plain JSON cannot represent
_TYPE_KEY = "__type__"


def _encode(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return {_TYPE_KEY: "timestamp", "value": value.isoformat()}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if value.get(_TYPE_KEY) == "timestamp":
            return dt.datetime.fromisoformat(value["value"])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


class DocumentData(TypeDecorator):
    """
    Document payload stored as JSON text.
    Timestamps survive the round trip as timezone-aware datetimes.
    """
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(_encode(value), ensure_ascii=False)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return _decode(json.loads(value))
