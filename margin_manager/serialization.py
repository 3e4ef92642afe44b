"""JSON rendering for margin payloads handed to the web and persistence layers."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

import orjson


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(_key(k)): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_payload"):
        return normalize(value.to_payload())
    if hasattr(value, "model_dump"):
        return normalize(value.model_dump(mode="json"))
    return value


def _key(key: Any) -> Any:
    if isinstance(key, Enum):
        return key.value
    return key


def dumps_payload(payload: Any, *, indent: bool = False) -> bytes:
    option = orjson.OPT_SORT_KEYS
    if indent:
        option |= orjson.OPT_INDENT_2
    return orjson.dumps(normalize(payload), option=option)


__all__ = ["dumps_payload", "normalize", "to_iso"]
