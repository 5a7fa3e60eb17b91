"""
Backup record sanitizer.

Turns an arbitrary mapping into the shape a JSON round trip would produce,
so the write path only ever sees strings, numbers, booleans, lists and
dicts. Information that JSON cannot carry is lost without an error:

    - ``None`` values are dropped from mappings (and become ``null`` in lists)
    - datetimes become ISO-8601 strings in UTC with millisecond precision
    - UUID, Decimal and ObjectId-like values become strings
    - NaN / infinity and unknown objects are dropped

After cleaning, ``backup_timestamp`` is guaranteed to be set: a missing or
empty value becomes the current UTC time, an ISO string is parsed back into
a timezone-aware datetime so the driver can bind it to a timestamp column.
"""

import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

BACKUP_TIMESTAMP_FIELD = "backup_timestamp"

# Types rendered through str() by their JSON encoders (bson.ObjectId)
_STRINGIFIED_TYPE_NAMES = frozenset({"ObjectId"})

_DROP = object()


def _isoformat(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _parse_timestamp(text: str) -> Optional[datetime]:
    """Turn a caller-supplied ISO timestamp back into a datetime for the driver."""
    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _to_json_value(value: Any) -> Any:
    """Recursively convert one value, returning ``_DROP`` for what JSON loses."""
    if value is None:
        return _DROP
    if isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else _DROP
    if isinstance(value, Enum):
        return _to_json_value(value.value)
    if isinstance(value, datetime):
        return _isoformat(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if type(value).__name__ in _STRINGIFIED_TYPE_NAMES:
        return str(value)
    if isinstance(value, Mapping):
        cleaned = {}
        for key, item in value.items():
            converted = _to_json_value(item)
            if converted is not _DROP:
                cleaned[str(key)] = converted
        return cleaned
    if isinstance(value, (list, tuple, set, frozenset)):
        items = []
        for item in value:
            converted = _to_json_value(item)
            items.append(None if converted is _DROP else converted)
        return items
    if hasattr(value, "model_dump"):
        return _to_json_value(value.model_dump())
    return _DROP


def sanitize(record: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Return a wire-safe copy of ``record`` with a backup timestamp.

    Never raises: anything that is not a mapping yields an empty record
    (plus the timestamp).

    Args:
        record: The entity fields to replicate.
        now:    Timestamp to inject when the record carries none.
                Defaults to the current UTC time.
    """
    try:
        cleaned = _to_json_value(record)
        if not isinstance(cleaned, dict):
            cleaned = {}
        safe: Dict[str, Any] = json.loads(json.dumps(cleaned))
    except (TypeError, ValueError, RecursionError):
        # Self-referencing structures
        safe = {}

    stamp = safe.get(BACKUP_TIMESTAMP_FIELD)
    if isinstance(stamp, str) and stamp:
        stamp = _parse_timestamp(stamp)
    safe[BACKUP_TIMESTAMP_FIELD] = stamp or now or datetime.now(timezone.utc)
    return safe
