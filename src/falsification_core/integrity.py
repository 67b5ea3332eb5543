# falsification_core/integrity.py
from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

from falsification_core._compat import UTC

Digest = Callable[[str], str]

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def format_timestamp(value: datetime) -> str:
    """
    Fixed textual form for instants: UTC, microsecond precision, 'Z' suffix.
    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_TIMESTAMP_FORMAT)


def canonicalize(obj: Any) -> Any:
    """
    Convert obj into JSON-native values with a construction-order independent shape.

    - mapping keys are stringified and sorted at every level; None entries are dropped
    - datetimes use format_timestamp, dates use ISO form
    - pydantic models and dataclasses are dumped first
    - sets are sorted, tuples become lists, enums become their values
    """
    if isinstance(obj, BaseModel):
        return canonicalize(obj.model_dump(mode="python"))
    if is_dataclass(obj) and not isinstance(obj, type):
        return canonicalize(asdict(obj))
    if isinstance(obj, Enum):
        return canonicalize(obj.value)
    if isinstance(obj, datetime):
        return format_timestamp(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Mapping):
        return {
            _key(k): canonicalize(v)
            for k, v in sorted(obj.items(), key=lambda kv: _key(kv[0]))
            if v is not None
        }
    if isinstance(obj, (set, frozenset)):
        items = [canonicalize(v) for v in obj]
        return sorted(items, key=_canon)
    if isinstance(obj, (list, tuple)):
        return [canonicalize(v) for v in obj]
    return obj


def _key(k: Any) -> str:
    return str(k.value) if isinstance(k, Enum) else str(k)


def _canon(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def canonical_json(obj: Any) -> str:
    """
    Canonical JSON string (stable across runs and key orders) for hashing.
    """
    return _canon(canonicalize(obj))


def content_hash(obj: Any, *, digest: Digest = sha256_hex) -> str:
    return digest(canonical_json(obj))


def session_checksum(session: Any, *, digest: Digest = sha256_hex) -> str:
    """Whole-session checksum used by export/import and optimistic persistence."""
    return content_hash(session, digest=digest)
