# falsification_core/ids.py
from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Any

from falsification_core._compat import utc_now
from falsification_core.integrity import Digest, content_hash, sha256_hex

_BASE36 = string.digits + string.ascii_lowercase


def to_base36(n: int) -> str:
    if n < 0:
        raise ValueError("to_base36 expects a non-negative integer")
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def time_token(now: datetime | None = None) -> str:
    """Milliseconds since the epoch in base 36."""
    ts = now or utc_now()
    return to_base36(int(ts.timestamp() * 1000))


def time_ordered_id(prefix: str, *, now: datetime | None = None) -> str:
    """
    `{prefix}-{time}-{random}`. Sorts by creation time at millisecond
    resolution; the random tail separates ids minted in the same millisecond.
    """
    return f"{prefix}-{time_token(now)}-{secrets.token_hex(2)}"


def digest_id(prefix: str, key_obj: Any, *, length: int | None = None, digest: Digest = sha256_hex) -> str:
    """Deterministic id: `{prefix}_` + digest of the canonical form of key_obj."""
    h = content_hash(key_obj, digest=digest)
    return f"{prefix}_{h[:length] if length else h}"
