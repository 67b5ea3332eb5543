from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from typing_extensions import Self

UTC = timezone.utc


class StrEnum(str, Enum):  # noqa: UP042
    """Python 3.10-compatible StrEnum."""

    pass


def utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = ["Self", "UTC", "StrEnum", "utc_now"]
