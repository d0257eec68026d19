"""Small shared helpers."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current UTC time. Default clock for all services."""
    return datetime.now(timezone.utc)


def default_dict_factory() -> dict[str, Any]:
    return {}
