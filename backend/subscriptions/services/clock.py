"""Time source for services. Tests inject their own ``now_provider``."""

from collections.abc import Callable
from datetime import UTC, datetime

NowProvider = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)
