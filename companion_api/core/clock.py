from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)
