"""Injectable time source.

Every expiry and cooldown decision reads the current time through a
``Clock`` so tests can drive time forward deterministically.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
