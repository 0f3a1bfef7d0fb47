"""Wall-clock helpers shared by the stateful components."""

from datetime import datetime, timezone
from typing import Callable

# Components take a Clock so tests can drive time explicitly.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
