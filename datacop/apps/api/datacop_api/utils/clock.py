"""Clock helpers.

Services take a ``clock`` callable so invitation expiry can be tested by
advancing time instead of sleeping.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
