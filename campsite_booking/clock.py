"""
Clock abstraction: wall-clock time for timestamps and due dates,
monotonic time for hold TTL deadlines.
"""

import time
from datetime import datetime, timezone


class SystemClock:
    """Real clock backed by the OS."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


system_clock = SystemClock()
