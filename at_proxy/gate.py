import datetime
from email.utils import parsedate_to_datetime
import logging
import math
import threading
from typing import Optional

log = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str], now: float) -> Optional[float]:
    """Delay in seconds from a Retry-After value, or None when unparseable.

    Numeric seconds win over the HTTP-date form. The result may be zero or
    negative for dates in the past.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return seconds if math.isfinite(seconds) else None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.timestamp() - now


class RateLimitGate:
    """Process-wide cooldown shared by every upstream call."""

    def __init__(self, lock: Optional[threading.Lock] = None, max_cooldown: float = 0) -> None:
        self._lock = lock or threading.Lock()
        self.max_cooldown = max(0.0, max_cooldown)
        self._blocked_until = 0.0

    @property
    def blocked_until(self) -> float:
        return self._blocked_until

    def check(self, now: float) -> Optional[int]:
        """Seconds left to wait, or None when upstream calls are allowed."""
        with self._lock:
            if now < self._blocked_until:
                return math.ceil(self._blocked_until - now)
        return None

    def trip(self, retry_after: Optional[str], now: float) -> bool:
        if retry_after is None:
            return False
        delay = parse_retry_after(retry_after, now)
        if delay is None:
            log.warning("Ignoring malformed Retry-After: %r", retry_after)
            return False
        if delay <= 0:
            return False
        if self.max_cooldown:
            delay = min(delay, self.max_cooldown)
        with self._lock:
            until = now + delay
            if until <= self._blocked_until:
                return False
            self._blocked_until = until
        log.warning("Upstream rate limited, blocking for %.1fs", delay)
        return True
