"""Timer synchronisation from absolute epochs.

Remaining time is always derived from a stored start timestamp (epoch
milliseconds) and the configured window. Local tickers only decrement a
cached value between derivations and are corrected whenever fresh data
arrives.
"""

import logging
import threading
import time
from typing import Callable, Optional

from quizparty.errors import TransientReadFailure

logger = logging.getLogger(__name__)

COUNTDOWN_SECONDS = 10


def elapsed_seconds(start_ms: int, now_ms: int) -> int:
    return (int(now_ms) - int(start_ms)) // 1000


def time_remaining(limit_sec: int, start_ms: Optional[int], now_ms: int) -> Optional[int]:
    """``limit - floor(elapsed)`` clamped to ``[0, limit]``; None before the epoch is set."""
    if start_ms is None:
        return None
    limit = int(limit_sec)
    return max(0, min(limit, limit - elapsed_seconds(start_ms, now_ms)))


def countdown_remaining(countdown_start_ms: Optional[int], now_ms: int,
                        window_sec: int = COUNTDOWN_SECONDS) -> Optional[int]:
    return time_remaining(window_sec, countdown_start_ms, now_ms)


class ExpiryLatch:
    """Fires once per epoch; a new epoch (restart) re-arms it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._epoch = None
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def observe(self, epoch: Optional[int], remaining: Optional[int]) -> bool:
        """Return True exactly once when ``remaining`` reaches zero for ``epoch``."""
        with self._lock:
            if epoch != self._epoch:
                self._epoch = epoch
                self._fired = False
            if epoch is None or remaining is None or remaining > 0 or self._fired:
                return False
            self._fired = True
            return True


class CachedTimer:
    """Display value for one timer: derived on resync, decremented on tick."""

    def __init__(self, window_sec: int):
        self.window_sec = window_sec
        self.epoch = None
        self.remaining = None

    def resync(self, epoch: Optional[int], now_ms: int) -> Optional[int]:
        self.epoch = epoch
        self.remaining = time_remaining(self.window_sec, epoch, now_ms)
        return self.remaining

    def tick(self) -> Optional[int]:
        if self.remaining is not None and self.remaining > 0:
            self.remaining -= 1
        return self.remaining


class ServerClock:
    """Estimates the server clock from a round trip to ``/api/server-time``.

    ``fetch`` returns the server's epoch milliseconds. A failed sync keeps
    the previous offset, which starts at zero (local clock).
    """

    def __init__(self, fetch: Optional[Callable[[], int]] = None, resync_sec: int = 30,
                 local_ms: Callable[[], int] = None):
        self._fetch = fetch
        self._resync_ms = resync_sec * 1000
        self._local_ms = local_ms or (lambda: int(time.time() * 1000))
        self.offset_ms = 0
        self._synced_at = None

    def sync(self) -> int:
        if self._fetch is None:
            return self.offset_ms
        sent = self._local_ms()
        try:
            server_ms = int(self._fetch())
        except (TransientReadFailure, ValueError) as exc:
            logger.warning("[clock-sync-failed] keeping offset=%sms error=%s", self.offset_ms, exc)
            self._synced_at = sent
            return self.offset_ms
        received = self._local_ms()
        self.offset_ms = server_ms - (sent + received) // 2
        self._synced_at = received
        logger.debug("[clock-sync] offset=%sms rtt=%sms", self.offset_ms, received - sent)
        return self.offset_ms

    def now_ms(self) -> int:
        local = self._local_ms()
        if self._fetch is not None and (self._synced_at is None or local - self._synced_at >= self._resync_ms):
            self.sync()
            local = self._local_ms()
        return local + self.offset_ms
