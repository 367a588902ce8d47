"""Notification de-flooding and crash-report bookkeeping."""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable

from .models import NotificationMessage

DEFAULT_COOLDOWN_SECONDS = 60.0


class Deduplicator:
    """Suppress identical notifications within a cooldown window.

    Keys are content hashes of the notification text. Each entry stores the
    monotonic time at which it expires; a key present and unexpired means
    the same text was emitted less than ``cooldown`` ago.
    """

    def __init__(
        self,
        cooldowns: dict[str, float] | None = None,
        default_cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the deduplicator.

        Args:
            cooldowns: Seconds per message category (0 = never suppress)
            default_cooldown: Seconds for categories not in ``cooldowns``
            clock: Monotonic time source
        """
        self.cooldowns = dict(cooldowns or {})
        self.default_cooldown = default_cooldown
        self._clock = clock
        self._expires_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def cooldown_for(self, category: str) -> float:
        return self.cooldowns.get(category, self.default_cooldown)

    def should_emit(self, msg: NotificationMessage) -> bool:
        """Check whether a notification should be sent.

        Returns:
            True (and starts a cooldown) if the text was not emitted within
            its category's cooldown, False if it should be suppressed
        """
        cooldown = self.cooldown_for(msg.category)
        if cooldown <= 0:
            return True

        with self._lock:
            now = self._clock()
            expires = self._expires_at.get(msg.dedup_key)
            if expires is not None and now < expires:
                return False
            self._expires_at[msg.dedup_key] = now + cooldown
            return True

    def time_until_emit(self, msg: NotificationMessage) -> float | None:
        """Seconds until this text may be emitted again, or None if it may now."""
        with self._lock:
            expires = self._expires_at.get(msg.dedup_key)
            if expires is None:
                return None
            remaining = expires - self._clock()
        return remaining if remaining > 0 else None

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, expires in self._expires_at.items() if expires <= now]
            for key in expired:
                del self._expires_at[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._expires_at)


class CrashLedger:
    """Bounded set of crash report file names already notified.

    Once ``capacity`` is exceeded the oldest inserted name is evicted.
    Re-adding a known name does not refresh its position.
    """

    def __init__(self, capacity: int = 200, names: Iterable[str] = ()):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._names: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        for name in names:
            self.add(name)

    def add(self, name: str) -> bool:
        """Record a crash name. Returns True if it was not already present."""
        with self._lock:
            if name in self._names:
                return False
            self._names[name] = None
            while len(self._names) > self.capacity:
                self._names.popitem(last=False)
            return True

    def names(self) -> list[str]:
        """Names in insertion order, oldest first."""
        with self._lock:
            return list(self._names)

    def clear(self) -> None:
        with self._lock:
            self._names.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
