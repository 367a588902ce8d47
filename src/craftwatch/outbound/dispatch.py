"""Serialized, rate-limited delivery to the outbound channel.

Every outbound message goes through one DispatchQueue. A single worker
takes items in FIFO order and never calls the sink more often than once per
``min_interval`` seconds. Items that fail are retried with backoff, which
lets later items overtake them; chunks of one message always stay in order.
"""

import itertools
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import structlog

from craftwatch.errors import DeliveryError, RateLimitedError
from craftwatch.metrics import DELIVERIES, QUEUE_DEPTH
from craftwatch.monitor.models import NotificationMessage, Priority

log = structlog.get_logger()


class Sink(Protocol):
    """Outbound messaging channel."""

    max_message_length: int

    def deliver(self, text: str, priority: Priority = Priority.NORMAL) -> None: ...


@dataclass
class QueueItem:
    """One deliverable chunk of a notification."""

    message: NotificationMessage
    text: str
    group: int
    index: int
    attempt: int = 0
    next_attempt_at: float = 0.0


def split_text(text: str, limit: int) -> list[str]:
    """Split text into chunks of at most ``limit`` characters.

    Splits at the last newline inside the window when there is one, otherwise
    hard-cuts at ``limit``.
    """
    if limit < 1:
        raise ValueError("limit must be positive")
    chunks: list[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit + 1)
        if cut <= 0:
            chunks.append(rest[:limit])
            rest = rest[limit:]
        else:
            chunks.append(rest[:cut])
            rest = rest[cut + 1 :]
    if rest or not chunks:
        chunks.append(rest)
    return chunks


class DispatchQueue:
    """FIFO delivery queue with a minimum spacing between sends."""

    def __init__(
        self,
        sink: Sink,
        min_interval: float = 1.0,
        max_attempts: int = 5,
        backoff_base: float = 2.0,
        backoff_max: float = 60.0,
        max_chunk: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the queue.

        Args:
            sink: Outbound channel; only this queue may call it
            min_interval: Minimum seconds between two sink calls
            max_attempts: Attempts per item before it is dropped
            backoff_base: First retry delay for ordinary failures (doubles per attempt)
            backoff_max: Cap on the retry delay
            max_chunk: Maximum characters per delivery (default: the sink's limit)
            clock: Monotonic time source
            sleep: Blocking sleep used by ``drain_once``
        """
        self.sink = sink
        self.min_interval = min_interval
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_chunk = max_chunk or getattr(sink, "max_message_length", 4096)
        self._clock = clock
        self._sleep = sleep

        self._items: deque[QueueItem] = deque()
        self._groups = itertools.count()
        self._cond = threading.Condition()
        self._last_delivery_at: float | None = None
        self._paused_until = 0.0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.delivered = 0
        self.dropped = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def enqueue(self, msg: NotificationMessage) -> None:
        """Append a message (split into chunks if needed). Never blocks."""
        group = next(self._groups)
        chunks = split_text(msg.text, self.max_chunk)
        with self._cond:
            for index, chunk in enumerate(chunks):
                self._items.append(QueueItem(message=msg, text=chunk, group=group, index=index))
            QUEUE_DEPTH.set(len(self._items))
            self._cond.notify()
        if len(chunks) > 1:
            log.debug("Message split", chunks=len(chunks), chars=len(msg.text))

    def _next_ready(self, now: float) -> tuple[QueueItem | None, float | None]:
        """Pick the first deliverable item.

        Returns (item, None) or (None, seconds until something may be ready);
        the wait is None when the queue is empty.
        """
        if now < self._paused_until:
            return None, self._paused_until - now

        blocked_groups: set[int] = set()
        soonest: float | None = None
        for item in self._items:
            if item.group in blocked_groups:
                continue
            if item.next_attempt_at <= now:
                return item, None
            blocked_groups.add(item.group)
            wait = item.next_attempt_at - now
            soonest = wait if soonest is None else min(soonest, wait)
        return None, soonest

    def _wait_for_spacing(self, wait: Callable[[float], object]) -> None:
        if self._last_delivery_at is None:
            return
        remaining = self._last_delivery_at + self.min_interval - self._clock()
        if remaining > 0:
            wait(remaining)

    def _remove(self, item: QueueItem) -> None:
        with self._cond:
            try:
                self._items.remove(item)
            except ValueError:
                log.warning("Queue item already removed", chunk=item.index)
            QUEUE_DEPTH.set(len(self._items))

    def _deliver(self, item: QueueItem) -> None:
        item.attempt += 1
        self._last_delivery_at = self._clock()
        try:
            self.sink.deliver(item.text, item.message.priority)
        except RateLimitedError as e:
            self._on_failure(item, e, delay=e.retry_after, pause_all=True)
            return
        except DeliveryError as e:
            delay = min(self.backoff_max, self.backoff_base * 2 ** (item.attempt - 1))
            self._on_failure(item, e, delay=delay)
            return
        except Exception as e:
            log.exception("Sink raised an unexpected error", category=item.message.category)
            self._on_failure(item, DeliveryError(repr(e), retryable=False), delay=0.0)
            return

        self._remove(item)
        self.delivered += 1
        DELIVERIES.labels(status="sent").inc()

    def _on_failure(
        self, item: QueueItem, error: DeliveryError, delay: float, pause_all: bool = False
    ) -> None:
        if not error.retryable or item.attempt >= self.max_attempts:
            self._remove(item)
            self.dropped += 1
            DELIVERIES.labels(status="dropped").inc()
            log.error(
                "Dropping notification",
                attempts=item.attempt,
                category=item.message.category,
                chunk=item.index,
                error=str(error),
                text=item.text[:80],
            )
            return

        now = self._clock()
        item.next_attempt_at = now + delay
        if pause_all:
            self._paused_until = now + delay
            DELIVERIES.labels(status="rate_limited").inc()
        else:
            DELIVERIES.labels(status="retried").inc()
        log.warning(
            "Delivery failed, will retry",
            attempt=item.attempt,
            retry_in=round(delay, 2),
            error=str(error),
        )

    def drain_once(self) -> bool:
        """Deliver at most one item, sleeping as needed to respect spacing.

        Returns:
            True if a delivery was attempted, False if nothing was ready
        """
        with self._cond:
            item, _ = self._next_ready(self._clock())
        if item is None:
            return False
        self._wait_for_spacing(self._sleep)
        self._deliver(item)
        return True

    def flush(self, timeout: float) -> bool:
        """Deliver queued items until empty or ``timeout`` elapses. Returns True if empty.

        Does nothing while the background worker is still running, so an item
        is never handed to the sink by two threads at once.
        """
        if self._thread is not None and self._thread.is_alive():
            log.warning("Worker still running, not flushing", queued=len(self))
            return len(self) == 0
        deadline = self._clock() + timeout
        while self._clock() < deadline:
            with self._cond:
                if not self._items:
                    return True
                item, wait = self._next_ready(self._clock())
            if item is None:
                if wait is None or self._clock() + wait >= deadline:
                    break
                self._sleep(wait)
                continue
            self._wait_for_spacing(self._sleep)
            self._deliver(item)
        return len(self) == 0

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._cond:
                item, wait = self._next_ready(self._clock())
                if item is None:
                    self._cond.wait(timeout=1.0 if wait is None else min(wait, 1.0))
                    continue
            self._wait_for_spacing(self._stop.wait)
            if self._stop.is_set():
                break
            self._deliver(item)

    def start(self) -> None:
        """Start the background drain worker."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="dispatch-queue", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the worker; queued items stay queued.

        Waits for an in-flight delivery to finish (at most ``timeout`` seconds
        when given). Returns False if the worker is still running.
        """
        self._stop.set()
        with self._cond:
            self._cond.notify_all()
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            log.warning("Dispatch worker did not stop in time", timeout=timeout)
            return False
        self._thread = None
        return True
