"""Single owner of remote connections, with reconnect backoff.

Callers never hold a connection across ticks: they ``acquire`` it, use it,
and call ``invalidate`` if it turned out to be broken so the next
``acquire`` reconnects instead of reusing a stale handle.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from craftwatch.errors import PermanentConfigError, SourceUnavailable
from craftwatch.metrics import CONNECTIVITY_DEGRADED

from .base import EndpointKind

log = structlog.get_logger()


@dataclass
class _Slot:
    """Connection state for one endpoint kind."""

    factory: Callable[[], Any]
    connection: Any = None
    failures: int = 0
    next_attempt_at: float = 0.0
    degraded: bool = False
    degraded_reason: str = ""
    lock: threading.Lock = field(default_factory=threading.Lock)


class ConnectionSupervisor:
    """Keeps at most one live connection per endpoint kind."""

    def __init__(
        self,
        factories: dict[EndpointKind, Callable[[], Any]] | None = None,
        backoff_initial: float = 2.0,
        backoff_max: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the supervisor.

        Args:
            factories: Zero-argument connect functions per endpoint kind.
                Kinds without a factory are treated as not configured.
            backoff_initial: Seconds to wait after the first failed connect
            backoff_max: Upper bound on the wait between connect attempts
            clock: Monotonic time source
        """
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._clock = clock
        self._slots: dict[EndpointKind, _Slot] = {
            kind: _Slot(factory=factory) for kind, factory in (factories or {}).items()
        }

    def register(self, kind: EndpointKind, factory: Callable[[], Any]) -> None:
        self._slots[kind] = _Slot(factory=factory)

    def is_configured(self, kind: EndpointKind) -> bool:
        return kind in self._slots

    def _slot(self, kind: EndpointKind) -> _Slot:
        slot = self._slots.get(kind)
        if slot is None:
            raise PermanentConfigError(f"{kind.value} endpoint is not configured")
        return slot

    def acquire(self, kind: EndpointKind) -> Any:
        """Return the live connection for ``kind``, connecting if needed.

        Raises:
            PermanentConfigError: No factory registered for ``kind``, or the endpoint
                rejected the configuration (e.g. a wrong password)
            SourceUnavailable: Connect failed, or still backing off from a failure
        """
        slot = self._slot(kind)
        with slot.lock:
            if slot.connection is not None:
                return slot.connection

            now = self._clock()
            if now < slot.next_attempt_at:
                raise SourceUnavailable(
                    f"{kind.value} reconnect in {slot.next_attempt_at - now:.1f}s"
                )

            try:
                slot.connection = slot.factory()
            except PermanentConfigError as e:
                log.error("Endpoint rejected configuration", endpoint=kind.value, error=str(e))
                raise
            except Exception as e:
                slot.failures += 1
                delay = min(self.backoff_max, self.backoff_initial * 2 ** (slot.failures - 1))
                slot.next_attempt_at = now + delay
                log.warning(
                    "Connect failed",
                    endpoint=kind.value,
                    attempt=slot.failures,
                    retry_in=delay,
                    error=str(e),
                )
                raise SourceUnavailable(f"{kind.value} connect failed: {e}") from e

            if slot.failures:
                log.info("Reconnected", endpoint=kind.value, after_failures=slot.failures)
            else:
                log.info("Connected", endpoint=kind.value)
            slot.failures = 0
            slot.next_attempt_at = 0.0
            return slot.connection

    def invalidate(self, kind: EndpointKind) -> None:
        """Drop the current connection so the next ``acquire`` reconnects."""
        slot = self._slots.get(kind)
        if slot is None:
            return
        with slot.lock:
            conn, slot.connection = slot.connection, None
        if conn is None:
            return
        log.info("Connection invalidated", endpoint=kind.value)
        try:
            conn.close()
        except Exception as e:
            log.debug("Error closing stale connection", endpoint=kind.value, error=str(e))

    def mark_degraded(self, kind: EndpointKind, reason: str) -> None:
        """Record repeated consecutive failures against an endpoint."""
        slot = self._slots.get(kind)
        if slot is None:
            return
        with slot.lock:
            was_degraded, slot.degraded = slot.degraded, True
            slot.degraded_reason = reason
        if not was_degraded:
            log.error("Connectivity degraded", endpoint=kind.value, reason=reason)
            CONNECTIVITY_DEGRADED.labels(endpoint=kind.value).set(1)

    def mark_recovered(self, kind: EndpointKind) -> None:
        slot = self._slots.get(kind)
        if slot is None:
            return
        with slot.lock:
            was_degraded, slot.degraded = slot.degraded, False
            slot.degraded_reason = ""
        if was_degraded:
            log.info("Connectivity recovered", endpoint=kind.value)
            CONNECTIVITY_DEGRADED.labels(endpoint=kind.value).set(0)

    def is_degraded(self, kind: EndpointKind) -> bool:
        slot = self._slots.get(kind)
        return slot is not None and slot.degraded

    def health(self) -> dict[str, dict[str, Any]]:
        """Per-endpoint status for the health endpoint."""
        return {
            kind.value: {
                "connected": slot.connection is not None,
                "degraded": slot.degraded,
                "reason": slot.degraded_reason,
                "failures": slot.failures,
            }
            for kind, slot in self._slots.items()
        }

    def close_all(self) -> None:
        for kind in list(self._slots):
            self.invalidate(kind)
