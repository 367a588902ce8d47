"""Crash report directory watcher."""

import posixpath
from collections.abc import Callable

import structlog

from craftwatch.errors import RemoteFileNotFound, TransientIOError
from craftwatch.remote.base import EndpointKind
from craftwatch.remote.supervisor import ConnectionSupervisor

from .dedup import CrashLedger
from .models import Event, EventKind, LogSource
from .state import StateStore

log = structlog.get_logger()

# Characters of the crash report quoted in the notification
CRASH_SNIPPET_LENGTH = 800


class CrashWatcher:
    """Reports the newest crash report once.

    Each scan lists the crash directory and looks only at the most recently
    modified file. Names already in the ledger are ignored, so a report is
    announced at most once even across restarts when the ledger is persisted.
    """

    def __init__(
        self,
        source: LogSource,
        supervisor: ConnectionSupervisor,
        ledger: CrashLedger,
        on_event: Callable[[Event], None],
        state: StateStore | None = None,
        seed_existing: bool = False,
        snippet_length: int = CRASH_SNIPPET_LENGTH,
    ):
        """Initialize the watcher.

        Args:
            source: Crash directory source
            supervisor: Provides the file-store connection
            ledger: Names already reported
            on_event: Called with each new CRASH_REPORT event
            state: Where the ledger is persisted (optional)
            seed_existing: Record files present on the first scan without reporting them
            snippet_length: Characters of the report to include
        """
        self.source = source
        self.supervisor = supervisor
        self.ledger = ledger
        self.on_event = on_event
        self.state = state
        self.snippet_length = snippet_length
        self._seed_pending = seed_existing

    def _persist(self) -> None:
        if self.state is None:
            return
        self.state.put_crash_names(self.ledger.names())
        self.state.save()

    def scan(self) -> Event | None:
        """Check the directory once. Returns the event that was emitted, if any."""
        directory = self.source.remote_path
        try:
            store = self.supervisor.acquire(EndpointKind.FILE_STORE)
            entries = store.list(directory)
            if self._seed_pending:
                self._seed(entries)
                return None
            if not entries:
                return None

            newest = max(entries, key=lambda e: e.mtime)
            if newest.name in self.ledger:
                return None

            data = store.read_range(
                posixpath.join(directory, newest.name), 0, self.snippet_length * 4
            )
        except RemoteFileNotFound as e:
            log.debug("Crash directory not available", path=directory, error=str(e))
            return None
        except TransientIOError as e:
            self.supervisor.invalidate(EndpointKind.FILE_STORE)
            log.warning("Crash scan failed", path=directory, error=str(e))
            return None

        snippet = data.decode("utf-8", errors="replace")[: self.snippet_length]
        self.ledger.add(newest.name)
        self._persist()

        event = Event(
            kind=EventKind.CRASH_REPORT,
            attributes={"file": newest.name, "snippet": snippet},
            raw_line=newest.name,
        )
        log.warning("Crash report detected", file=newest.name)
        self.on_event(event)
        return event

    def _seed(self, entries) -> None:
        for entry in sorted(entries, key=lambda e: e.mtime):
            self.ledger.add(entry.name)
        self._seed_pending = False
        self._persist()
        log.info("Crash ledger seeded", path=self.source.remote_path, count=len(entries))
