"""Incremental reader for remote append-only logs.

Cursors are byte offsets. Each poll stats the remote file and reads only
what was appended since the last poll. A file that got smaller than the
cursor (truncated or rotated in place), or a directory source whose newest
file changed, starts a new cursor generation and is read from the start on
the same poll.
"""

import fnmatch
import posixpath
from dataclasses import replace

import structlog

from craftwatch.errors import RemoteFileNotFound, TransientIOError
from craftwatch.metrics import POLL_FAILURES, ROTATIONS
from craftwatch.remote.base import EndpointKind, FileStore
from craftwatch.remote.supervisor import ConnectionSupervisor

from .models import LogSource, ReadCursor

log = structlog.get_logger()

DEGRADED_AFTER_FAILURES = 3


def _complete_utf8(data: bytes) -> bytes:
    """Trim a trailing partial UTF-8 sequence so it is re-read next poll."""
    for back in range(1, min(4, len(data)) + 1):
        byte = data[-back]
        if byte & 0xC0 == 0x80:  # continuation byte, keep looking for the lead
            continue
        if byte < 0x80:
            needed = 1
        elif byte >= 0xF0:
            needed = 4
        elif byte >= 0xE0:
            needed = 3
        else:
            needed = 2
        return data[:-back] if needed > back else data
    return data


class RemoteLogTailer:
    """Polls log sources through the supervised file-store connection."""

    def __init__(self, supervisor: ConnectionSupervisor, encoding: str = "utf-8"):
        self.supervisor = supervisor
        self.encoding = encoding
        self._failures: dict[str, int] = {}

    def _store(self) -> FileStore:
        return self.supervisor.acquire(EndpointKind.FILE_STORE)

    def _resolve_path(self, store: FileStore, source: LogSource) -> str:
        """Concrete file to read: the path itself, or the newest match in a directory."""
        if source.pattern is None:
            return source.remote_path

        candidates = [
            entry
            for entry in store.list(source.remote_path)
            if fnmatch.fnmatch(entry.name, source.pattern) and "debug" not in entry.name
        ]
        if not candidates:
            raise RemoteFileNotFound(f"no {source.pattern} in {source.remote_path}")
        newest = max(candidates, key=lambda e: e.mtime)
        return posixpath.join(source.remote_path, newest.name)

    def poll(self, source: LogSource, cursor: ReadCursor) -> tuple[str, ReadCursor]:
        """Return text appended since ``cursor`` and the advanced cursor.

        Raises:
            TransientIOError: The store could not be reached or read; the
                caller keeps ``cursor`` and retries on its next tick
        """
        try:
            text, updated = self._poll(source, cursor)
        except TransientIOError as e:
            self._record_failure(source, e)
            raise
        self._record_success(source)
        return text, updated

    def _poll(self, source: LogSource, cursor: ReadCursor) -> tuple[str, ReadCursor]:
        store = self._store()
        try:
            path = self._resolve_path(store, source)
            size = store.stat(path).size

            if cursor.path is not None and path != cursor.path:
                cursor = self._rotate(source, cursor, path, reason="file_changed")
            elif size < cursor.offset:
                cursor = self._rotate(source, cursor, path, reason="truncated")
            elif cursor.path is None:
                cursor = replace(cursor, path=path)

            if size == cursor.offset:
                return "", cursor

            data = _complete_utf8(store.read_range(path, cursor.offset))
        except RemoteFileNotFound:
            raise
        except TransientIOError:
            self.supervisor.invalidate(EndpointKind.FILE_STORE)
            raise

        text = data.decode(self.encoding, errors="replace")
        return text, replace(cursor, offset=cursor.offset + len(data))

    def _rotate(self, source: LogSource, cursor: ReadCursor, path: str, reason: str) -> ReadCursor:
        log.info(
            "Log rotation detected",
            source=source.id,
            reason=reason,
            old_path=cursor.path,
            new_path=path,
            old_offset=cursor.offset,
            generation=cursor.generation + 1,
        )
        ROTATIONS.labels(source=source.id).inc()
        return ReadCursor(
            source_id=cursor.source_id,
            offset=0,
            generation=cursor.generation + 1,
            path=path,
        )

    def seek_end(self, source: LogSource) -> ReadCursor:
        """Cursor at the current end of ``source``, so history is skipped."""
        try:
            store = self._store()
            path = self._resolve_path(store, source)
            size = store.stat(path).size
        except TransientIOError as e:
            self._record_failure(source, e)
            raise
        self._record_success(source)
        return ReadCursor(source_id=source.id, offset=size, path=path)

    def _record_failure(self, source: LogSource, error: Exception) -> None:
        count = self._failures.get(source.id, 0) + 1
        self._failures[source.id] = count
        POLL_FAILURES.labels(source=source.id).inc()
        log.warning("Poll failed", source=source.id, consecutive=count, error=str(error))
        if count >= DEGRADED_AFTER_FAILURES:
            self.supervisor.mark_degraded(
                EndpointKind.FILE_STORE, f"{source.id}: {count} consecutive failures"
            )

    def _record_success(self, source: LogSource) -> None:
        if self._failures.pop(source.id, 0) >= DEGRADED_AFTER_FAILURES:
            self.supervisor.mark_recovered(EndpointKind.FILE_STORE)


class LineBuffer:
    """Splits streamed text into complete lines.

    A trailing fragment without a newline is held until the next feed.
    """

    def __init__(self) -> None:
        self._partial = ""

    def feed(self, text: str) -> list[str]:
        if not text:
            return []
        data = self._partial + text
        lines = data.split("\n")
        self._partial = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def reset(self) -> None:
        self._partial = ""

    @property
    def pending(self) -> str:
        return self._partial
