"""Persistent read cursors and crash ledger.

State is a single JSON document written atomically (tmp file + os.replace)
so a restart resumes where the previous process stopped instead of
replaying the whole log history.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

import structlog

from .models import ReadCursor

log = structlog.get_logger()


class StateStore:
    """Cursor and crash-ledger persistence.

    With ``path=None`` the store is memory-only and ``save`` is a no-op.
    """

    def __init__(self, path: Path | None):
        self.path = path
        self._cursors: dict[str, dict[str, Any]] = {}
        self._crashes: list[str] = []
        self._loaded_from_disk = False
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._load()

    @property
    def loaded_from_disk(self) -> bool:
        """True if state existed on disk when the store was created."""
        return self._loaded_from_disk

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            log.warning("Failed to load state, starting fresh", path=str(self.path), error=str(e))
            return

        self._cursors = dict(data.get("cursors", {}))
        self._crashes = list(data.get("crash_ledger", []))
        self._loaded_from_disk = True
        log.info(
            "Loaded state",
            path=str(self.path),
            cursors=len(self._cursors),
            crashes=len(self._crashes),
        )

    def get_cursor(self, source_id: str) -> ReadCursor | None:
        with self._lock:
            data = self._cursors.get(source_id)
        if data is None:
            return None
        return ReadCursor.from_dict(source_id, data)

    def put_cursor(self, cursor: ReadCursor) -> None:
        with self._lock:
            self._cursors[cursor.source_id] = cursor.to_dict()

    def cursors(self) -> dict[str, ReadCursor]:
        with self._lock:
            items = list(self._cursors.items())
        return {sid: ReadCursor.from_dict(sid, data) for sid, data in items}

    def crash_names(self) -> list[str]:
        with self._lock:
            return list(self._crashes)

    def put_crash_names(self, names: list[str]) -> None:
        with self._lock:
            self._crashes = list(names)

    def reset(self, source_id: str | None = None, crashes: bool = False) -> None:
        """Forget one source's cursor (or all of them) and optionally the ledger."""
        with self._lock:
            if source_id is None:
                self._cursors.clear()
            else:
                self._cursors.pop(source_id, None)
            if crashes:
                self._crashes = []

    def save(self) -> None:
        if self.path is None:
            return

        with self._write_lock:
            with self._lock:
                data = {"cursors": dict(self._cursors), "crash_ledger": list(self._crashes)}

            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, self.path)
            except Exception:
                os.unlink(tmp)
                raise
