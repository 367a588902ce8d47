"""Tests for the crash report watcher."""

import pytest

from craftwatch.monitor.crashes import CrashWatcher
from craftwatch.monitor.dedup import CrashLedger
from craftwatch.monitor.models import EventKind, LogSource, SourceKind
from craftwatch.monitor.state import StateStore
from craftwatch.remote.base import EndpointKind

CRASH_DIR = "/srv/mc/crash-reports"


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def state() -> StateStore:
    return StateStore(None)


def _watcher(supervisor, events, state, **kwargs) -> CrashWatcher:
    source = LogSource("crashes", CRASH_DIR, SourceKind.CRASH_DIRECTORY)
    return CrashWatcher(source, supervisor, CrashLedger(200), events.append, state=state, **kwargs)


class TestCrashWatcher:
    """Tests for reporting each crash report once."""

    def test_new_report_emitted_once(self, store, supervisor, events, state):
        watcher = _watcher(supervisor, events, state)
        name = "crash-2024-05-01_12.00.00-server.txt"
        store.write(f"{CRASH_DIR}/{name}", b"---- Minecraft Crash Report ----\n")

        event = watcher.scan()
        assert event is not None
        assert event.kind == EventKind.CRASH_REPORT
        assert event.attributes["file"] == name
        assert event.attributes["snippet"].startswith("---- Minecraft Crash Report")
        assert events == [event]

        assert watcher.scan() is None
        assert len(events) == 1

    def test_only_newest_file_considered(self, store, supervisor, events, state):
        watcher = _watcher(supervisor, events, state)
        store.write(f"{CRASH_DIR}/crash-old.txt", b"old", mtime=10)
        store.write(f"{CRASH_DIR}/crash-new.txt", b"new", mtime=20)

        assert watcher.scan().attributes["file"] == "crash-new.txt"
        assert watcher.scan() is None

    def test_snippet_is_bounded(self, store, supervisor, events, state):
        watcher = _watcher(supervisor, events, state, snippet_length=800)
        store.write(f"{CRASH_DIR}/crash-big.txt", b"z" * 10_000)
        assert len(watcher.scan().attributes["snippet"]) == 800

    def test_seeding_suppresses_existing(self, store, supervisor, events, state):
        store.write(f"{CRASH_DIR}/crash-a.txt", b"a", mtime=1)
        store.write(f"{CRASH_DIR}/crash-b.txt", b"b", mtime=2)
        watcher = _watcher(supervisor, events, state, seed_existing=True)

        assert watcher.scan() is None
        assert watcher.scan() is None
        assert events == []
        assert state.crash_names() == ["crash-a.txt", "crash-b.txt"]

        store.write(f"{CRASH_DIR}/crash-c.txt", b"c", mtime=3)
        assert watcher.scan().attributes["file"] == "crash-c.txt"

    def test_ledger_persisted(self, store, supervisor, events, state):
        watcher = _watcher(supervisor, events, state)
        store.write(f"{CRASH_DIR}/crash-x.txt", b"boom")
        watcher.scan()
        assert state.crash_names() == ["crash-x.txt"]

    def test_empty_directory(self, supervisor, events, state):
        assert _watcher(supervisor, events, state).scan() is None
        assert events == []

    def test_transient_error_invalidates(self, store, supervisor, events, state):
        store.write(f"{CRASH_DIR}/crash-x.txt", b"boom")
        store.fail_next = 1
        watcher = _watcher(supervisor, events, state)

        assert watcher.scan() is None
        assert store.closed == 1
        assert supervisor.health()[EndpointKind.FILE_STORE.value]["connected"] is False

        assert watcher.scan() is not None
