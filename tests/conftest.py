"""Shared fakes for craftwatch tests."""

import posixpath
from collections.abc import Callable

import pytest

from craftwatch.errors import RemoteFileNotFound, TransientIOError
from craftwatch.monitor.models import Priority
from craftwatch.remote.base import EndpointKind, RemoteEntry, RemoteStat
from craftwatch.remote.supervisor import ConnectionSupervisor


class FakeClock:
    """Manually advanced monotonic clock; ``sleep`` advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeFileStore:
    """In-memory remote file system."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.mtimes: dict[str, float] = {}
        self.fail_next = 0
        self.closed = 0

    def write(self, path: str, data: bytes, mtime: float | None = None) -> None:
        self.files[path] = data
        self.mtimes[path] = mtime if mtime is not None else max(self.mtimes.values(), default=0) + 1

    def append(self, path: str, data: bytes) -> None:
        self.files[path] = self.files.get(path, b"") + data
        self.mtimes.setdefault(path, 1.0)

    def _maybe_fail(self) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransientIOError("connection reset")

    def stat(self, path: str) -> RemoteStat:
        self._maybe_fail()
        if path not in self.files:
            raise RemoteFileNotFound(path)
        return RemoteStat(size=len(self.files[path]), mtime=self.mtimes[path])

    def list(self, directory: str) -> list[RemoteEntry]:
        self._maybe_fail()
        return [
            RemoteEntry(name=posixpath.basename(path), mtime=self.mtimes[path], size=len(data))
            for path, data in self.files.items()
            if posixpath.dirname(path) == directory
        ]

    def read_range(self, path: str, offset: int, length: int | None = None) -> bytes:
        self._maybe_fail()
        if path not in self.files:
            raise RemoteFileNotFound(path)
        data = self.files[path][offset:]
        return data if length is None else data[:length]

    def close(self) -> None:
        self.closed += 1


class FakeSink:
    """Outbound channel that records deliveries.

    ``errors`` is consumed one per call; ``None`` entries mean success.
    """

    max_message_length = 4096

    def __init__(self, clock: Callable[[], float] | None = None):
        self.clock = clock
        self.errors: list[Exception | None] = []
        self.calls: list[tuple[str, Priority, float | None]] = []
        self.delivered: list[tuple[str, Priority, float | None]] = []

    @property
    def texts(self) -> list[str]:
        return [text for text, _, _ in self.delivered]

    def deliver(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        at = self.clock() if self.clock else None
        self.calls.append((text, priority, at))
        error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error
        self.delivered.append((text, priority, at))


class FakeProvider:
    """Answer provider with scripted outcomes.

    Each outcome is a string answer or an exception instance; the last
    outcome repeats once the script runs out.
    """

    def __init__(self, name: str, *outcomes: str | Exception):
        self.name = name
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    def ask(self, question: str, max_tokens: int = 300, timeout: float = 25.0) -> str:
        self.calls.append(question)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeFileStore:
    return FakeFileStore()


@pytest.fixture
def supervisor(store: FakeFileStore, clock: FakeClock) -> ConnectionSupervisor:
    return ConnectionSupervisor({EndpointKind.FILE_STORE: lambda: store}, clock=clock)
