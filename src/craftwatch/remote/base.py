"""Contracts the relay consumes from remote endpoints."""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class EndpointKind(Enum):
    """Remote endpoints with a supervised connection."""

    FILE_STORE = "file_store"
    CONSOLE = "console"


@dataclass(frozen=True)
class RemoteStat:
    size: int
    mtime: float


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    mtime: float
    size: int = 0


class FileStore(Protocol):
    """Read-only view of the server's file system."""

    def stat(self, path: str) -> RemoteStat: ...

    def list(self, directory: str) -> list[RemoteEntry]: ...

    def read_range(self, path: str, offset: int, length: int | None = None) -> bytes: ...

    def close(self) -> None: ...


class Console(Protocol):
    """Administrative command channel to the server."""

    def send(self, command: str) -> str: ...

    def close(self) -> None: ...
