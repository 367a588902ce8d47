"""Remote endpoints: SFTP file store, RCON console, and their supervisor."""

from .base import Console, EndpointKind, FileStore, RemoteEntry, RemoteStat
from .rcon import RconConsole
from .sftp import SFTPFileStore
from .supervisor import ConnectionSupervisor

__all__ = [
    "ConnectionSupervisor",
    "EndpointKind",
    "FileStore",
    "Console",
    "RemoteEntry",
    "RemoteStat",
    "SFTPFileStore",
    "RconConsole",
]
