"""SFTP-backed remote file store."""

import stat as stat_mod
from typing import TYPE_CHECKING

import paramiko
import structlog

from craftwatch.errors import RemoteFileNotFound, TransientIOError

from .base import RemoteEntry, RemoteStat

if TYPE_CHECKING:
    from craftwatch.config import SFTPConfig

log = structlog.get_logger()

# paramiko surfaces transport problems as any of these
_TRANSPORT_ERRORS = (OSError, EOFError, paramiko.SSHException)


class SFTPFileStore:
    """Read-only access to the server's files over SFTP."""

    def __init__(self, client: paramiko.SSHClient, sftp: paramiko.SFTPClient):
        self._client = client
        self._sftp = sftp

    @classmethod
    def connect(cls, config: "SFTPConfig") -> "SFTPFileStore":
        """Open an SSH session and an SFTP channel.

        Raises:
            TransientIOError: Authentication or network failure
        """
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if config.known_hosts:
            client.load_host_keys(config.known_hosts)
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            client.connect(
                hostname=config.host,
                port=config.port,
                username=config.user,
                password=config.password or None,
                key_filename=config.key_file or None,
                timeout=config.timeout,
                banner_timeout=config.timeout,
                auth_timeout=config.timeout,
                allow_agent=False,
                look_for_keys=config.key_file is None and not config.password,
            )
            sftp = client.open_sftp()
            sftp.get_channel().settimeout(config.timeout)
        except _TRANSPORT_ERRORS as e:
            client.close()
            target = f"{config.host}:{config.port}"
            raise TransientIOError(f"SFTP connect to {target} failed: {e}") from e

        log.debug("SFTP session opened", host=config.host, port=config.port)
        return cls(client, sftp)

    def stat(self, path: str) -> RemoteStat:
        try:
            attrs = self._sftp.stat(path)
        except FileNotFoundError as e:
            raise RemoteFileNotFound(path) from e
        except _TRANSPORT_ERRORS as e:
            raise TransientIOError(f"stat {path}: {e}") from e
        return RemoteStat(size=attrs.st_size or 0, mtime=float(attrs.st_mtime or 0))

    def list(self, directory: str) -> list[RemoteEntry]:
        """Regular files in ``directory`` (subdirectories are skipped)."""
        try:
            entries = self._sftp.listdir_attr(directory)
        except FileNotFoundError as e:
            raise RemoteFileNotFound(directory) from e
        except _TRANSPORT_ERRORS as e:
            raise TransientIOError(f"list {directory}: {e}") from e
        return [
            RemoteEntry(name=a.filename, mtime=float(a.st_mtime or 0), size=a.st_size or 0)
            for a in entries
            if not stat_mod.S_ISDIR(a.st_mode or 0)
        ]

    def read_range(self, path: str, offset: int, length: int | None = None) -> bytes:
        """Read from ``offset`` to EOF, or ``length`` bytes if given."""
        try:
            with self._sftp.open(path, "rb") as f:
                f.seek(offset)
                return f.read(length)
        except FileNotFoundError as e:
            raise RemoteFileNotFound(path) from e
        except _TRANSPORT_ERRORS as e:
            raise TransientIOError(f"read {path}@{offset}: {e}") from e

    def close(self) -> None:
        try:
            self._sftp.close()
        finally:
            self._client.close()
