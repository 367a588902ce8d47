"""Server console access over RCON."""

import threading
from typing import TYPE_CHECKING

import structlog
from rcon.exceptions import EmptyResponse, SessionTimeout, WrongPassword
from rcon.source import Client

from craftwatch.errors import PermanentConfigError, TransientIOError

if TYPE_CHECKING:
    from craftwatch.config import RconConfig

log = structlog.get_logger()

# rcon raises these (besides socket errors) when a session goes bad
_SESSION_ERRORS = (OSError, EmptyResponse, SessionTimeout)


class RconConsole:
    """Authenticated RCON session."""

    def __init__(self, client: Client):
        self._client = client
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, config: "RconConfig") -> "RconConsole":
        """Open a socket and log in.

        Raises:
            TransientIOError: Network failure
            PermanentConfigError: The server rejected the password
        """
        client = Client(config.host, config.port, timeout=config.timeout)
        target = f"{config.host}:{config.port}"
        try:
            client.connect()
            client.login(config.password)
        except WrongPassword as e:
            client.close()
            raise PermanentConfigError("RCON authentication failed (check RCON_PASSWORD)") from e
        except _SESSION_ERRORS as e:
            client.close()
            raise TransientIOError(f"RCON connect to {target} failed: {e!r}") from e

        log.debug("RCON session opened", host=config.host, port=config.port)
        return cls(client)

    def send(self, command: str) -> str:
        """Run a console command and return the server's reply."""
        with self._lock:
            try:
                return self._client.run(command)
            except _SESSION_ERRORS as e:
                raise TransientIOError(f"RCON command {command!r} failed: {e!r}") from e

    def close(self) -> None:
        try:
            self._client.close()
        except OSError:
            pass
