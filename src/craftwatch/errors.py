"""Exception taxonomy shared by the relay components.

Rotation is not an error (the tailer resets its cursor and carries on) and
provider exhaustion is reported as a sentinel answer, so neither appears here.
"""


class CraftwatchError(Exception):
    """Base class for relay errors."""


class TransientIOError(CraftwatchError):
    """Network blip talking to a remote endpoint; retry on the next tick."""


class SourceUnavailable(TransientIOError):
    """No live connection could be obtained for an endpoint."""


class RemoteFileNotFound(TransientIOError):
    """The path does not exist (yet); the connection itself is fine."""


class PermanentConfigError(CraftwatchError):
    """A required endpoint is not configured; the dependent task stays disabled."""


class QuotaExceededError(CraftwatchError):
    """An answer provider reported exhausted quota or billing."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(CraftwatchError):
    """An answer provider failed for any reason other than quota."""


class DeliveryError(CraftwatchError):
    """The outbound channel rejected or failed to accept a message."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class RateLimitedError(DeliveryError):
    """The outbound channel asked us to wait ``retry_after`` seconds."""

    def __init__(self, retry_after: float, message: str | None = None):
        super().__init__(message or f"rate limited, retry after {retry_after}s")
        self.retry_after = retry_after
