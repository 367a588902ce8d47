"""Data model for log sources, cursors, events and notifications."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SourceKind(Enum):
    """What a log source contains."""

    SERVER_EVENTS = "server_events"  # kubejs/server.log: chat, joins, deaths
    AUX_DIAGNOSTICS = "aux_diagnostics"  # logs/latest.log
    CRASH_DIRECTORY = "crash_directory"  # crash-reports/


class EventKind(Enum):
    """Kinds of event the classifier can produce."""

    JOIN = "join"
    LEAVE = "leave"
    CHAT = "chat"
    KILL = "kill"
    CRASH_REPORT = "crash_report"
    MOD_ERROR = "mod_error"
    GENERIC_WARNING = "generic_warning"


class Priority(Enum):
    """Notification priority."""

    NORMAL = "normal"
    HIGH = "high"  # Pings the channel where the sink supports it


@dataclass(frozen=True)
class LogSource:
    """A remote log artifact to watch.

    When ``pattern`` is set, ``remote_path`` is a directory and the newest
    file matching the glob is followed.
    """

    id: str
    remote_path: str
    kind: SourceKind
    poll_interval: float = 3.0
    pattern: str | None = None


@dataclass(frozen=True)
class ReadCursor:
    """How much of a source has been consumed.

    ``offset`` is a byte count into ``path``. ``generation`` increases each
    time a rotation or truncation is detected.
    """

    source_id: str
    offset: int = 0
    generation: int = 1
    path: str | None = None

    def to_dict(self) -> dict:
        return {"offset": self.offset, "generation": self.generation, "path": self.path}

    @classmethod
    def from_dict(cls, source_id: str, data: dict) -> "ReadCursor":
        return cls(
            source_id=source_id,
            offset=int(data.get("offset", 0)),
            generation=int(data.get("generation", 1)),
            path=data.get("path"),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Event:
    """A classified log line.

    ``observed_at`` does not take part in equality so that classifying the
    same line twice yields equal events.
    """

    kind: EventKind
    attributes: dict[str, str]
    raw_line: str
    observed_at: datetime = field(default_factory=_utcnow, compare=False)


def dedup_key_for(text: str) -> str:
    """Content hash used to recognise repeated notifications."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class NotificationMessage:
    """Text bound for the outbound channel."""

    text: str
    priority: Priority = Priority.NORMAL
    category: str = "system"  # Event kind value, "answer" or "system"
    dedup_key: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.dedup_key:
            self.dedup_key = dedup_key_for(self.text)
