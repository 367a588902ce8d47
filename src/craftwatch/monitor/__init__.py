"""Log monitoring: tailing, classification, de-flooding and crash tracking.

The daemon lives in ``craftwatch.monitor.daemon`` and is not re-exported
here, since it pulls in the outbound and AI layers.
"""

from .classifier import RULES, Rule, classify
from .crashes import CrashWatcher
from .dedup import CrashLedger, Deduplicator
from .formatter import format_answer, format_event, format_system
from .models import (
    Event,
    EventKind,
    LogSource,
    NotificationMessage,
    Priority,
    ReadCursor,
    SourceKind,
)
from .scheduler import TaskScheduler
from .state import StateStore
from .tailer import LineBuffer, RemoteLogTailer

__all__ = [
    # Models
    "Event",
    "EventKind",
    "LogSource",
    "NotificationMessage",
    "Priority",
    "ReadCursor",
    "SourceKind",
    # Pipeline
    "RemoteLogTailer",
    "LineBuffer",
    "classify",
    "Rule",
    "RULES",
    "format_event",
    "format_answer",
    "format_system",
    "Deduplicator",
    "CrashLedger",
    "CrashWatcher",
    # Runtime
    "StateStore",
    "TaskScheduler",
]
