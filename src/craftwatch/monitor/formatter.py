"""Render events as notification text."""

from .models import Event, EventKind, NotificationMessage, Priority

# Max characters of a raw log line quoted in a notification
RAW_PREVIEW_LENGTH = 300

_HIGH_PRIORITY = {EventKind.CRASH_REPORT, EventKind.MOD_ERROR}


def _text_for(event: Event) -> str:
    attrs = event.attributes
    kind = event.kind

    if kind == EventKind.JOIN:
        return f"✅ {attrs['player']} joined"
    if kind == EventKind.LEAVE:
        return f"❌ {attrs['player']} left"
    if kind == EventKind.CHAT:
        return f"💬 {attrs['player']}: {attrs['message']}"
    if kind == EventKind.KILL:
        icon = "⚔️" if attrs.get("killer") else "💀"
        return f"{icon} {attrs['cause']}"
    if kind == EventKind.MOD_ERROR:
        return f"🧩 Mod error: {attrs['label']}\n{event.raw_line[:RAW_PREVIEW_LENGTH]}"
    if kind == EventKind.CRASH_REPORT:
        return f"💥 Crash detected!\nFile: {attrs['file']}\n\n{attrs.get('snippet', '')}".rstrip()
    return f"⚠️ {event.raw_line[:RAW_PREVIEW_LENGTH]}"


def format_event(event: Event) -> NotificationMessage:
    """Build the notification for an event."""
    return NotificationMessage(
        text=_text_for(event),
        priority=Priority.HIGH if event.kind in _HIGH_PRIORITY else Priority.NORMAL,
        category=event.kind.value,
    )


def format_answer(answer: str) -> NotificationMessage:
    """Notification carrying an AI answer (never deduplicated)."""
    return NotificationMessage(text=f"🤖 AI: {answer}", category="answer")


def format_system(text: str, priority: Priority = Priority.NORMAL) -> NotificationMessage:
    return NotificationMessage(text=text, priority=priority, category="system")
