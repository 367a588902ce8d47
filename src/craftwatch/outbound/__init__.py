"""Outbound messaging: channel clients and the dispatch queue."""

from .discord import DiscordClient
from .dispatch import DispatchQueue, QueueItem, Sink, split_text
from .telegram import TelegramClient

__all__ = [
    "DiscordClient",
    "DispatchQueue",
    "QueueItem",
    "Sink",
    "TelegramClient",
    "split_text",
]
