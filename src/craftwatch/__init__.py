"""Relay Minecraft server log events and AI answers to a chat channel."""

__version__ = "0.1.0"
