"""Structured logging configuration for craftwatch.

structlog renders JSON when stdout is not a terminal and a coloured console
otherwise. Third-party libraries log through stdlib logging and are routed
through the same formatter.
"""

import logging
import re
import sys
from typing import Any, cast

import structlog

# Telegram embeds the bot token in the request path: /bot<id>:<secret>/sendMessage
_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
_KEY_RE = re.compile(r"(key=|Bearer )[A-Za-z0-9._-]+")

# Libraries that are chatty at INFO (httpx logs every request URL).
_NOISY_LOGGERS = ("httpx", "httpcore", "paramiko", "paramiko.transport")


def _redact(value: str) -> str:
    value = _TOKEN_RE.sub("bot<redacted>", value)
    return _KEY_RE.sub(r"\1<redacted>", value)


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask bot tokens and API keys in string values."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _redact(value)
    return event_dict


def configure_logging(service_name: str, level: str = "INFO") -> None:
    """Configure structured logging for the relay.

    Args:
        service_name: Bound into every entry as ``service``
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer()
        if sys.stdout.isatty()
        else structlog.processors.JSONRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processor=renderer,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    if log_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__ from calling module)
    """
    return cast(structlog.BoundLogger, structlog.get_logger(name))
