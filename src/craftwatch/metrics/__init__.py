"""Prometheus metrics for craftwatch.

Usage:
    from craftwatch.metrics import start_metrics_server, DELIVERIES

    start_metrics_server(port=4000, health_check=daemon.health)
    DELIVERIES.labels(status="sent").inc()
"""

from craftwatch.metrics.relay import (
    CONNECTIVITY_DEGRADED,
    DELIVERIES,
    EVENTS_CLASSIFIED,
    LINES_READ,
    NOTIFICATIONS,
    ONLINE_PLAYERS,
    POLL_FAILURES,
    PROVIDER_REQUESTS,
    QUEUE_DEPTH,
    ROTATIONS,
    SERVICE_INFO,
    TASK_OVERLAPS,
)
from craftwatch.metrics.server import make_app, start_metrics_server

__all__ = [
    "start_metrics_server",
    "make_app",
    "SERVICE_INFO",
    "LINES_READ",
    "POLL_FAILURES",
    "ROTATIONS",
    "EVENTS_CLASSIFIED",
    "NOTIFICATIONS",
    "DELIVERIES",
    "QUEUE_DEPTH",
    "PROVIDER_REQUESTS",
    "CONNECTIVITY_DEGRADED",
    "TASK_OVERLAPS",
    "ONLINE_PLAYERS",
]
