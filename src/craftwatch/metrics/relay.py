"""Prometheus metrics for the relay.

All metrics use the 'craftwatch_' prefix.
"""

from prometheus_client import Counter, Gauge, Info

SERVICE_INFO = Info(
    "craftwatch_service",
    "Service metadata",
)

# Tailing
LINES_READ = Counter(
    "craftwatch_lines_read_total",
    "Complete log lines read from remote sources",
    ["source"],
)

POLL_FAILURES = Counter(
    "craftwatch_poll_failures_total",
    "Failed polls of a remote source",
    ["source"],
)

ROTATIONS = Counter(
    "craftwatch_rotations_total",
    "Detected log rotations or truncations",
    ["source"],
)

EVENTS_CLASSIFIED = Counter(
    "craftwatch_events_classified_total",
    "Log lines classified into events",
    ["kind"],
)

# Notifications
NOTIFICATIONS = Counter(
    "craftwatch_notifications_total",
    "Notifications considered for delivery",
    ["category", "status"],  # status: emitted, suppressed
)

DELIVERIES = Counter(
    "craftwatch_deliveries_total",
    "Outbound delivery attempts",
    ["status"],  # status: sent, retried, rate_limited, dropped
)

QUEUE_DEPTH = Gauge(
    "craftwatch_queue_depth",
    "Items waiting in the dispatch queue",
)

# AI providers
PROVIDER_REQUESTS = Counter(
    "craftwatch_provider_requests_total",
    "Answer provider calls",
    ["provider", "status"],  # status: success, quota, error, skipped
)

# Health
CONNECTIVITY_DEGRADED = Gauge(
    "craftwatch_connectivity_degraded",
    "1 while an endpoint has failed repeatedly",
    ["endpoint"],
)

TASK_OVERLAPS = Counter(
    "craftwatch_task_overlaps_total",
    "Ticks skipped because the previous run was still in flight",
    ["task"],
)

ONLINE_PLAYERS = Gauge(
    "craftwatch_online_players",
    "Players online according to the console",
)
