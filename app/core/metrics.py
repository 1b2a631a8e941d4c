"""Prometheus metric inventory.

Every metric the service exports is declared here; modules import the ones
they own and increment/observe them at the point of action.  Scraped via
GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Watchlist
# ---------------------------------------------------------------------------

WATCHLIST_RECONCILIATIONS = Counter(
    "watchlist_reconciliations_total",
    "Reconciliation passes by outcome",
    ["result"],  # "changed" or "unchanged"
)

WATCHLIST_DUPLICATES_REMOVED = Counter(
    "watchlist_duplicates_removed_total",
    "Duplicate watchlist entries collapsed by reconciliation",
)

WATCHLIST_WRITE_CONFLICTS = Counter(
    "watchlist_write_conflicts_total",
    "Compare-and-swap conflicts on learner record writes",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

# ---------------------------------------------------------------------------
# AI backend
# ---------------------------------------------------------------------------

AI_BACKEND_REQUESTS = Counter(
    "ai_backend_requests_total",
    "Calls to the AI generation backend",
    ["endpoint", "outcome"],  # outcome: "ok" or "error"
)

AI_BACKEND_DURATION = Histogram(
    "ai_backend_request_duration_seconds",
    "AI backend call duration in seconds",
    ["endpoint"],
    # generation calls are slow; buckets reach into the tens of seconds
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
)
