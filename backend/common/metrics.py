"""Prometheus metrics definitions for Pulse Trading Hub.

All metric objects are centralized here as module-level singletons.
Import what you need from anywhere in the codebase:

    from backend.common.metrics import WS_CONNECTIONS_ACTIVE, WS_MESSAGES_SENT_TOTAL

The /metrics endpoint is mounted in backend/main.py via
prometheus_client.make_asgi_app().
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ─── App Info ───

APP_INFO = Info("app", "Application metadata")

# ─── HTTP Metrics ───

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# ─── WebSocket Connection Metrics ───

WS_CONNECTIONS_ACTIVE = Gauge(
    "ws_connections_active",
    "Open WebSocket connections (authenticated or not)",
)

WS_AUTHENTICATED_ACTIVE = Gauge(
    "ws_authenticated_active",
    "Identities with a registered live connection",
)

WS_AUTH_ATTEMPTS_TOTAL = Counter(
    "ws_auth_attempts_total",
    "Authentication attempts over WebSocket",
    labelnames=["outcome"],
)

# ─── WebSocket Message Metrics ───

WS_MESSAGES_RECEIVED_TOTAL = Counter(
    "ws_messages_received_total",
    "Client messages received, by declared type",
    labelnames=["message_type"],
)

WS_MESSAGES_SENT_TOTAL = Counter(
    "ws_messages_sent_total",
    "Messages written to client sockets",
    labelnames=["message_type"],
)

WS_DELIVERY_FAILURES_TOTAL = Counter(
    "ws_delivery_failures_total",
    "Transport errors while writing to a client socket",
)

WS_MESSAGES_DROPPED_TOTAL = Counter(
    "ws_messages_dropped_total",
    "Pending messages dropped because a connection's outbound queue was full",
)

# ─── Producer Bridge Metrics ───

WS_EVENTS_RECEIVED_TOTAL = Counter(
    "ws_events_received_total",
    "Producer events received from Redis pub/sub",
    labelnames=["kind"],
)


def set_app_info(version: str, environment: str) -> None:
    """Set the app_info metric values. Called once at startup."""
    APP_INFO.info({"version": version, "environment": environment})
