"""Prometheus metrics for the chat moderation pipeline.

Exposes HTTP, automod, moderation and realtime delivery metrics on a
private registry.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Running under gunicorn with several workers
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "arcade_chat_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Automod Metrics
# ============================================
AUTOMOD_VERDICTS_TOTAL = Counter(
    "automod_verdicts_total",
    "Automod gate verdicts by message context and outcome",
    ["context", "outcome"],
    registry=REGISTRY,
)

AUTOMOD_ORACLE_DURATION_SECONDS = Histogram(
    "automod_oracle_duration_seconds",
    "Moderation oracle call duration in seconds",
    ["context"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0],
    registry=REGISTRY,
)

AUTOMOD_REDACTIONS_TOTAL = Counter(
    "automod_redactions_total",
    "Messages redacted by the automod gate",
    registry=REGISTRY,
)

AUTOMOD_PENDING_REVIEWS = Gauge(
    "automod_pending_reviews",
    "Background automod reviews currently in flight",
    registry=REGISTRY,
)


# ============================================
# Moderation Metrics
# ============================================
MODERATION_ACTIONS_TOTAL = Counter(
    "moderation_actions_total",
    "Moderation actions written to the moderation log",
    ["action"],
    registry=REGISTRY,
)


# ============================================
# Chat and Realtime Metrics
# ============================================
CHAT_MESSAGES_TOTAL = Counter(
    "chat_messages_total",
    "Chat messages persisted",
    ["channel"],
    registry=REGISTRY,
)

REALTIME_EVENTS_PUBLISHED_TOTAL = Counter(
    "realtime_events_published_total",
    "Change events published to the realtime feed",
    ["table", "event"],
    registry=REGISTRY,
)

CHAT_DELIVERY_RECONNECTS_TOTAL = Counter(
    "chat_delivery_reconnects_total",
    "Delivery session reconnects after transport loss",
    registry=REGISTRY,
)

CHAT_DELIVERY_SESSIONS = Gauge(
    "chat_delivery_sessions",
    "Delivery sessions currently subscribed",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
