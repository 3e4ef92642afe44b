from __future__ import annotations

from prometheus_client import Counter, Gauge

SIGNALS_PROCESSED = Counter(
    "margin_manager_signals_processed_total",
    "Valid signals processed by resilience mode",
    labelnames=("mode",),
)
SIGNALS_DROPPED = Counter(
    "margin_manager_signals_dropped_total",
    "Malformed signal entries dropped before processing",
)
DEPLOYMENTS_REQUESTED = Counter(
    "margin_manager_deployments_requested_total",
    "Margin deployments requested by margin type and priority",
    labelnames=("margin_type", "priority"),
)
EVENTS_RECORDED = Counter(
    "margin_manager_events_recorded_total",
    "Margin events appended to the audit log by event type",
    labelnames=("event_type",),
)
MARGIN_UTILIZATION = Gauge(
    "margin_manager_utilization_ratio",
    "Latest utilization rate per margin type",
    labelnames=("margin_type",),
)
