"""Prometheus metrics for the shelf domain (HTTP metrics live in main)."""

from __future__ import annotations

from prometheus_client import Counter

SHELF_TRANSITIONS = Counter(
    "shelf_transitions_total",
    "Applied shelf transitions (idempotent no-ops excluded)",
    ["from_shelf", "to_shelf"],
)
QUEUE_REORDERS = Counter(
    "queue_reorders_total",
    "Queue reorder requests",
    ["outcome"],
)
ACHIEVEMENT_EVENTS = Counter(
    "achievement_events_total",
    "Domain events forwarded to the achievement tracker",
    ["outcome"],
)
