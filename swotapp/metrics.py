"""Centralised Prometheus metric definitions for the match engine."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


MATCH_ACTIONS_TOTAL = Counter(
    "swot_match_actions_total",
    "Match intents handled by the engine",
    labelnames=["action", "outcome"],
)

VERSION_CONFLICTS_TOTAL = Counter(
    "swot_version_conflicts_total",
    "Room saves rejected because another writer bumped the version",
)

ROUNDS_RESOLVED_TOTAL = Counter(
    "swot_rounds_resolved_total",
    "Rounds resolved by fold or showdown",
    labelnames=["result"],
)

ACTION_DURATION = Histogram(
    "swot_action_duration_seconds",
    "Latency distribution for match intents including persistence",
    labelnames=["action"],
)

REDIS_OPERATION_DURATION = Histogram(
    "swot_redis_operation_duration_seconds",
    "Latency of Redis calls issued through RedisSafeOps",
    labelnames=["method", "status"],
)


def record_redis_operation(method: str, elapsed: float, status: str) -> None:
    REDIS_OPERATION_DURATION.labels(method=method, status=status).observe(elapsed)


__all__ = [
    "ACTION_DURATION",
    "MATCH_ACTIONS_TOTAL",
    "REDIS_OPERATION_DURATION",
    "ROUNDS_RESOLVED_TOTAL",
    "VERSION_CONFLICTS_TOTAL",
    "record_redis_operation",
]
