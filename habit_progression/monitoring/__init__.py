"""Monitoring infrastructure for habit-progression"""
from habit_progression.monitoring.prometheus_metrics import (
    metrics,
    record_result,
    track_event,
)

__all__ = [
    "metrics",
    "record_result",
    "track_event",
]
