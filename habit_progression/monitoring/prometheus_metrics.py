"""Prometheus metrics definitions and helpers"""
import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

from habit_progression.config import ENABLE_PROMETHEUS
from habit_progression.models.result import ProgressionResult

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """Container for all Prometheus metrics"""

    def __init__(self, enabled: bool = ENABLE_PROMETHEUS):
        if not enabled:
            logger.info("Prometheus metrics disabled")
            self._enabled = False
            return

        # Event Metrics
        self.events_total = Counter(
            'progression_events_total',
            'Total progression events applied',
            ['event_type', 'status']
        )

        self.apply_event_duration_seconds = Histogram(
            'progression_apply_event_duration_seconds',
            'Latency of applying one progression event',
            ['event_type'],
            buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5]
        )

        # XP Metrics
        self.xp_awarded_total = Counter(
            'progression_xp_awarded_total',
            'Total XP awarded',
            ['source']
        )

        self.level_ups_total = Counter(
            'progression_level_ups_total',
            'Total levels gained across users'
        )

        # Reward Metrics
        self.achievements_unlocked_total = Counter(
            'progression_achievements_unlocked_total',
            'Total achievements unlocked',
            ['rarity']
        )

        self.forgiveness_tokens_used_total = Counter(
            'progression_forgiveness_tokens_used_total',
            'Total forgiveness tokens spent'
        )

        self._enabled = True
        logger.info("Prometheus metrics initialized")

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled"""
        return self._enabled


# Global metrics instance
metrics = PrometheusMetrics()


@contextmanager
def track_event(event_type: str):
    """Track event application count, outcome and latency"""
    if not metrics.enabled:
        yield
        return

    start_time = time.time()
    status = "error"  # Default to error

    try:
        yield
        status = "success"
    except Exception as e:
        status = type(e).__name__
        raise
    finally:
        duration = time.time() - start_time
        metrics.apply_event_duration_seconds.labels(
            event_type=event_type
        ).observe(duration)

        metrics.events_total.labels(
            event_type=event_type,
            status=status
        ).inc()


def record_result(result: ProgressionResult) -> None:
    """Count the XP, levels, unlocks and token spends of one applied event"""
    if not metrics.enabled:
        return

    for delta in result.xp_deltas:
        metrics.xp_awarded_total.labels(source=delta.source.value).inc(delta.amount)

    if result.levels_gained:
        metrics.level_ups_total.inc(result.levels_gained)

    for achievement in result.unlocked_achievements:
        metrics.achievements_unlocked_total.labels(rarity=achievement.rarity.value).inc()

    if result.forgiveness_grant is not None:
        metrics.forgiveness_tokens_used_total.inc()
