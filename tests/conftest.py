"""Global test fixtures and utilities for habit-progression tests"""
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from habit_progression.config import ProgressionConfig
from habit_progression.gamification.achievement_system import AchievementCatalog
from habit_progression.gamification.aggregator import ProgressionEngine
from habit_progression.models.challenge import Challenge, ChallengeType
from habit_progression.models.events import HabitCompleted, HabitMissed
from habit_progression.models.progression import ProgressionRecord
from habit_progression.models.requirements import CompletionCount


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def now():
    """Fixed 'current' time used across tests"""
    return datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Record & Engine Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-1"


@pytest.fixture
def record(test_user_id, now):
    """Fresh progression record with a full token allowance"""
    return ProgressionRecord.new(test_user_id, now)


@pytest.fixture
def flat_config():
    """Configuration without streak bonus: every completion is worth exactly 10 XP"""
    return ProgressionConfig(streak_bonus_per_day=0)


@pytest.fixture
def empty_catalog():
    return AchievementCatalog([], version="test")


@pytest.fixture
def engine():
    """Engine with default configuration and catalog"""
    return ProgressionEngine()


@pytest.fixture
def quiet_engine(flat_config, empty_catalog):
    """Engine that awards only flat habit XP (no achievements)"""
    return ProgressionEngine(flat_config, empty_catalog)


# ============================================================================
# Event Factories
# ============================================================================

@pytest.fixture
def habit_completed_factory(test_user_id, now):
    """Build HabitCompleted events with unique ids"""
    counter = itertools.count(1)

    def _create(habit_id="habit-1", occurred_at=None, user_id=None, **kwargs):
        n = next(counter)
        occurred_at = occurred_at or now
        fields = {
            "event_id": f"completed-{n}",
            "user_id": user_id or test_user_id,
            "occurred_at": occurred_at,
            "habit_id": habit_id,
            "activity_date": occurred_at.date(),
            "current_streak": 0,
            "total_completions": n,
            "consistency_rate": 50.0,
        }
        fields.update(kwargs)
        return HabitCompleted(**fields)

    return _create


@pytest.fixture
def habit_missed_factory(test_user_id, now):
    """Build HabitMissed events with unique ids"""
    counter = itertools.count(1)

    def _create(habit_id="habit-1", days_missed=1, occurred_at=None, **kwargs):
        n = next(counter)
        occurred_at = occurred_at or now
        fields = {
            "event_id": f"missed-{n}",
            "user_id": test_user_id,
            "occurred_at": occurred_at,
            "habit_id": habit_id,
            "activity_date": (occurred_at - timedelta(days=1)).date(),
            "days_missed": days_missed,
            "current_streak": 0,
            "total_completions": 0,
            "consistency_rate": 0.0,
        }
        fields.update(kwargs)
        return HabitMissed(**fields)

    return _create


# ============================================================================
# Challenge Fixtures
# ============================================================================

@pytest.fixture
def challenge_factory(now):
    """Build challenges starting one day before `now`"""
    def _create(
        challenge_id="challenge-1",
        challenge_type=ChallengeType.PERSONAL,
        requirements=None,
        reward_xp=100,
        duration_days=7,
        capacity=None,
        start_date=None,
    ):
        start = start_date or now - timedelta(days=1)
        return Challenge(
            id=challenge_id,
            title="Test Challenge",
            description="Complete the test",
            challenge_type=challenge_type,
            requirements=requirements or (CompletionCount(value=3),),
            duration_days=duration_days,
            reward_xp=reward_xp,
            start_date=start,
            end_date=start + timedelta(days=duration_days),
            capacity=capacity,
        )

    return _create


@pytest.fixture
def missed_day(now):
    """Missed habit day starting 12 hours before `now`"""
    return now - timedelta(hours=12)
