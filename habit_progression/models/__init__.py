"""Pydantic models for the progression engine"""

from habit_progression.models.requirements import (
    ChallengeRequirement,
    ChallengesCompleted,
    CompletionCount,
    ConsistencyRate,
    HabitsTracked,
    LevelReached,
    Requirement,
    StreakLength,
)
from habit_progression.models.achievement import Achievement, AchievementCategory, AchievementRarity
from habit_progression.models.challenge import (
    Challenge,
    ChallengeParticipation,
    ChallengeType,
    ParticipationStatus,
)
from habit_progression.models.events import (
    ChallengeJoined,
    ChallengeLeft,
    ChallengeProgressUpdated,
    ForgivenessRequested,
    HabitCompleted,
    HabitMissed,
    ProgressionEvent,
    RankBonusAwarded,
    parse_event,
)
from habit_progression.models.result import (
    ForgivenessGrant,
    LevelInfo,
    ProgressionResult,
    XPDelta,
    XPSource,
)
from habit_progression.models.progression import HabitSnapshot, HabitStats, ProgressionRecord

__all__ = [
    "ChallengeRequirement",
    "ChallengesCompleted",
    "CompletionCount",
    "ConsistencyRate",
    "HabitsTracked",
    "LevelReached",
    "Requirement",
    "StreakLength",
    "Achievement",
    "AchievementCategory",
    "AchievementRarity",
    "Challenge",
    "ChallengeParticipation",
    "ChallengeType",
    "ParticipationStatus",
    "ChallengeJoined",
    "ChallengeLeft",
    "ChallengeProgressUpdated",
    "ForgivenessRequested",
    "HabitCompleted",
    "HabitMissed",
    "ProgressionEvent",
    "RankBonusAwarded",
    "parse_event",
    "ForgivenessGrant",
    "LevelInfo",
    "ProgressionResult",
    "XPDelta",
    "XPSource",
    "HabitSnapshot",
    "HabitStats",
    "ProgressionRecord",
]
