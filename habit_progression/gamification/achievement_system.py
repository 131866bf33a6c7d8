"""
Achievement System

Evaluates catalog achievements against a user's habit statistics:
- Streak (7, 30, 100 day streaks)
- Completion (total habit completions)
- Consistency (30-day completion rate)
- Challenge (completed challenges)
- Milestone (first completion, habits tracked, levels)

Features:
- Versioned, immutable catalog loaded once at startup
- Progress tracking for locked achievements
- Unlocks are one-way and never duplicated
- XP rewards for unlocking achievements
"""

import json
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import logging

from pydantic import BaseModel, ValidationError as PydanticValidationError

from habit_progression import config as app_config
from habit_progression.exceptions import ConfigurationError
from habit_progression.gamification.requirement_checks import is_satisfied, requirement_progress
from habit_progression.models.achievement import Achievement, AchievementCategory, AchievementRarity
from habit_progression.models.progression import HabitStats, ProgressionRecord
from habit_progression.models.requirements import (
    ChallengesCompleted,
    CompletionCount,
    ConsistencyRate,
    HabitsTracked,
    LevelReached,
    StreakLength,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_VERSION = "1"


# ============================================
# Built-in Achievement Catalog
# ============================================

DEFAULT_ACHIEVEMENTS: List[Achievement] = [
    # ========== MILESTONE ==========
    Achievement(
        id="first-habit",
        name="First Steps",
        description="Complete your first habit and start your journey",
        icon="🎯",
        rarity=AchievementRarity.COMMON,
        category=AchievementCategory.MILESTONE,
        requirement=CompletionCount(value=1),
        xp_reward=10,
        max_progress=1,
    ),
    Achievement(
        id="habit-creator",
        name="Habit Creator",
        description="Track 3 different habits",
        icon="🏗️",
        rarity=AchievementRarity.COMMON,
        category=AchievementCategory.MILESTONE,
        requirement=HabitsTracked(value=3),
        xp_reward=15,
        max_progress=3,
    ),
    Achievement(
        id="rising-star",
        name="Rising Star",
        description="Reach level 5 through consistent habit building",
        icon="⭐",
        rarity=AchievementRarity.RARE,
        category=AchievementCategory.MILESTONE,
        requirement=LevelReached(value=5),
        xp_reward=50,
        max_progress=5,
    ),
    Achievement(
        id="habit-master",
        name="Habit Master",
        description="Reach the prestigious level 10",
        icon="🏆",
        rarity=AchievementRarity.EPIC,
        category=AchievementCategory.MILESTONE,
        requirement=LevelReached(value=10),
        xp_reward=100,
        max_progress=10,
    ),

    # ========== STREAK ==========
    Achievement(
        id="week-warrior",
        name="Week Warrior",
        description="Maintain a 7-day streak with any habit",
        icon="🔥",
        rarity=AchievementRarity.RARE,
        category=AchievementCategory.STREAK,
        requirement=StreakLength(value=7),
        xp_reward=25,
        max_progress=7,
    ),
    Achievement(
        id="streak-master",
        name="Streak Master",
        description="Achieve a 30-day streak - true dedication!",
        icon="🚀",
        rarity=AchievementRarity.EPIC,
        category=AchievementCategory.STREAK,
        requirement=StreakLength(value=30),
        xp_reward=75,
        max_progress=30,
    ),
    Achievement(
        id="century-club",
        name="Century Club",
        description="The legendary 100-day streak achievement",
        icon="💯",
        rarity=AchievementRarity.LEGENDARY,
        category=AchievementCategory.STREAK,
        requirement=StreakLength(value=100),
        xp_reward=200,
        max_progress=100,
    ),

    # ========== COMPLETION ==========
    Achievement(
        id="habit-completionist",
        name="Habit Completionist",
        description="Complete 100 total habit instances",
        icon="✅",
        rarity=AchievementRarity.RARE,
        category=AchievementCategory.COMPLETION,
        requirement=CompletionCount(value=100),
        xp_reward=40,
        max_progress=100,
    ),
    Achievement(
        id="super-completionist",
        name="Super Completionist",
        description="Complete 500 total habit instances",
        icon="🎖️",
        rarity=AchievementRarity.EPIC,
        category=AchievementCategory.COMPLETION,
        requirement=CompletionCount(value=500),
        xp_reward=80,
        max_progress=500,
    ),

    # ========== CONSISTENCY ==========
    Achievement(
        id="consistency-king",
        name="Consistency King",
        description="Keep an 80% completion rate over the last 30 days",
        icon="👑",
        rarity=AchievementRarity.EPIC,
        category=AchievementCategory.CONSISTENCY,
        requirement=ConsistencyRate(value=80),
        xp_reward=60,
    ),

    # ========== CHALLENGE ==========
    Achievement(
        id="challenge-accepted",
        name="Challenge Accepted",
        description="Complete your first challenge",
        icon="🎯",
        rarity=AchievementRarity.COMMON,
        category=AchievementCategory.CHALLENGE,
        requirement=ChallengesCompleted(value=1),
        xp_reward=30,
        max_progress=1,
    ),
    Achievement(
        id="challenge-champion",
        name="Challenge Champion",
        description="Complete 5 different challenges",
        icon="🏅",
        rarity=AchievementRarity.EPIC,
        category=AchievementCategory.CHALLENGE,
        requirement=ChallengesCompleted(value=5),
        xp_reward=75,
        max_progress=5,
    ),
]


class _CatalogFile(BaseModel):
    version: str
    achievements: List[Achievement]


class AchievementCatalog:
    """
    Immutable, versioned lookup table of achievements

    Iteration order is a stable sort by id so evaluation is reproducible.
    """

    def __init__(self, achievements: Iterable[Achievement], version: str = DEFAULT_CATALOG_VERSION):
        ordered = tuple(sorted(achievements, key=lambda a: a.id))
        by_id = {}
        for achievement in ordered:
            if achievement.id in by_id:
                raise ConfigurationError(
                    f"Duplicate achievement id '{achievement.id}' in catalog version {version}",
                    config_key="ACHIEVEMENT_CATALOG_PATH",
                )
            by_id[achievement.id] = achievement

        self.version = version
        self._achievements = ordered
        self._by_id = MappingProxyType(by_id)

    @classmethod
    def from_json(cls, path: Path) -> 'AchievementCatalog':
        """
        Load a catalog file: {"version": "2", "achievements": [...]}

        Raises:
            ConfigurationError: If the file is unreadable or malformed
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            parsed = _CatalogFile.model_validate(raw)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            raise ConfigurationError(
                f"Failed to load achievement catalog from {path}: {e}",
                config_key="ACHIEVEMENT_CATALOG_PATH",
                cause=e,
            ) from e

        catalog = cls(parsed.achievements, version=parsed.version)
        logger.info(f"Loaded achievement catalog v{catalog.version} ({len(catalog)} achievements) from {path}")
        return catalog

    def get(self, achievement_id: str) -> Optional[Achievement]:
        return self._by_id.get(achievement_id)

    def __contains__(self, achievement_id: object) -> bool:
        return achievement_id in self._by_id

    def __iter__(self) -> Iterator[Achievement]:
        return iter(self._achievements)

    def __len__(self) -> int:
        return len(self._achievements)


DEFAULT_CATALOG = AchievementCatalog(DEFAULT_ACHIEVEMENTS)


def load_catalog(path: Optional[Path] = None) -> AchievementCatalog:
    """Catalog from `path`, else ACHIEVEMENT_CATALOG_PATH, else the built-in one"""
    path = path or app_config.ACHIEVEMENT_CATALOG_PATH
    if path is None:
        return DEFAULT_CATALOG
    return AchievementCatalog.from_json(path)


# ============================================
# Evaluation
# ============================================

def evaluate(
    record: ProgressionRecord,
    stats: HabitStats,
    catalog: AchievementCatalog = DEFAULT_CATALOG
) -> Tuple[ProgressionRecord, List[Achievement]]:
    """
    Unlock every achievement whose requirement is met and not yet unlocked

    Args:
        record: Current progression record (not modified)
        stats: Habit/streak statistics snapshot
        catalog: Achievement catalog

    Returns:
        (record with new ids appended to unlocked_achievement_ids,
         newly unlocked achievements in catalog order)
    """
    unlocked_ids = set(record.unlocked_achievement_ids)
    newly_unlocked = []

    for achievement in catalog:
        if achievement.id in unlocked_ids:
            continue

        if is_satisfied(achievement.requirement, stats):
            unlocked_ids.add(achievement.id)
            newly_unlocked.append(achievement)

            logger.info(
                f"User {record.user_id} unlocked achievement: {achievement.id} "
                f"({achievement.name}) +{achievement.xp_reward} XP"
            )

    if not newly_unlocked:
        return record, []

    updated = record.model_copy(update={
        "unlocked_achievement_ids": record.unlocked_achievement_ids + tuple(a.id for a in newly_unlocked),
    })
    return updated, newly_unlocked


def achievement_progress(achievement: Achievement, stats: HabitStats) -> Dict:
    """
    Calculate progress toward an achievement

    Progress is informational only; unlocking requires the full requirement.

    Returns:
        {
            'current': int | float,
            'required': int | float,
            'percentage': int,
            'description': str
        }
    """
    progress = requirement_progress(achievement.requirement, stats)
    current = progress['current']
    required = progress['required']

    if achievement.max_progress is not None:
        current = min(current, achievement.max_progress)
        required = achievement.max_progress

    return {
        'current': current,
        'required': required,
        'percentage': progress['percentage'],
        'description': f"{current}/{required}",
    }


def get_user_achievements(
    record: ProgressionRecord,
    stats: HabitStats,
    catalog: AchievementCatalog = DEFAULT_CATALOG,
    include_locked: bool = False
) -> Dict:
    """
    Get user's achievements with progress

    Returns:
        {
            'unlocked': [list of unlocked achievements],
            'locked': [list of locked achievements with progress] (if include_locked=True),
            'total_unlocked': int,
            'total_achievements': int,
            'total_xp_from_achievements': int
        }
    """
    unlocked = [catalog.get(aid) for aid in record.unlocked_achievement_ids if aid in catalog]

    result = {
        'unlocked': unlocked,
        'total_unlocked': len(unlocked),
        'total_achievements': len(catalog),
        'total_xp_from_achievements': sum(a.xp_reward for a in unlocked),
    }

    if include_locked:
        unlocked_ids = set(record.unlocked_achievement_ids)
        locked = [
            {'achievement': a, 'progress': achievement_progress(a, stats)}
            for a in catalog
            if a.id not in unlocked_ids
        ]
        # Closest to completion first
        locked.sort(key=lambda x: x['progress']['percentage'], reverse=True)
        result['locked'] = locked

    return result


def get_achievement_recommendations(
    record: ProgressionRecord,
    stats: HabitStats,
    catalog: AchievementCatalog = DEFAULT_CATALOG,
    limit: int = 3
) -> List[Dict]:
    """Locked achievements at >= 50% progress, closest first"""
    achievements_data = get_user_achievements(record, stats, catalog, include_locked=True)

    close_to_completion = [
        entry for entry in achievements_data['locked']
        if entry['progress']['percentage'] >= 50
    ]

    return close_to_completion[:limit]
