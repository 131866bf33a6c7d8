"""Single dispatch point for requirement predicates"""
from typing import Dict, Union

from habit_progression.models.progression import HabitStats
from habit_progression.models.requirements import (
    ChallengesCompleted,
    CompletionCount,
    ConsistencyRate,
    HabitsTracked,
    LevelReached,
    StreakLength,
)

Number = Union[int, float]


def current_value(requirement, stats: HabitStats) -> Number:
    """The statistic a requirement is measured against"""
    if isinstance(requirement, CompletionCount):
        return stats.total_completions
    if isinstance(requirement, StreakLength):
        return stats.current_streak
    if isinstance(requirement, ConsistencyRate):
        return stats.consistency_rate
    if isinstance(requirement, ChallengesCompleted):
        return stats.challenges_completed
    if isinstance(requirement, HabitsTracked):
        return stats.habits_tracked
    if isinstance(requirement, LevelReached):
        return stats.current_level
    raise TypeError(f"Unknown requirement type: {type(requirement).__name__}")


def is_satisfied(requirement, stats: HabitStats) -> bool:
    return current_value(requirement, stats) >= requirement.value


def requirement_progress(requirement, stats: HabitStats) -> Dict[str, Number]:
    """
    Progress toward a requirement

    Returns:
        {
            'current': int | float,
            'required': int | float,
            'percentage': int (0-100)
        }
    """
    current = current_value(requirement, stats)
    required = requirement.value
    percentage = min(100, int(current / required * 100)) if required > 0 else 0

    return {
        'current': current,
        'required': required,
        'percentage': percentage,
    }


def all_satisfied(requirements, stats: HabitStats) -> bool:
    """AND-combination of a requirement list"""
    return all(is_satisfied(r, stats) for r in requirements)


def combined_progress(requirements, stats: HabitStats) -> int:
    """Overall percentage of an AND-combined list: the least advanced requirement"""
    if not requirements:
        return 100
    return min(requirement_progress(r, stats)['percentage'] for r in requirements)
