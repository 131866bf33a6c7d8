"""
Progression engine for habit tracking

This module implements the reward side of habit building:
- XP and leveling curve
- Forgiveness token ledger
- Achievement evaluation
- Personal, community and recovery challenges
- Event aggregation into a single progression record
"""

from habit_progression.gamification.xp_system import calculate_level_from_xp, calculate_level_info
from habit_progression.gamification.forgiveness import grants_available, use_token
from habit_progression.gamification.achievement_system import AchievementCatalog, evaluate, load_catalog
from habit_progression.gamification.challenges import (
    finalize_ranks,
    generate_recovery_challenge,
    join_challenge,
    update_progress,
)
from habit_progression.gamification.aggregator import ProgressionEngine, apply_event, compute_habit_stats

__all__ = [
    "calculate_level_from_xp",
    "calculate_level_info",
    "grants_available",
    "use_token",
    "AchievementCatalog",
    "evaluate",
    "load_catalog",
    "finalize_ranks",
    "generate_recovery_challenge",
    "join_challenge",
    "update_progress",
    "ProgressionEngine",
    "apply_event",
    "compute_habit_stats",
]
