"""
XP and Leveling System

Pure level curve: maps cumulative XP to a level, progress inside the level
and milestone status.

Leveling Curve (defaults):
- Level n -> n+1 costs XP_BASE * XP_MULTIPLIER^(n-1), rounded to the nearest 10
- Level 1->2: 100 XP, 2->3: 120 XP, 3->4: 140 XP, 4->5: 170 XP, ...
- Every 5th level is a milestone

XP Award Rules:
- Habit completion: 10 XP (base) + 2 XP per streak day, bonus capped at 50
- Forgiven days: 0 XP
- Achievement unlocks: catalog xp_reward
- Challenge completion: challenge reward_xp (+ rank bonus for community challenges)
"""

import math
from typing import Dict, List, Optional, Tuple
import logging

from habit_progression.config import DEFAULT_CONFIG, ProgressionConfig
from habit_progression.models.result import LevelInfo

logger = logging.getLogger(__name__)

MILESTONE_INTERVAL = 5

# (minimum level, title), highest first
LEVEL_TITLES: List[Tuple[int, str]] = [
    (100, "Grandmaster"),
    (75, "Master"),
    (50, "Expert"),
    (25, "Advanced"),
    (10, "Intermediate"),
    (5, "Novice"),
    (1, "Beginner"),
]

LEVEL_COLORS: Dict[str, Dict[str, str]] = {
    "Grandmaster": {"name": "purple", "primary": "#8B5CF6", "secondary": "#7C3AED"},
    "Master": {"name": "yellow", "primary": "#F59E0B", "secondary": "#D97706"},
    "Expert": {"name": "red", "primary": "#EF4444", "secondary": "#DC2626"},
    "Advanced": {"name": "blue", "primary": "#3B82F6", "secondary": "#2563EB"},
    "Intermediate": {"name": "green", "primary": "#10B981", "secondary": "#059669"},
    "Novice": {"name": "orange", "primary": "#F97316", "secondary": "#EA580C"},
    "Beginner": {"name": "gray", "primary": "#6B7280", "secondary": "#4B5563"},
}


def _round_to(value: float, step: int) -> int:
    # Half-up rounding so 145 -> 150 regardless of float banker's rounding
    return int(math.floor(value / step + 0.5)) * step


def xp_for_level_increment(level: int, config: ProgressionConfig = DEFAULT_CONFIG) -> int:
    """XP needed to go from `level` to `level + 1` (always positive)"""
    raw = config.xp_base * (config.xp_multiplier ** (level - 1))
    return max(_round_to(raw, config.xp_rounding), 1)


def xp_threshold(level: int, config: ProgressionConfig = DEFAULT_CONFIG) -> int:
    """Cumulative XP at which `level` starts (level 1 starts at 0)"""
    return sum(xp_for_level_increment(n, config) for n in range(1, max(level, 1)))


def calculate_level_from_xp(total_xp: int, config: ProgressionConfig = DEFAULT_CONFIG) -> int:
    """Level reached with `total_xp` cumulative XP"""
    return calculate_level_info(total_xp, config).current_level


def calculate_level_info(total_xp: int, config: ProgressionConfig = DEFAULT_CONFIG) -> LevelInfo:
    """
    Calculate level and progress from total XP

    Negative XP is treated as zero.

    Returns:
        LevelInfo with current level, cumulative bounds of the level,
        integer and float progress percentages and milestone data
    """
    total_xp = max(total_xp, 0)

    level = 1
    accumulated = 0
    increment = xp_for_level_increment(level, config)

    while total_xp >= accumulated + increment:
        accumulated += increment
        level += 1
        increment = xp_for_level_increment(level, config)

    xp_progress = total_xp - accumulated
    progress_percentage = min(xp_progress / increment * 100, 100.0)

    return LevelInfo(
        total_xp=total_xp,
        current_level=level,
        xp_for_current_level=accumulated,
        xp_for_next_level=accumulated + increment,
        xp_progress=xp_progress,
        progress_to_next_level=min(int(round(progress_percentage)), 100),
        progress_percentage=progress_percentage,
        title=get_level_title(level),
        is_milestone=is_milestone_level(level),
        next_milestone=next_milestone(level),
    )


def is_milestone_level(level: int) -> bool:
    return level % MILESTONE_INTERVAL == 0


def next_milestone(level: int) -> int:
    """Next milestone strictly above `level` (level + 5 when already on one)"""
    return level + (MILESTONE_INTERVAL - level % MILESTONE_INTERVAL)


def get_level_title(level: int) -> str:
    for min_level, title in LEVEL_TITLES:
        if level >= min_level:
            return title
    return LEVEL_TITLES[-1][1]


def get_level_color(level: int) -> Dict[str, str]:
    return dict(LEVEL_COLORS[get_level_title(level)])


def format_xp(xp: int) -> str:
    """Compact XP display: 950, 1.2K, 3.4M"""
    if xp >= 1_000_000:
        return f"{xp / 1_000_000:.1f}M"
    if xp >= 1_000:
        return f"{xp / 1_000:.1f}K"
    return str(xp)


def get_level_reward(level: int) -> str:
    """Cosmetic reward unlocked on reaching `level`"""
    if is_milestone_level(level):
        return f"{get_level_title(level)} milestone badge (level {level})"
    color = LEVEL_COLORS[get_level_title(level)]["name"]
    return f"Level {level} {color} profile frame"


def calculate_level_rewards(old_level: int, new_level: int) -> List[str]:
    """Rewards for every level gained between old_level (exclusive) and new_level (inclusive)"""
    return [get_level_reward(level) for level in range(old_level + 1, new_level + 1)]


def get_xp_for_habit_completion(
    streak_length: int,
    config: ProgressionConfig = DEFAULT_CONFIG,
    base_xp: Optional[int] = None,
    multiplier: float = 1.0
) -> int:
    """
    XP for completing a habit

    Args:
        streak_length: Streak after this completion
        base_xp: Per-habit value, defaults to the configured HABIT_BASE_XP
        multiplier: Optional boost (>= 1) applied on top of base + streak bonus

    Returns:
        XP amount to award
    """
    base = config.habit_base_xp if base_xp is None else base_xp
    streak_bonus = min(max(streak_length, 0) * config.streak_bonus_per_day, config.streak_bonus_cap)
    multiplier_bonus = math.floor((base + streak_bonus) * (multiplier - 1))
    return base + streak_bonus + multiplier_bonus
