"""Achievement models for gamification"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from habit_progression.models.requirements import Requirement


class AchievementCategory(str, Enum):
    """Achievement categories"""
    STREAK = "streak"
    COMPLETION = "completion"
    CONSISTENCY = "consistency"
    CHALLENGE = "challenge"
    MILESTONE = "milestone"


class AchievementRarity(str, Enum):
    """Achievement rarity levels"""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class Achievement(BaseModel):
    """Achievement catalog entry (immutable, shared by all users)"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    description: str
    icon: str = "🏆"
    rarity: AchievementRarity
    category: AchievementCategory
    requirement: Requirement
    xp_reward: int = Field(gt=0)
    max_progress: Optional[int] = Field(default=None, gt=0)
