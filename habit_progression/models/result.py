"""Outputs of the progression engine"""
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from habit_progression.models.achievement import Achievement
from habit_progression.models.challenge import Challenge, ChallengeParticipation


class LevelInfo(BaseModel):
    """Position of a total XP value on the level curve"""

    model_config = ConfigDict(frozen=True)

    total_xp: int
    current_level: int
    xp_for_current_level: int   # cumulative XP where the current level starts
    xp_for_next_level: int      # cumulative XP where the next level starts
    xp_progress: int            # XP earned inside the current level
    progress_to_next_level: int = Field(ge=0, le=100)
    progress_percentage: float = Field(ge=0, le=100)
    title: str
    is_milestone: bool
    next_milestone: int


class XPSource(str, Enum):
    """Every XP change is attributable to exactly one of these"""
    HABIT_COMPLETION = "habit_completion"
    ACHIEVEMENT_UNLOCK = "achievement_unlock"
    CHALLENGE_COMPLETION = "challenge_completion"
    RANK_BONUS = "rank_bonus"


class XPDelta(BaseModel):
    """Single attributable XP award"""

    model_config = ConfigDict(frozen=True)

    source: XPSource
    amount: int = Field(ge=0)
    source_id: str
    reason: str = ""


class ForgivenessGrant(BaseModel):
    """
    Excuses one missed habit day

    Consumed by the habit/streak subsystem, which marks forgiven_date as
    completed for streak purposes. Forgiven days never earn XP.
    """

    model_config = ConfigDict(frozen=True)

    habit_id: str
    forgiven_date: date
    granted_at: datetime
    token_consumed: bool = True


class ProgressionResult(BaseModel):
    """Consolidated outcome of applying one event"""

    model_config = ConfigDict(frozen=True)

    event_id: str
    user_id: str
    xp_deltas: List[XPDelta] = Field(default_factory=list)
    xp_gained: int = 0
    old_total_xp: int
    new_total_xp: int
    old_level: int
    new_level: int
    levels_gained: int = 0
    rewards: List[str] = Field(default_factory=list)
    level_info: LevelInfo
    unlocked_achievements: List[Achievement] = Field(default_factory=list)
    token_delta: int = 0
    forgiveness_tokens: int
    forgiveness_grant: Optional[ForgivenessGrant] = None
    participation_updates: List[ChallengeParticipation] = Field(default_factory=list)
    created_challenges: List[Challenge] = Field(default_factory=list)
    updated_challenges: List[Challenge] = Field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.levels_gained > 0
