"""Challenge models"""
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from habit_progression.models.requirements import ChallengeRequirement


class ChallengeType(str, Enum):
    """Challenge audience"""
    PERSONAL = "personal"
    COMMUNITY = "community"


class ParticipationStatus(str, Enum):
    """Lifecycle of a user's participation in a challenge"""
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class Challenge(BaseModel):
    """Time-boxed goal shared by its participants"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    icon: str = "🎯"
    challenge_type: ChallengeType = ChallengeType.PERSONAL
    requirements: Tuple[ChallengeRequirement, ...] = Field(min_length=1)
    duration_days: int = Field(gt=0)
    reward_xp: int = Field(ge=0)
    start_date: datetime
    end_date: datetime
    participants: FrozenSet[str] = frozenset()
    capacity: Optional[int] = Field(default=None, gt=0)
    is_recovery: bool = False
    habit_id: Optional[str] = None

    @model_validator(mode='after')
    def check_dates(self) -> 'Challenge':
        """End date must come after start date"""
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    def is_active_at(self, now: datetime) -> bool:
        return self.start_date <= now <= self.end_date

    def has_ended(self, now: datetime) -> bool:
        return now > self.end_date


class ChallengeParticipation(BaseModel):
    """
    A user's run at a challenge

    Requirements, reward and dates are copied from the challenge at join time
    so later admin edits never change an in-flight participant's terms.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    challenge_id: str
    challenge_type: ChallengeType
    requirements: Tuple[ChallengeRequirement, ...]
    reward_xp: int = Field(ge=0)
    start_date: datetime
    end_date: datetime
    joined_at: datetime
    status: ParticipationStatus = ParticipationStatus.ACTIVE
    progress: float = Field(default=0.0, ge=0, le=100)
    completed: bool = False
    completed_at: Optional[datetime] = None
    xp_awarded: int = Field(default=0, ge=0)
    baseline_completions: int = Field(default=0, ge=0)
    final_rank: Optional[int] = Field(default=None, ge=1)
    rank_bonus_xp: int = Field(default=0, ge=0)
    is_recovery: bool = False
    habit_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == ParticipationStatus.ACTIVE

    @property
    def total_xp_awarded(self) -> int:
        return self.xp_awarded + self.rank_bonus_xp
