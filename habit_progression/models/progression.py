"""Per-user progression state"""
from datetime import date, datetime
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from habit_progression.models.challenge import ChallengeParticipation, ParticipationStatus
from habit_progression.models.result import ForgivenessGrant


class HabitSnapshot(BaseModel):
    """Latest statistics reported for one habit"""

    model_config = ConfigDict(frozen=True)

    habit_id: str
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    total_completions: int = Field(default=0, ge=0)
    consistency_rate: float = Field(default=0.0, ge=0, le=100)
    last_activity_date: Optional[date] = None
    last_completed_date: Optional[date] = None


class HabitStats(BaseModel):
    """Statistics snapshot that requirement predicates are evaluated against"""

    model_config = ConfigDict(frozen=True)

    total_completions: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    consistency_rate: float = 0.0
    habits_tracked: int = 0
    challenges_completed: int = 0
    current_level: int = 1


class ProgressionRecord(BaseModel):
    """
    Aggregate progression state of a single user

    Immutable: every engine operation returns a new record. Only the
    aggregator produces new records; the owning service persists them.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    total_xp: int = Field(default=0, ge=0)
    current_level: int = Field(default=1, ge=1)
    forgiveness_tokens: int = Field(default=3, ge=0)
    token_cycle_start: datetime
    unlocked_achievement_ids: Tuple[str, ...] = ()
    forgiveness_grants: Tuple[ForgivenessGrant, ...] = ()
    habits: Dict[str, HabitSnapshot] = Field(default_factory=dict)
    participations: Tuple[ChallengeParticipation, ...] = ()
    last_perfect_day: Optional[date] = None  # latest day every tracked habit was completed
    processed_event_ids: FrozenSet[str] = frozenset()
    version: int = Field(default=0, ge=0)

    @classmethod
    def new(cls, user_id: str, now: datetime, tokens: int = 3) -> 'ProgressionRecord':
        """Fresh record with a full token allowance for the current month"""
        cycle_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return cls(user_id=user_id, forgiveness_tokens=tokens, token_cycle_start=cycle_start)

    @property
    def completed_challenges(self) -> int:
        return sum(1 for p in self.participations if p.status == ParticipationStatus.COMPLETED)

    def active_participation(self, challenge_id: str) -> Optional[ChallengeParticipation]:
        for participation in self.participations:
            if participation.challenge_id == challenge_id and participation.is_active:
                return participation
        return None

    def latest_participation(self, challenge_id: str) -> Optional[ChallengeParticipation]:
        matches = [p for p in self.participations if p.challenge_id == challenge_id]
        return matches[-1] if matches else None
