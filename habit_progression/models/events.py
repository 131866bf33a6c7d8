"""
Domain events consumed by the progression aggregator

Every event carries a caller-supplied idempotency key (event_id). The
aggregator applies each key at most once per progression record.
"""
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from habit_progression.models.challenge import Challenge


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    occurred_at: datetime


class HabitCompleted(_Event):
    """A habit was completed; stats are the habit's values after this completion"""
    event_type: Literal["habit_completed"] = "habit_completed"
    habit_id: str
    activity_date: date
    current_streak: int = Field(ge=0)
    total_completions: int = Field(ge=0)
    consistency_rate: float = Field(ge=0, le=100)
    base_xp: Optional[int] = Field(default=None, ge=0)  # overrides the configured per-habit value
    xp_multiplier: float = Field(default=1.0, ge=1.0)


class HabitMissed(_Event):
    """A scheduled habit day passed without completion"""
    event_type: Literal["habit_missed"] = "habit_missed"
    habit_id: str
    activity_date: date
    days_missed: int = Field(ge=1)
    current_streak: int = Field(ge=0)
    total_completions: int = Field(ge=0)
    consistency_rate: float = Field(ge=0, le=100)
    habit_name: Optional[str] = None


class ChallengeProgressUpdated(_Event):
    """
    Progress report for a challenge participation

    With progress set, it is an explicit progress value (0-100). Without it,
    the challenge's requirements are re-checked against current statistics.
    """
    event_type: Literal["challenge_progress_updated"] = "challenge_progress_updated"
    challenge_id: str
    progress: Optional[float] = None


class ForgivenessRequested(_Event):
    """User asks to excuse a missed habit day with a forgiveness token"""
    event_type: Literal["forgiveness_requested"] = "forgiveness_requested"
    habit_id: str
    missed_date: datetime


class ChallengeJoined(_Event):
    """User joins a challenge; carries the challenge snapshot at join time"""
    event_type: Literal["challenge_joined"] = "challenge_joined"
    challenge: Challenge


class ChallengeLeft(_Event):
    """User leaves (abandons) a challenge"""
    event_type: Literal["challenge_left"] = "challenge_left"
    challenge_id: str


class RankBonusAwarded(_Event):
    """Rank bonus produced by finalizing a community challenge"""
    event_type: Literal["rank_bonus_awarded"] = "rank_bonus_awarded"
    challenge_id: str
    rank: int = Field(ge=1)
    bonus_xp: int = Field(ge=0)


ProgressionEvent = Annotated[
    Union[
        HabitCompleted,
        HabitMissed,
        ChallengeProgressUpdated,
        ForgivenessRequested,
        ChallengeJoined,
        ChallengeLeft,
        RankBonusAwarded,
    ],
    Field(discriminator="event_type"),
]

event_adapter: TypeAdapter = TypeAdapter(ProgressionEvent)


def parse_event(payload: Union[str, bytes, dict]) -> ProgressionEvent:
    """Parse a JSON string or dict into the matching event model"""
    if isinstance(payload, (str, bytes)):
        return event_adapter.validate_json(payload)
    return event_adapter.validate_python(payload)
