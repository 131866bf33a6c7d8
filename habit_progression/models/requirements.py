"""Requirement predicates shared by achievements and challenges"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Requirement(BaseModel):
    model_config = ConfigDict(frozen=True)


class CompletionCount(_Requirement):
    """Total habit completions >= value"""
    kind: Literal["completion_count"] = "completion_count"
    value: int = Field(gt=0)


class StreakLength(_Requirement):
    """Current streak (days) >= value"""
    kind: Literal["streak_length"] = "streak_length"
    value: int = Field(gt=0)


class ConsistencyRate(_Requirement):
    """Completion rate over the last 30 days >= value percent"""
    kind: Literal["consistency_rate"] = "consistency_rate"
    value: float = Field(gt=0, le=100)


class ChallengesCompleted(_Requirement):
    """Number of completed challenges >= value"""
    kind: Literal["challenges_completed"] = "challenges_completed"
    value: int = Field(gt=0)


class HabitsTracked(_Requirement):
    """Number of distinct habits with recorded activity >= value"""
    kind: Literal["habits_tracked"] = "habits_tracked"
    value: int = Field(gt=0)


class LevelReached(_Requirement):
    """Current level >= value"""
    kind: Literal["level_reached"] = "level_reached"
    value: int = Field(gt=1)


Requirement = Annotated[
    Union[CompletionCount, StreakLength, ConsistencyRate, ChallengesCompleted, HabitsTracked, LevelReached],
    Field(discriminator="kind"),
]

# Challenge requirement lists only accept the habit-derived thresholds
ChallengeRequirement = Annotated[
    Union[CompletionCount, StreakLength, ConsistencyRate],
    Field(discriminator="kind"),
]
