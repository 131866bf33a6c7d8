"""
Challenge System

Lifecycle of personal, community and recovery challenges.

Participation state machine:
- not joined -> active      join_challenge
- active -> active          update_progress / check_requirements (progress never decreases)
- active -> completed       progress reaches 100 or all requirements are met; reward paid once
- active -> abandoned       abandon / leave_challenge (one-way, never pays out)
- active -> expired         deadline passed without completion

Community challenges rank completed participants by completion time once the
challenge has ended. Rank 1 earns +50% of the reward, rank 2 +30%, rank 3 +20%.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from habit_progression.config import DEFAULT_CONFIG, ProgressionConfig
from habit_progression.exceptions import (
    AlreadyFullError,
    AlreadyJoinedError,
    ChallengeEndedError,
    ChallengeNotEndedError,
    InvalidProgressError,
    ParticipationNotActiveError,
    RecordNotFoundError,
    RecoveryChallengeAlreadyActiveError,
    ValidationError,
)
from habit_progression.gamification.requirement_checks import all_satisfied, combined_progress
from habit_progression.models.challenge import (
    Challenge,
    ChallengeParticipation,
    ChallengeType,
    ParticipationStatus,
)
from habit_progression.models.events import RankBonusAwarded
from habit_progression.models.progression import HabitStats
from habit_progression.models.requirements import CompletionCount, StreakLength

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengeTemplate:
    """Reusable challenge definition, materialized with concrete dates"""
    id: str
    title: str
    description: str
    requirements: Tuple
    duration_days: int
    reward_xp: int
    icon: str = "🎯"
    challenge_type: ChallengeType = ChallengeType.PERSONAL
    capacity: Optional[int] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)


# ============================================
# Pre-Built Challenge Library
# ============================================

CHALLENGE_LIBRARY: List[ChallengeTemplate] = [
    ChallengeTemplate(
        id="new-habit-challenge",
        title="New Habit Challenge",
        description="Create and maintain a new habit for 14 days",
        requirements=(StreakLength(value=14),),
        duration_days=14,
        reward_xp=75,
        icon="🎯",
        tags=("streak", "beginner"),
    ),
    ChallengeTemplate(
        id="perfect-week",
        title="Perfect Week",
        description="Complete all your habits for 7 consecutive days",
        requirements=(CompletionCount(value=7),),
        duration_days=7,
        reward_xp=100,
        icon="⭐",
        tags=("completion", "consistency"),
    ),
    ChallengeTemplate(
        id="7-day-streak-challenge",
        title="7-Day Streak Challenge",
        description="Build a 7-day streak with any habit",
        requirements=(StreakLength(value=7),),
        duration_days=7,
        reward_xp=50,
        icon="🔥",
        tags=("streak",),
    ),
]


def get_all_templates() -> List[ChallengeTemplate]:
    return CHALLENGE_LIBRARY.copy()


def get_template_by_id(template_id: str) -> Optional[ChallengeTemplate]:
    for template in CHALLENGE_LIBRARY:
        if template.id == template_id:
            return template
    return None


def create_challenge_from_template(
    template_id: str,
    start_date: datetime,
    challenge_id: Optional[str] = None,
    challenge_type: Optional[ChallengeType] = None,
    capacity: Optional[int] = None
) -> Challenge:
    """
    Materialize a library template as a dated challenge

    Raises:
        RecordNotFoundError: Unknown template id
    """
    template = get_template_by_id(template_id)
    if template is None:
        raise RecordNotFoundError(
            f"Challenge template '{template_id}' not found",
            record_type="ChallengeTemplate",
            record_id=template_id,
        )

    return Challenge(
        id=challenge_id or f"{template.id}-{start_date:%Y%m%d}",
        title=template.title,
        description=template.description,
        icon=template.icon,
        challenge_type=challenge_type or template.challenge_type,
        requirements=template.requirements,
        duration_days=template.duration_days,
        reward_xp=template.reward_xp,
        start_date=start_date,
        end_date=start_date + timedelta(days=template.duration_days),
        capacity=capacity if capacity is not None else template.capacity,
    )


def edit_challenge(
    challenge: Challenge,
    title: Optional[str] = None,
    description: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> Challenge:
    """
    Admin edit of presentation fields and dates

    Existing participations keep the dates and terms copied at join time.
    """
    updates = {}
    if title is not None:
        updates["title"] = title
    if description is not None:
        updates["description"] = description
    if start_date is not None:
        updates["start_date"] = start_date
    if end_date is not None:
        updates["end_date"] = end_date

    # Re-validate through the model so date ordering is enforced
    return Challenge.model_validate({**challenge.model_dump(), **updates})


# ============================================
# Participation Lifecycle
# ============================================

def join_challenge(
    challenge: Challenge,
    user_id: str,
    now: datetime,
    stats: Optional[HabitStats] = None,
    existing: Optional[ChallengeParticipation] = None
) -> Tuple[Challenge, ChallengeParticipation]:
    """
    Join a challenge

    Args:
        challenge: Challenge to join
        user_id: Joining user
        now: Time of the join
        stats: User's statistics at join time (completion baseline)
        existing: User's latest participation in this challenge, if any

    Returns:
        (challenge with the user added to participants, new participation)

    Raises:
        ChallengeEndedError: now is after the challenge end date
        AlreadyJoinedError: user already has an active or completed participation
        AlreadyFullError: capacity reached
    """
    context = {"challenge_id": challenge.id}

    if challenge.has_ended(now):
        raise ChallengeEndedError(
            f"Challenge {challenge.id} ended at {challenge.end_date.isoformat()}",
            user_id=user_id, operation="join_challenge", context=context,
        )

    if existing is not None and existing.is_active:
        raise AlreadyJoinedError(
            f"User {user_id} already participating in {challenge.id}",
            user_id=user_id, operation="join_challenge", context=context,
        )

    if existing is not None and existing.completed:
        raise AlreadyJoinedError(
            f"User {user_id} already completed {challenge.id}",
            user_id=user_id, operation="join_challenge", context=context,
        )

    if (
        challenge.capacity is not None
        and user_id not in challenge.participants
        and len(challenge.participants) >= challenge.capacity
    ):
        raise AlreadyFullError(
            f"Challenge {challenge.id} is full ({challenge.capacity} participants)",
            user_id=user_id, operation="join_challenge", context=context,
        )

    participation = ChallengeParticipation(
        user_id=user_id,
        challenge_id=challenge.id,
        challenge_type=challenge.challenge_type,
        requirements=challenge.requirements,
        reward_xp=challenge.reward_xp,
        start_date=challenge.start_date,
        end_date=challenge.end_date,
        joined_at=now,
        baseline_completions=stats.total_completions if stats else 0,
        is_recovery=challenge.is_recovery,
        habit_id=challenge.habit_id,
    )
    updated_challenge = challenge.model_copy(update={"participants": challenge.participants | {user_id}})

    logger.info(f"User {user_id} joined challenge '{challenge.id}'")
    return updated_challenge, participation


def _ensure_open(participation: ChallengeParticipation, now: datetime, operation: str) -> None:
    context = {"challenge_id": participation.challenge_id, "status": participation.status.value}

    if not participation.is_active:
        raise ParticipationNotActiveError(
            f"Participation in {participation.challenge_id} is {participation.status.value}",
            user_id=participation.user_id, operation=operation, context=context,
        )

    if now > participation.end_date:
        raise ChallengeEndedError(
            f"Participation deadline for {participation.challenge_id} passed",
            user_id=participation.user_id, operation=operation, context=context,
        )


def complete_participation(
    participation: ChallengeParticipation,
    now: datetime
) -> Tuple[ChallengeParticipation, int]:
    """
    Mark a participation completed and pay its reward

    Returns:
        (participation, XP awarded by this call; 0 if it was already completed)
    """
    if participation.completed:
        logger.debug(f"Participation {participation.user_id}/{participation.challenge_id} already completed")
        return participation, 0

    completed = participation.model_copy(update={
        "status": ParticipationStatus.COMPLETED,
        "completed": True,
        "completed_at": now,
        "progress": 100.0,
        "xp_awarded": participation.reward_xp,
    })

    logger.info(
        f"User {participation.user_id} completed challenge '{participation.challenge_id}' "
        f"+{participation.reward_xp} XP"
    )
    return completed, participation.reward_xp


def update_progress(
    participation: ChallengeParticipation,
    new_progress: float,
    now: datetime
) -> Tuple[ChallengeParticipation, int]:
    """
    Record explicit progress (0-100); values above 100 are clamped

    Returns:
        (updated participation, XP awarded by this call)

    Raises:
        ParticipationNotActiveError: participation abandoned or expired
        ChallengeEndedError: participant's deadline has passed
        InvalidProgressError: negative, NaN or decreasing progress
    """
    if participation.completed:
        return participation, 0

    _ensure_open(participation, now, "update_challenge_progress")

    context = {"challenge_id": participation.challenge_id, "progress": new_progress}
    if math.isnan(new_progress) or new_progress < 0:
        raise InvalidProgressError(
            f"Progress {new_progress} is out of range",
            user_id=participation.user_id, operation="update_challenge_progress", context=context,
        )

    clamped = min(float(new_progress), 100.0)
    if clamped < participation.progress:
        raise InvalidProgressError(
            f"Progress cannot decrease from {participation.progress} to {clamped}",
            user_id=participation.user_id, operation="update_challenge_progress", context=context,
        )

    updated = participation.model_copy(update={"progress": clamped})
    if clamped >= 100:
        return complete_participation(updated, now)

    return updated, 0


def check_requirements(
    participation: ChallengeParticipation,
    stats: HabitStats,
    now: datetime
) -> Tuple[ChallengeParticipation, int]:
    """
    Re-derive progress from statistics and complete when every requirement holds

    Completion counts only include completions made after joining.

    Returns:
        (updated participation, XP awarded by this call)
    """
    if participation.completed:
        return participation, 0

    _ensure_open(participation, now, "check_challenge_requirements")

    adjusted = stats.model_copy(update={
        "total_completions": max(stats.total_completions - participation.baseline_completions, 0),
    })

    if all_satisfied(participation.requirements, adjusted):
        return complete_participation(participation, now)

    derived = float(combined_progress(participation.requirements, adjusted))
    if derived <= participation.progress:
        return participation, 0

    return participation.model_copy(update={"progress": min(derived, 99.0)}), 0


def abandon(participation: ChallengeParticipation) -> ChallengeParticipation:
    """
    Abandon an active participation (one-way)

    Raises:
        ParticipationNotActiveError: participation already completed or expired
    """
    if participation.status == ParticipationStatus.ABANDONED:
        return participation

    if not participation.is_active:
        raise ParticipationNotActiveError(
            f"Cannot abandon a {participation.status.value} participation",
            user_id=participation.user_id,
            operation="abandon_challenge",
            context={"challenge_id": participation.challenge_id},
        )

    logger.info(f"User {participation.user_id} abandoned challenge '{participation.challenge_id}'")
    return participation.model_copy(update={"status": ParticipationStatus.ABANDONED})


def leave_challenge(
    challenge: Challenge,
    participation: ChallengeParticipation
) -> Tuple[Challenge, ChallengeParticipation]:
    """Abandon the participation and drop the user from the challenge roster"""
    abandoned = abandon(participation)
    updated_challenge = challenge.model_copy(
        update={"participants": challenge.participants - {participation.user_id}}
    )
    return updated_challenge, abandoned


def expire_if_overdue(participation: ChallengeParticipation, now: datetime) -> ChallengeParticipation:
    """Active participations past their deadline become expired (no reward)"""
    if participation.is_active and now > participation.end_date:
        logger.info(f"Participation {participation.user_id}/{participation.challenge_id} expired")
        return participation.model_copy(update={"status": ParticipationStatus.EXPIRED})
    return participation


# ============================================
# Community Ranking
# ============================================

def rank_bonus_for(rank: int, reward_xp: int, config: ProgressionConfig = DEFAULT_CONFIG) -> int:
    """Bonus XP for a finishing rank (ranks beyond the configured table earn 0)"""
    if rank < 1 or rank > len(config.rank_bonus_percentages):
        return 0
    return reward_xp * config.rank_bonus_percentages[rank - 1] // 100


def finalize_ranks(
    challenge: Challenge,
    participations: Sequence[ChallengeParticipation],
    now: datetime,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> Tuple[List[ChallengeParticipation], List[RankBonusAwarded]]:
    """
    Single idempotent ranking pass over all participations of an ended challenge

    Completed participants are ranked by completion time (ties by user id).
    Still-active participations are expired. A challenge that already carries
    final ranks is returned unchanged with no bonus events.

    Returns:
        (participations in input order, one RankBonusAwarded event per ranked user)

    Raises:
        ChallengeNotEndedError: now is not after the challenge end date
    """
    if not challenge.has_ended(now):
        raise ChallengeNotEndedError(
            f"Challenge {challenge.id} ends at {challenge.end_date.isoformat()}",
            operation="finalize_challenge_ranks",
            context={"challenge_id": challenge.id},
        )

    own = [p for p in participations if p.challenge_id == challenge.id]
    finalized = [expire_if_overdue(p, now) for p in participations]

    if challenge.challenge_type != ChallengeType.COMMUNITY:
        return finalized, []

    if any(p.final_rank is not None for p in own):
        logger.debug(f"Challenge {challenge.id} ranks already finalized")
        return finalized, []

    # one rank slot per user: their earliest completion
    first_completion = {}
    for index, participation in enumerate(participations):
        if participation.challenge_id != challenge.id or participation.status != ParticipationStatus.COMPLETED:
            continue
        current = first_completion.get(participation.user_id)
        if current is None or participation.completed_at < participations[current].completed_at:
            first_completion[participation.user_id] = index

    ranked_order = sorted(
        first_completion.values(),
        key=lambda i: (participations[i].completed_at, participations[i].user_id),
    )

    result = list(finalized)
    events = []
    for rank, index in enumerate(ranked_order, start=1):
        participation = participations[index]
        bonus = rank_bonus_for(rank, participation.reward_xp, config)
        result[index] = participation.model_copy(update={"final_rank": rank, "rank_bonus_xp": bonus})
        events.append(RankBonusAwarded(
            event_id=f"rank-bonus:{challenge.id}:{participation.user_id}",
            user_id=participation.user_id,
            occurred_at=now,
            challenge_id=challenge.id,
            rank=rank,
            bonus_xp=bonus,
        ))

    logger.info(f"Finalized ranks for challenge {challenge.id}: {len(ranked_order)} ranked participants")
    return result, events


# ============================================
# Recovery Challenges
# ============================================

def recovery_terms(days_missed: int, config: ProgressionConfig = DEFAULT_CONFIG) -> Tuple[int, int]:
    """
    Duration and reward for a recovery challenge

    Both grow linearly with the number of missed days and are capped.

    Returns:
        (duration_days, reward_xp)
    """
    extra = max(days_missed - 1, 0)
    duration = min(config.recovery_base_days + config.recovery_days_per_miss * extra, config.recovery_max_days)
    reward = min(config.recovery_base_xp + config.recovery_xp_per_miss * extra, config.recovery_max_xp)
    return duration, reward


def has_active_recovery(participations: Iterable[ChallengeParticipation], habit_id: str) -> bool:
    return any(p.is_recovery and p.habit_id == habit_id and p.is_active for p in participations)


def generate_recovery_challenge(
    user_id: str,
    habit_id: str,
    days_missed: int,
    now: datetime,
    participations: Iterable[ChallengeParticipation] = (),
    habit_name: Optional[str] = None,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> Challenge:
    """
    Build a personal recovery challenge after missed days

    Raises:
        ValidationError: days_missed < 1
        RecoveryChallengeAlreadyActiveError: habit already has an active recovery challenge
    """
    if days_missed < 1:
        raise ValidationError(
            "days_missed must be at least 1",
            field="days_missed",
            value=days_missed,
            user_id=user_id,
            operation="generate_recovery_challenge",
        )

    if has_active_recovery(participations, habit_id):
        raise RecoveryChallengeAlreadyActiveError(
            f"Habit {habit_id} already has an active recovery challenge",
            user_id=user_id,
            operation="generate_recovery_challenge",
            context={"habit_id": habit_id},
        )

    duration, reward = recovery_terms(days_missed, config)
    name = habit_name or "Habit"

    challenge = Challenge(
        id=f"recovery-{habit_id}-{now:%Y%m%d%H%M%S}",
        title=f"{name} Recovery Sprint",
        description=f"Complete {name} for {duration} consecutive days to get back on track",
        icon="💪",
        challenge_type=ChallengeType.PERSONAL,
        requirements=(StreakLength(value=duration),),
        duration_days=duration,
        reward_xp=reward,
        start_date=now,
        end_date=now + timedelta(days=duration),
        is_recovery=True,
        habit_id=habit_id,
    )

    logger.info(
        f"Generated recovery challenge {challenge.id} for user {user_id}: "
        f"{duration} days, {reward} XP after {days_missed} missed day(s)"
    )
    return challenge
