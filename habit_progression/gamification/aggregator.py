"""
Progression Aggregator

Single entry point that applies a domain event to a progression record.

Processing order is fixed:
1. Route the event (ledger, challenge manager, habit statistics)
2. Recompute habit statistics
3. Evaluate achievements against the updated statistics
4. Sum XP deltas (habit + achievements + challenges + rank bonus)
5. Add the sum to total XP
6. Recompute the level, detect level-ups and collect level rewards

Records are immutable. apply_event either returns a new record and a
result, or raises; the input record is never partially updated.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from habit_progression.config import DEFAULT_CONFIG, ProgressionConfig
from habit_progression.exceptions import (
    ChallengeNotEndedError,
    DuplicateEventError,
    RecordNotFoundError,
    ValidationError,
)
from habit_progression.gamification import challenges, forgiveness
from habit_progression.gamification.achievement_system import DEFAULT_CATALOG, AchievementCatalog, evaluate
from habit_progression.gamification.xp_system import (
    calculate_level_from_xp,
    calculate_level_info,
    calculate_level_rewards,
    get_xp_for_habit_completion,
)
from habit_progression.models.achievement import Achievement
from habit_progression.models.challenge import Challenge, ChallengeParticipation, ChallengeType
from habit_progression.models.events import (
    ChallengeJoined,
    ChallengeLeft,
    ChallengeProgressUpdated,
    ForgivenessRequested,
    HabitCompleted,
    HabitMissed,
    ProgressionEvent,
    RankBonusAwarded,
)
from habit_progression.models.progression import HabitSnapshot, HabitStats, ProgressionRecord
from habit_progression.models.result import ForgivenessGrant, ProgressionResult, XPDelta, XPSource

logger = logging.getLogger(__name__)


def compute_habit_stats(record: ProgressionRecord, current_level: Optional[int] = None) -> HabitStats:
    """Aggregate statistics across all habits of a record"""
    habits = list(record.habits.values())
    consistency = round(sum(h.consistency_rate for h in habits) / len(habits), 2) if habits else 0.0

    return HabitStats(
        total_completions=sum(h.total_completions for h in habits),
        current_streak=max((h.current_streak for h in habits), default=0),
        longest_streak=max((h.longest_streak for h in habits), default=0),
        consistency_rate=consistency,
        habits_tracked=len(habits),
        challenges_completed=record.completed_challenges,
        current_level=current_level or record.current_level,
    )


def habit_specific_stats(record: ProgressionRecord, habit_id: str) -> HabitStats:
    """Statistics of a single habit (used by habit-scoped recovery challenges)"""
    habit = record.habits.get(habit_id) or HabitSnapshot(habit_id=habit_id)
    return HabitStats(
        total_completions=habit.total_completions,
        current_streak=habit.current_streak,
        longest_streak=habit.longest_streak,
        consistency_rate=habit.consistency_rate,
        habits_tracked=1,
        challenges_completed=record.completed_challenges,
        current_level=record.current_level,
    )


class _PendingChanges:
    """Working state accumulated while one event is processed"""

    def __init__(self, record: ProgressionRecord):
        self.record = record
        self.xp_deltas: List[XPDelta] = []
        self.token_delta = 0
        self.grant: Optional[ForgivenessGrant] = None
        self.participation_updates: List[ChallengeParticipation] = []
        self.created_challenges: List[Challenge] = []
        self.updated_challenges: List[Challenge] = []
        self.unlocked: List[Achievement] = []

    @property
    def xp_total(self) -> int:
        return sum(d.amount for d in self.xp_deltas)

    def add_xp(self, source: XPSource, amount: int, source_id: str, reason: str) -> None:
        if amount > 0:
            self.xp_deltas.append(XPDelta(source=source, amount=amount, source_id=source_id, reason=reason))

    def replace_participation(self, old: ChallengeParticipation, new: ChallengeParticipation) -> None:
        if old is new:
            return
        participations = tuple(new if p is old else p for p in self.record.participations)
        self.record = self.record.model_copy(update={"participations": participations})
        self.participation_updates = [p for p in self.participation_updates if p is not old]
        self.participation_updates.append(new)

    def add_participation(self, participation: ChallengeParticipation) -> None:
        self.record = self.record.model_copy(
            update={"participations": self.record.participations + (participation,)}
        )
        self.participation_updates.append(participation)


class ProgressionEngine:
    """
    Applies domain events to progression records

    Args:
        config: Tunable constants (level curve, token cap, rank bonuses, ...)
        catalog: Achievement catalog loaded at startup
    """

    def __init__(
        self,
        config: ProgressionConfig = DEFAULT_CONFIG,
        catalog: AchievementCatalog = DEFAULT_CATALOG
    ):
        self.config = config
        self.catalog = catalog
        self._handlers: Dict[type, Callable] = {
            HabitCompleted: self._on_habit_completed,
            HabitMissed: self._on_habit_missed,
            ChallengeProgressUpdated: self._on_challenge_progress,
            ForgivenessRequested: self._on_forgiveness_requested,
            ChallengeJoined: self._on_challenge_joined,
            ChallengeLeft: self._on_challenge_left,
            RankBonusAwarded: self._on_rank_bonus,
        }

    def apply_event(
        self,
        record: ProgressionRecord,
        event: ProgressionEvent
    ) -> Tuple[ProgressionRecord, ProgressionResult]:
        """
        Apply one event

        Returns:
            (new record, consolidated result)

        Raises:
            DuplicateEventError: event_id already applied to this record
            ValidationError: event belongs to another user, or the record exceeds the token cap
            ProgressionRuleError subclasses from the routed component
        """
        if event.user_id != record.user_id:
            raise ValidationError(
                f"Event for user {event.user_id} applied to record of {record.user_id}",
                field="user_id",
                value=event.user_id,
                user_id=record.user_id,
                operation="apply_event",
            )

        if record.forgiveness_tokens > self.config.max_forgiveness_tokens:
            raise ValidationError(
                f"Record holds {record.forgiveness_tokens} forgiveness tokens, "
                f"cap is {self.config.max_forgiveness_tokens}",
                field="forgiveness_tokens",
                value=record.forgiveness_tokens,
                user_id=record.user_id,
                operation="apply_event",
            )

        if event.event_id in record.processed_event_ids:
            raise DuplicateEventError(
                f"Event {event.event_id} already applied",
                user_id=record.user_id,
                operation="apply_event",
                context={"event_id": event.event_id, "event_type": event.event_type},
            )

        now = event.occurred_at
        old_total = record.total_xp
        old_level = calculate_level_from_xp(old_total, self.config)

        pending = _PendingChanges(record)
        self._expire_overdue(pending, now)

        # (1) route
        self._handlers[type(event)](pending, event)

        # (2) + (3) statistics and achievements; unlock rewards can lift the
        # level into another achievement, so evaluate until nothing new unlocks
        while True:
            level = calculate_level_from_xp(old_total + pending.xp_total, self.config)
            stats = compute_habit_stats(pending.record, current_level=level)
            pending.record, unlocked = evaluate(pending.record, stats, self.catalog)
            if not unlocked:
                break
            for achievement in unlocked:
                pending.unlocked.append(achievement)
                pending.add_xp(
                    XPSource.ACHIEVEMENT_UNLOCK, achievement.xp_reward, achievement.id,
                    f"Unlocked achievement: {achievement.name}",
                )

        # (4) + (5)
        xp_gained = pending.xp_total
        new_total = old_total + xp_gained

        # (6)
        level_info = calculate_level_info(new_total, self.config)
        new_level = level_info.current_level
        levels_gained = max(new_level - old_level, 0)
        rewards = calculate_level_rewards(old_level, new_level)

        new_record = pending.record.model_copy(update={
            "total_xp": new_total,
            "current_level": new_level,
            "processed_event_ids": pending.record.processed_event_ids | {event.event_id},
            "version": record.version + 1,
        })

        if levels_gained:
            logger.info(f"User {record.user_id} leveled up from {old_level} to {new_level}!")
        logger.info(
            f"Applied {event.event_type} {event.event_id} for user {record.user_id}: "
            f"+{xp_gained} XP, total {new_total}, level {new_level}"
        )

        result = ProgressionResult(
            event_id=event.event_id,
            user_id=record.user_id,
            xp_deltas=pending.xp_deltas,
            xp_gained=xp_gained,
            old_total_xp=old_total,
            new_total_xp=new_total,
            old_level=old_level,
            new_level=new_level,
            levels_gained=levels_gained,
            rewards=rewards,
            level_info=level_info,
            unlocked_achievements=pending.unlocked,
            token_delta=pending.token_delta,
            forgiveness_tokens=new_record.forgiveness_tokens,
            forgiveness_grant=pending.grant,
            participation_updates=pending.participation_updates,
            created_challenges=pending.created_challenges,
            updated_challenges=pending.updated_challenges,
        )
        return new_record, result

    # ============================================
    # Routing
    # ============================================

    def _expire_overdue(self, pending: _PendingChanges, now) -> None:
        for participation in pending.record.participations:
            pending.replace_participation(participation, challenges.expire_if_overdue(participation, now))

    def _check_active_challenges(self, pending: _PendingChanges, now) -> None:
        aggregate = compute_habit_stats(pending.record)
        for participation in pending.record.participations:
            if not participation.is_active:
                continue
            if participation.is_recovery and participation.habit_id:
                stats = habit_specific_stats(pending.record, participation.habit_id)
            else:
                stats = aggregate
            updated, xp = challenges.check_requirements(participation, stats, now)
            pending.replace_participation(participation, updated)
            pending.add_xp(
                XPSource.CHALLENGE_COMPLETION, xp, participation.challenge_id,
                f"Completed challenge: {participation.challenge_id}",
            )

    def _update_habit(self, pending: _PendingChanges, event, completed: bool) -> None:
        previous = pending.record.habits.get(event.habit_id)
        longest = max(previous.longest_streak if previous else 0, event.current_streak)
        last_completed = previous.last_completed_date if previous else None
        if completed and (last_completed is None or event.activity_date > last_completed):
            last_completed = event.activity_date
        snapshot = HabitSnapshot(
            habit_id=event.habit_id,
            current_streak=event.current_streak,
            longest_streak=longest,
            total_completions=event.total_completions,
            consistency_rate=event.consistency_rate,
            last_activity_date=event.activity_date,
            last_completed_date=last_completed,
        )
        pending.record = pending.record.model_copy(
            update={"habits": {**pending.record.habits, event.habit_id: snapshot}}
        )

    def _on_habit_completed(self, pending: _PendingChanges, event: HabitCompleted) -> None:
        self._update_habit(pending, event, completed=True)

        forgiven = any(
            g.habit_id == event.habit_id and g.forgiven_date == event.activity_date
            for g in pending.record.forgiveness_grants
        )
        if forgiven:
            logger.debug(f"Habit {event.habit_id} on {event.activity_date} was forgiven; no XP awarded")
        else:
            xp = get_xp_for_habit_completion(
                event.current_streak, self.config, base_xp=event.base_xp, multiplier=event.xp_multiplier
            )
            pending.add_xp(XPSource.HABIT_COMPLETION, xp, event.habit_id, "Habit completion")

        pending.record, added = forgiveness.award_perfect_day_token(
            pending.record, event.activity_date, event.occurred_at, self.config
        )
        pending.token_delta += added

        self._check_active_challenges(pending, event.occurred_at)

    def _on_habit_missed(self, pending: _PendingChanges, event: HabitMissed) -> None:
        self._update_habit(pending, event, completed=False)

        if challenges.has_active_recovery(pending.record.participations, event.habit_id):
            logger.debug(f"Habit {event.habit_id} already has an active recovery challenge")
            return

        challenge = challenges.generate_recovery_challenge(
            user_id=event.user_id,
            habit_id=event.habit_id,
            days_missed=event.days_missed,
            now=event.occurred_at,
            participations=pending.record.participations,
            habit_name=event.habit_name,
            config=self.config,
        )
        stats = habit_specific_stats(pending.record, event.habit_id)
        joined, participation = challenges.join_challenge(challenge, event.user_id, event.occurred_at, stats)
        pending.created_challenges.append(joined)
        pending.add_participation(participation)

    def _find_participation(self, pending: _PendingChanges, challenge_id: str, operation: str) -> ChallengeParticipation:
        participation = pending.record.active_participation(challenge_id) or pending.record.latest_participation(challenge_id)
        if participation is None:
            raise RecordNotFoundError(
                f"User {pending.record.user_id} is not participating in {challenge_id}",
                record_type="ChallengeParticipation",
                record_id=challenge_id,
                user_id=pending.record.user_id,
                operation=operation,
            )
        return participation

    def _on_challenge_progress(self, pending: _PendingChanges, event: ChallengeProgressUpdated) -> None:
        participation = self._find_participation(pending, event.challenge_id, "update_challenge_progress")

        if event.progress is not None:
            updated, xp = challenges.update_progress(participation, event.progress, event.occurred_at)
        else:
            if participation.is_recovery and participation.habit_id:
                stats = habit_specific_stats(pending.record, participation.habit_id)
            else:
                stats = compute_habit_stats(pending.record)
            updated, xp = challenges.check_requirements(participation, stats, event.occurred_at)

        pending.replace_participation(participation, updated)
        pending.add_xp(
            XPSource.CHALLENGE_COMPLETION, xp, event.challenge_id,
            f"Completed challenge: {event.challenge_id}",
        )

    def _on_forgiveness_requested(self, pending: _PendingChanges, event: ForgivenessRequested) -> None:
        pending.record, grant = forgiveness.use_token(
            pending.record, event.habit_id, event.missed_date, event.occurred_at, self.config
        )
        pending.grant = grant
        pending.token_delta -= 1

    def _on_challenge_joined(self, pending: _PendingChanges, event: ChallengeJoined) -> None:
        # a completed participation blocks rejoining even if later history exists
        existing = next(
            (p for p in pending.record.participations if p.challenge_id == event.challenge.id and p.completed),
            None,
        ) or pending.record.latest_participation(event.challenge.id)
        stats = compute_habit_stats(pending.record)
        updated_challenge, participation = challenges.join_challenge(
            event.challenge, event.user_id, event.occurred_at, stats, existing
        )
        pending.updated_challenges.append(updated_challenge)
        pending.add_participation(participation)

    def _on_challenge_left(self, pending: _PendingChanges, event: ChallengeLeft) -> None:
        participation = self._find_participation(pending, event.challenge_id, "leave_challenge")
        pending.replace_participation(participation, challenges.abandon(participation))

    def _on_rank_bonus(self, pending: _PendingChanges, event: RankBonusAwarded) -> None:
        participation = self._find_participation(pending, event.challenge_id, "award_rank_bonus")

        if participation.final_rank is not None:
            logger.debug(f"Rank for {event.challenge_id} already recorded for user {event.user_id}")
            return

        if participation.challenge_type != ChallengeType.COMMUNITY:
            raise ValidationError(
                f"Challenge {event.challenge_id} is not a community challenge",
                field="challenge_id",
                value=event.challenge_id,
                user_id=event.user_id,
                operation="award_rank_bonus",
            )

        if not participation.completed:
            raise ValidationError(
                f"Rank bonus for uncompleted participation in {event.challenge_id}",
                field="challenge_id",
                value=event.challenge_id,
                user_id=event.user_id,
                operation="award_rank_bonus",
            )

        if event.occurred_at <= participation.end_date:
            raise ChallengeNotEndedError(
                f"Challenge {event.challenge_id} ends at {participation.end_date.isoformat()}",
                user_id=event.user_id,
                operation="award_rank_bonus",
                context={"challenge_id": event.challenge_id},
            )

        bonus = challenges.rank_bonus_for(event.rank, participation.reward_xp, self.config)
        if event.bonus_xp != bonus:
            raise ValidationError(
                f"Rank {event.rank} in {event.challenge_id} is worth {bonus} XP, not {event.bonus_xp}",
                field="bonus_xp",
                value=event.bonus_xp,
                user_id=event.user_id,
                operation="award_rank_bonus",
            )

        updated = participation.model_copy(update={"final_rank": event.rank, "rank_bonus_xp": bonus})
        pending.replace_participation(participation, updated)
        pending.add_xp(
            XPSource.RANK_BONUS, bonus, event.challenge_id,
            f"Rank {event.rank} in challenge {event.challenge_id}",
        )


_default_engine = ProgressionEngine()


def apply_event(record: ProgressionRecord, event: ProgressionEvent) -> Tuple[ProgressionRecord, ProgressionResult]:
    """Apply an event with the default configuration and catalog"""
    return _default_engine.apply_event(record, event)
