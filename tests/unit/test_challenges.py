"""Unit tests for the Challenge System (habit_progression/gamification/challenges.py)"""
from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

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
from habit_progression.gamification.challenges import (
    abandon,
    check_requirements,
    complete_participation,
    create_challenge_from_template,
    edit_challenge,
    expire_if_overdue,
    finalize_ranks,
    generate_recovery_challenge,
    get_all_templates,
    join_challenge,
    leave_challenge,
    rank_bonus_for,
    recovery_terms,
    update_progress,
)
from habit_progression.models.challenge import ChallengeType, ParticipationStatus
from habit_progression.models.progression import HabitStats
from habit_progression.models.requirements import CompletionCount, StreakLength


# ============================================================================
# Template Tests
# ============================================================================

def test_challenge_library():
    ids = {t.id for t in get_all_templates()}
    assert ids == {"new-habit-challenge", "perfect-week", "7-day-streak-challenge"}


def test_create_challenge_from_template(now):
    challenge = create_challenge_from_template("perfect-week", now)

    assert challenge.id == "perfect-week-20260310"
    assert challenge.reward_xp == 100
    assert challenge.requirements == (CompletionCount(value=7),)
    assert challenge.end_date == now + timedelta(days=7)
    assert challenge.challenge_type == ChallengeType.PERSONAL


def test_create_community_challenge_from_template(now):
    challenge = create_challenge_from_template(
        "7-day-streak-challenge", now, challenge_id="march-streak",
        challenge_type=ChallengeType.COMMUNITY, capacity=10,
    )

    assert challenge.id == "march-streak"
    assert challenge.challenge_type == ChallengeType.COMMUNITY
    assert challenge.capacity == 10


def test_create_challenge_unknown_template(now):
    with pytest.raises(RecordNotFoundError):
        create_challenge_from_template("does-not-exist", now)


# ============================================================================
# Join Tests
# ============================================================================

def test_join_challenge(challenge_factory, test_user_id, now):
    challenge = challenge_factory()

    updated, participation = join_challenge(challenge, test_user_id, now, HabitStats(total_completions=4))

    assert test_user_id in updated.participants
    assert test_user_id not in challenge.participants
    assert participation.progress == 0
    assert participation.completed is False
    assert participation.status == ParticipationStatus.ACTIVE
    assert participation.start_date == challenge.start_date
    assert participation.end_date == challenge.end_date
    assert participation.baseline_completions == 4


def test_join_ended_challenge(challenge_factory, test_user_id):
    challenge = challenge_factory()

    with pytest.raises(ChallengeEndedError):
        join_challenge(challenge, test_user_id, challenge.end_date + timedelta(seconds=1))


def test_join_full_challenge(challenge_factory, test_user_id, now):
    challenge = challenge_factory(capacity=1).model_copy(update={"participants": frozenset({"someone-else"})})

    with pytest.raises(AlreadyFullError):
        join_challenge(challenge, test_user_id, now)


def test_join_twice(challenge_factory, test_user_id, now):
    challenge, participation = join_challenge(challenge_factory(), test_user_id, now)

    with pytest.raises(AlreadyJoinedError):
        join_challenge(challenge, test_user_id, now, existing=participation)


def test_rejoin_after_completion_rejected(challenge_factory, test_user_id, now):
    challenge, participation = join_challenge(challenge_factory(), test_user_id, now)
    completed, _ = complete_participation(participation, now)

    with pytest.raises(AlreadyJoinedError):
        join_challenge(challenge, test_user_id, now, existing=completed)


def test_rejoin_after_abandon(challenge_factory, test_user_id, now):
    challenge, participation = join_challenge(challenge_factory(), test_user_id, now)
    challenge, abandoned = leave_challenge(challenge, participation)

    _, rejoined = join_challenge(challenge, test_user_id, now, existing=abandoned)

    assert rejoined.is_active


# ============================================================================
# Progress Tests
# ============================================================================

@pytest.fixture
def participation(challenge_factory, test_user_id, now):
    _, participation = join_challenge(challenge_factory(), test_user_id, now)
    return participation


def test_update_progress(participation, now):
    updated, xp = update_progress(participation, 40, now)

    assert updated.progress == 40
    assert xp == 0
    assert participation.progress == 0


def test_progress_cannot_decrease(participation, now):
    updated, _ = update_progress(participation, 40, now)

    with pytest.raises(InvalidProgressError):
        update_progress(updated, 30, now)


@pytest.mark.parametrize("value", [-1, float("nan")])
def test_progress_out_of_range(participation, now, value):
    with pytest.raises(InvalidProgressError):
        update_progress(participation, value, now)


def test_progress_clamped_and_completes(participation, now):
    completed, xp = update_progress(participation, 150, now)

    assert completed.progress == 100
    assert completed.completed is True
    assert completed.status == ParticipationStatus.COMPLETED
    assert completed.completed_at == now
    assert xp == 100


def test_completion_reward_paid_once(participation, now):
    completed, xp = update_progress(participation, 100, now)
    again, xp_again = update_progress(completed, 100, now + timedelta(minutes=1))
    recheck, xp_recheck = check_requirements(completed, HabitStats(total_completions=50), now)

    assert xp == 100
    assert xp_again == 0 and xp_recheck == 0
    assert again is completed and recheck is completed


def test_progress_after_deadline(participation):
    with pytest.raises(ChallengeEndedError):
        update_progress(participation, 50, participation.end_date + timedelta(hours=1))


def test_complete_participation_is_idempotent(participation, now):
    completed, xp = complete_participation(participation, now)
    again, xp_again = complete_participation(completed, now)

    assert xp == 100
    assert xp_again == 0
    assert again.xp_awarded == 100


# ============================================================================
# Requirement Check Tests
# ============================================================================

def test_requirements_count_completions_after_join(challenge_factory, test_user_id, now):
    _, participation = join_challenge(challenge_factory(), test_user_id, now, HabitStats(total_completions=2))

    partial, xp = check_requirements(participation, HabitStats(total_completions=4), now)
    assert xp == 0
    assert partial.progress == 66

    done, xp = check_requirements(partial, HabitStats(total_completions=5), now)
    assert done.completed
    assert xp == 100


def test_requirements_are_and_combined(challenge_factory, test_user_id, now):
    challenge = challenge_factory(requirements=(CompletionCount(value=3), StreakLength(value=5)))
    _, participation = join_challenge(challenge, test_user_id, now)

    partial, xp = check_requirements(participation, HabitStats(total_completions=3, current_streak=2), now)

    assert xp == 0
    assert not partial.completed
    assert partial.progress == 40

    done, xp = check_requirements(partial, HabitStats(total_completions=3, current_streak=5), now)
    assert done.completed
    assert xp == 100


def test_derived_progress_never_moves_backwards(participation, now):
    advanced, _ = update_progress(participation, 80, now)
    rechecked, _ = check_requirements(advanced, HabitStats(total_completions=1), now)

    assert rechecked.progress == 80


# ============================================================================
# Abandon / Expiry Tests
# ============================================================================

def test_abandon_is_one_way(participation, now):
    abandoned = abandon(participation)

    assert abandoned.status == ParticipationStatus.ABANDONED
    assert abandon(abandoned) is abandoned

    with pytest.raises(ParticipationNotActiveError):
        check_requirements(abandoned, HabitStats(total_completions=100), now)
    with pytest.raises(ParticipationNotActiveError):
        update_progress(abandoned, 100, now)


def test_cannot_abandon_completed(participation, now):
    completed, _ = complete_participation(participation, now)

    with pytest.raises(ParticipationNotActiveError):
        abandon(completed)


def test_leave_challenge_removes_participant(challenge_factory, test_user_id, now):
    challenge, participation = join_challenge(challenge_factory(), test_user_id, now)

    updated, abandoned = leave_challenge(challenge, participation)

    assert test_user_id not in updated.participants
    assert abandoned.status == ParticipationStatus.ABANDONED


def test_expire_if_overdue(participation, now):
    assert expire_if_overdue(participation, now) is participation

    expired = expire_if_overdue(participation, participation.end_date + timedelta(seconds=1))
    assert expired.status == ParticipationStatus.EXPIRED
    assert expired.xp_awarded == 0


def test_edit_challenge_keeps_participant_terms(challenge_factory, test_user_id, now):
    challenge, participation = join_challenge(challenge_factory(), test_user_id, now)

    edited = edit_challenge(challenge, title="Renamed", end_date=challenge.end_date + timedelta(days=3))

    assert edited.title == "Renamed"
    assert edited.participants == challenge.participants
    assert participation.end_date == challenge.end_date


def test_edit_challenge_rejects_inverted_dates(challenge_factory):
    challenge = challenge_factory()

    with pytest.raises(PydanticValidationError):
        edit_challenge(challenge, end_date=challenge.start_date - timedelta(days=1))


# ============================================================================
# Community Ranking Tests
# ============================================================================

@pytest.mark.parametrize("rank,bonus", [(1, 50), (2, 30), (3, 20), (4, 0), (10, 0)])
def test_rank_bonus_for(rank, bonus):
    assert rank_bonus_for(rank, 100) == bonus


@pytest.fixture
def community_run(challenge_factory, now):
    """Community challenge with four completed participants and one still active"""
    challenge = challenge_factory(challenge_id="community-1", challenge_type=ChallengeType.COMMUNITY)
    participations = []
    for index, user_id in enumerate(["dave", "alice", "carol", "bob", "erin"]):
        challenge, participation = join_challenge(challenge, user_id, now)
        if user_id != "erin":
            participation, _ = complete_participation(participation, now + timedelta(hours=index))
        participations.append(participation)
    return challenge, participations


def test_finalize_ranks(community_run):
    challenge, participations = community_run
    after_end = challenge.end_date + timedelta(hours=1)

    finalized, events = finalize_ranks(challenge, participations, after_end)

    by_user = {p.user_id: p for p in finalized}
    assert [(e.user_id, e.rank, e.bonus_xp) for e in events] == [
        ("dave", 1, 50),
        ("alice", 2, 30),
        ("carol", 3, 20),
        ("bob", 4, 0),
    ]
    assert [by_user[u].total_xp_awarded for u in ("dave", "alice", "carol", "bob")] == [150, 130, 120, 100]
    assert by_user["erin"].status == ParticipationStatus.EXPIRED
    assert by_user["erin"].final_rank is None
    assert events[0].event_id == "rank-bonus:community-1:dave"


def test_finalize_ties_broken_by_user_id(challenge_factory, now):
    challenge = challenge_factory(challenge_type=ChallengeType.COMMUNITY)
    participations = []
    for user_id in ["zed", "amy"]:
        challenge, participation = join_challenge(challenge, user_id, now)
        participation, _ = complete_participation(participation, now)
        participations.append(participation)

    _, events = finalize_ranks(challenge, participations, challenge.end_date + timedelta(days=1))

    assert [e.user_id for e in events] == ["amy", "zed"]


def test_finalize_ranks_one_slot_per_user(community_run, now):
    """A user with two completed participations is ranked once, by the earliest"""
    challenge, participations = community_run
    _, extra = join_challenge(challenge, "bob", now)
    extra, _ = complete_participation(extra, now - timedelta(hours=1))
    after_end = challenge.end_date + timedelta(hours=1)

    finalized, events = finalize_ranks(challenge, participations + [extra], after_end)

    assert [(e.user_id, e.rank) for e in events] == [("bob", 1), ("dave", 2), ("alice", 3), ("carol", 4)]
    assert len({e.event_id for e in events}) == len(events)
    assert finalized[-1].final_rank == 1
    assert finalized[3].user_id == "bob"
    assert finalized[3].final_rank is None
    assert finalized[3].rank_bonus_xp == 0


def test_finalize_before_end(community_run):
    challenge, participations = community_run

    with pytest.raises(ChallengeNotEndedError):
        finalize_ranks(challenge, participations, challenge.end_date)


def test_finalize_is_idempotent(community_run):
    challenge, participations = community_run
    after_end = challenge.end_date + timedelta(hours=1)

    finalized, _ = finalize_ranks(challenge, participations, after_end)
    again, events = finalize_ranks(challenge, finalized, after_end + timedelta(days=1))

    assert events == []
    assert [p.final_rank for p in again] == [p.final_rank for p in finalized]


def test_personal_challenge_has_no_ranks(challenge_factory, test_user_id, now):
    challenge, participation = join_challenge(challenge_factory(), test_user_id, now)
    completed, _ = complete_participation(participation, now)

    finalized, events = finalize_ranks(challenge, [completed], challenge.end_date + timedelta(days=1))

    assert events == []
    assert finalized[0].final_rank is None


# ============================================================================
# Recovery Challenge Tests
# ============================================================================

@pytest.mark.parametrize("days_missed,terms", [
    (1, (3, 15)),
    (2, (5, 20)),
    (4, (9, 30)),
    (10, (14, 60)),
])
def test_recovery_terms(days_missed, terms):
    assert recovery_terms(days_missed) == terms


def test_generate_recovery_challenge(test_user_id, now):
    challenge = generate_recovery_challenge(test_user_id, "habit-1", 2, now, habit_name="Meditation")

    assert challenge.is_recovery
    assert challenge.habit_id == "habit-1"
    assert challenge.challenge_type == ChallengeType.PERSONAL
    assert challenge.requirements == (StreakLength(value=5),)
    assert challenge.reward_xp == 20
    assert challenge.end_date == now + timedelta(days=5)
    assert challenge.title == "Meditation Recovery Sprint"
    assert challenge.id == "recovery-habit-1-20260310120000"


def test_second_recovery_challenge_rejected(test_user_id, now):
    challenge = generate_recovery_challenge(test_user_id, "habit-1", 1, now)
    _, participation = join_challenge(challenge, test_user_id, now)

    with pytest.raises(RecoveryChallengeAlreadyActiveError):
        generate_recovery_challenge(test_user_id, "habit-1", 3, now, participations=[participation])

    # A different habit is unaffected
    other = generate_recovery_challenge(test_user_id, "habit-2", 1, now, participations=[participation])
    assert other.habit_id == "habit-2"


def test_recovery_allowed_after_previous_abandoned(test_user_id, now):
    challenge = generate_recovery_challenge(test_user_id, "habit-1", 1, now)
    _, participation = join_challenge(challenge, test_user_id, now)

    later = now + timedelta(hours=1)
    again = generate_recovery_challenge(test_user_id, "habit-1", 1, later, participations=[abandon(participation)])

    assert again.id != challenge.id


def test_recovery_requires_a_missed_day(test_user_id, now):
    with pytest.raises(ValidationError):
        generate_recovery_challenge(test_user_id, "habit-1", 0, now)
