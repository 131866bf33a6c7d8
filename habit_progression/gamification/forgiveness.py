"""
Forgiveness Token Ledger

Each user gets a monthly allowance of forgiveness tokens (3 by default). A
token retroactively excuses one missed habit day without breaking the streak;
the forgiven day earns no XP.

Rules:
- The allowance resets lazily: the first read or use in a new calendar month
  (relative to token_cycle_start) refills it to the cap
- A grant must be requested within 24 hours of the missed day
- At most one grant per (habit, date)
- The token count never exceeds the cap and never goes negative
- Completing every tracked habit on a day earns one bonus token (up to the cap)
"""

from typing import Tuple
from datetime import date, datetime, timedelta
import logging

from habit_progression.config import DEFAULT_CONFIG, ProgressionConfig
from habit_progression.exceptions import (
    DuplicateGrantError,
    InsufficientTokensError,
    ValidationError,
    WindowExpiredError,
)
from habit_progression.models.progression import ProgressionRecord
from habit_progression.models.result import ForgivenessGrant

logger = logging.getLogger(__name__)


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _crossed_month_boundary(record: ProgressionRecord, now: datetime) -> bool:
    cycle = record.token_cycle_start
    return (now.year, now.month) > (cycle.year, cycle.month)


def grants_available(
    record: ProgressionRecord,
    now: datetime,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> int:
    """
    Tokens usable at `now`

    Reading never changes the record; the refill is only persisted when a
    token is used or awarded (see refresh_tokens).
    """
    if _crossed_month_boundary(record, now):
        return config.max_forgiveness_tokens
    return min(record.forgiveness_tokens, config.max_forgiveness_tokens)


def refresh_tokens(
    record: ProgressionRecord,
    now: datetime,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> ProgressionRecord:
    """Apply the monthly refill if `now` is in a later month than the current cycle"""
    if not _crossed_month_boundary(record, now):
        return record

    logger.info(
        f"Refilling forgiveness tokens for user {record.user_id}: "
        f"{record.forgiveness_tokens} -> {config.max_forgiveness_tokens}"
    )
    return record.model_copy(update={
        "forgiveness_tokens": config.max_forgiveness_tokens,
        "token_cycle_start": _month_start(now),
    })


def has_grant(record: ProgressionRecord, habit_id: str, missed_date: datetime) -> bool:
    day = missed_date.date()
    return any(g.habit_id == habit_id and g.forgiven_date == day for g in record.forgiveness_grants)


def use_token(
    record: ProgressionRecord,
    habit_id: str,
    missed_date: datetime,
    now: datetime,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> Tuple[ProgressionRecord, ForgivenessGrant]:
    """
    Spend one token to excuse a missed habit day

    Args:
        record: Current progression record (not modified)
        habit_id: Habit whose day was missed
        missed_date: Start of the missed day (timezone-aware)
        now: Time of the request

    Returns:
        (new record with one token fewer and the grant recorded, the grant)

    Raises:
        ValidationError: missed_date lies in the future
        InsufficientTokensError: no tokens left this month
        WindowExpiredError: more than FORGIVENESS_WINDOW_HOURS since missed_date
        DuplicateGrantError: this habit/day was already forgiven
    """
    if missed_date > now:
        raise ValidationError(
            "missed_date cannot be in the future",
            field="missed_date",
            value=missed_date.isoformat(),
            user_id=record.user_id,
            operation="use_forgiveness_token",
        )

    refreshed = refresh_tokens(record, now, config)
    context = {"habit_id": habit_id, "missed_date": missed_date.isoformat()}

    if refreshed.forgiveness_tokens <= 0:
        raise InsufficientTokensError(
            f"User {record.user_id} has no forgiveness tokens left",
            user_id=record.user_id,
            operation="use_forgiveness_token",
            context=context,
        )

    window = timedelta(hours=config.forgiveness_window_hours)
    if now - missed_date > window:
        raise WindowExpiredError(
            f"Forgiveness for {missed_date.date()} requested after the {config.forgiveness_window_hours}h window",
            user_id=record.user_id,
            operation="use_forgiveness_token",
            context=context,
        )

    if has_grant(refreshed, habit_id, missed_date):
        raise DuplicateGrantError(
            f"Habit {habit_id} already forgiven for {missed_date.date()}",
            user_id=record.user_id,
            operation="use_forgiveness_token",
            context=context,
        )

    grant = ForgivenessGrant(
        habit_id=habit_id,
        forgiven_date=missed_date.date(),
        granted_at=now,
    )

    # Grants older than two windows can never be duplicated again
    horizon = (now - 2 * window).date()
    kept = tuple(g for g in refreshed.forgiveness_grants if g.forgiven_date >= horizon)

    updated = refreshed.model_copy(update={
        "forgiveness_tokens": refreshed.forgiveness_tokens - 1,
        "forgiveness_grants": kept + (grant,),
    })

    logger.info(
        f"User {record.user_id} used forgiveness token for habit {habit_id} on {grant.forgiven_date}. "
        f"Remaining: {updated.forgiveness_tokens}"
    )

    return updated, grant


def award_bonus_tokens(
    record: ProgressionRecord,
    count: int,
    now: datetime,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> Tuple[ProgressionRecord, int]:
    """
    Add up to `count` tokens without exceeding the cap

    Returns:
        (new record, number of tokens actually added)
    """
    refreshed = refresh_tokens(record, now, config)
    new_count = min(refreshed.forgiveness_tokens + max(count, 0), config.max_forgiveness_tokens)
    added = new_count - refreshed.forgiveness_tokens

    if added <= 0:
        logger.debug(f"User {record.user_id} already at token cap; bonus of {count} dropped")
        return refreshed, 0

    logger.info(f"Awarded {added} forgiveness token(s) to user {record.user_id}. New count: {new_count}")
    return refreshed.model_copy(update={"forgiveness_tokens": new_count}), added


def is_perfect_day(record: ProgressionRecord, day: date) -> bool:
    """Every tracked habit has a completion on `day`"""
    return bool(record.habits) and all(h.last_completed_date == day for h in record.habits.values())


def award_perfect_day_token(
    record: ProgressionRecord,
    day: date,
    now: datetime,
    config: ProgressionConfig = DEFAULT_CONFIG
) -> Tuple[ProgressionRecord, int]:
    """
    One bonus token for a day on which every tracked habit was completed

    Each day is rewarded at most once and only days after the last rewarded
    one count, so replaying older completions never pays again.

    Returns:
        (new record, number of tokens actually added)
    """
    if not config.perfect_day_tokens or not is_perfect_day(record, day):
        return record, 0

    if record.last_perfect_day is not None and day <= record.last_perfect_day:
        return record, 0

    marked = record.model_copy(update={"last_perfect_day": day})
    logger.info(f"User {record.user_id} completed every habit on {day}")
    return award_bonus_tokens(marked, config.perfect_day_tokens, now, config)
