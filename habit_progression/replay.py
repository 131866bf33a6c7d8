"""
Replay a JSONL event ledger through the progression engine

Usage:
    habit-progression-replay ledger.jsonl --user-id user-1

Each line of the ledger is one event as JSON. Events of other users are
ignored. Already applied events are reported and skipped, rule violations
are logged and skipped, and the final record plus its level info is
printed as JSON.
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from habit_progression.config import LOG_LEVEL, load_progression_config, validate_config
from habit_progression.exceptions import DuplicateEventError, HabitProgressionError, ProgressionRuleError
from habit_progression.gamification.achievement_system import load_catalog
from habit_progression.gamification.aggregator import ProgressionEngine
from habit_progression.gamification.xp_system import calculate_level_info
from habit_progression.models.events import parse_event
from habit_progression.models.progression import ProgressionRecord

logger = logging.getLogger(__name__)


def replay_ledger(path: Path, user_id: str, engine: ProgressionEngine) -> dict:
    """
    Apply every event of `user_id` in ledger order to a fresh record

    Returns:
        {
            'record': dict,
            'level_info': dict,
            'applied': int,
            'duplicates': int,
            'rejected': int
        }
    """
    record: Optional[ProgressionRecord] = None
    applied = duplicates = rejected = 0

    with open(path, encoding="utf-8") as ledger:
        for line_number, line in enumerate(ledger, start=1):
            if not line.strip():
                continue

            try:
                event = parse_event(line)
            except PydanticValidationError as e:
                logger.warning(f"Line {line_number}: unreadable event skipped: {e.error_count()} error(s)")
                rejected += 1
                continue

            if event.user_id != user_id:
                continue

            if record is None:
                record = ProgressionRecord.new(
                    user_id, event.occurred_at, tokens=engine.config.max_forgiveness_tokens
                )

            try:
                record, result = engine.apply_event(record, event)
                applied += 1
            except DuplicateEventError:
                logger.info(f"Line {line_number}: duplicate event {event.event_id} skipped")
                duplicates += 1
            except ProgressionRuleError as e:
                logger.warning(f"Line {line_number}: {event.event_type} rejected: {e.message}")
                rejected += 1

    total_xp = record.total_xp if record else 0
    return {
        'record': record.model_dump(mode="json") if record else None,
        'level_info': calculate_level_info(total_xp, engine.config).model_dump(mode="json"),
        'applied': applied,
        'duplicates': duplicates,
        'rejected': rejected,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay a progression event ledger")
    parser.add_argument("ledger", type=Path, help="JSONL file with one event per line")
    parser.add_argument("--user-id", required=True, help="User whose events are replayed")
    parser.add_argument("--catalog", type=Path, help="Achievement catalog JSON (overrides ACHIEVEMENT_CATALOG_PATH)")

    args = parser.parse_args(argv)

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        stream=sys.stderr,
    )

    try:
        validate_config()
        engine = ProgressionEngine(load_progression_config(), load_catalog(args.catalog))
        summary = replay_ledger(args.ledger, args.user_id, engine)
    except OSError as e:
        logger.error(f"Cannot read ledger {args.ledger}: {e}")
        return 1
    except HabitProgressionError as e:
        logger.error(f"Replay failed: {e.message}")
        return 1

    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
