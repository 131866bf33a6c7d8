"""
In-memory progression store

Holds progression records and challenges for a single process. Writes are
guarded by an optimistic version check so a stale record can never
overwrite a newer one.
"""

import logging
from typing import Dict, List, Optional

from habit_progression.exceptions import ConcurrencyConflictError
from habit_progression.models.challenge import Challenge, ChallengeParticipation
from habit_progression.models.progression import ProgressionRecord

logger = logging.getLogger(__name__)


class InMemoryProgressionStore:
    """Dictionary-backed store for records and challenges"""

    def __init__(self):
        self._records: Dict[str, ProgressionRecord] = {}
        self._challenges: Dict[str, Challenge] = {}

    # ==========================================
    # Progression records
    # ==========================================

    def get_record(self, user_id: str) -> Optional[ProgressionRecord]:
        return self._records.get(user_id)

    def save_record(self, record: ProgressionRecord, expected_version: int) -> None:
        """
        Persist a record if the stored version still matches

        Args:
            record: New record state
            expected_version: Version the record was derived from (0 for a new user)

        Raises:
            ConcurrencyConflictError: Another write landed first
        """
        current = self._records.get(record.user_id)
        actual_version = current.version if current else 0

        if actual_version != expected_version:
            raise ConcurrencyConflictError(
                f"Record for user {record.user_id} changed concurrently",
                expected_version=expected_version,
                actual_version=actual_version,
                user_id=record.user_id,
                operation="save_record",
            )

        self._records[record.user_id] = record
        logger.debug(f"Saved record for user {record.user_id} at version {record.version}")

    def all_records(self) -> List[ProgressionRecord]:
        return list(self._records.values())

    # ==========================================
    # Challenges
    # ==========================================

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        return self._challenges.get(challenge_id)

    def save_challenge(self, challenge: Challenge) -> None:
        self._challenges[challenge.id] = challenge
        logger.debug(f"Saved challenge {challenge.id} ({len(challenge.participants)} participants)")

    def list_challenges(self) -> List[Challenge]:
        return sorted(self._challenges.values(), key=lambda c: c.id)

    def participations_for(self, challenge_id: str) -> List[ChallengeParticipation]:
        """Latest participation of every user in a challenge"""
        participations = []
        for record in self._records.values():
            participation = record.latest_participation(challenge_id)
            if participation is not None:
                participations.append(participation)
        return participations
