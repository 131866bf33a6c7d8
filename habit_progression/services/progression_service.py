"""
ProgressionService - Progression Business Logic

Owns progression records and applies domain events to them through the
progression engine. Events for one user are serialized; the engine itself
is pure and never touches storage.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from habit_progression.exceptions import DuplicateEventError, RecordNotFoundError
from habit_progression.gamification import challenges, forgiveness
from habit_progression.gamification.achievement_system import get_user_achievements
from habit_progression.gamification.aggregator import ProgressionEngine, compute_habit_stats
from habit_progression.gamification.xp_system import calculate_level_info
from habit_progression.models.challenge import Challenge, ChallengeType
from habit_progression.models.events import (
    ChallengeJoined,
    ChallengeLeft,
    ChallengeProgressUpdated,
    ForgivenessRequested,
    ProgressionEvent,
)
from habit_progression.models.progression import ProgressionRecord
from habit_progression.models.result import LevelInfo, ProgressionResult
from habit_progression.monitoring import record_result, track_event
from habit_progression.services.store import InMemoryProgressionStore

logger = logging.getLogger(__name__)


class _KeyedLocks:
    """One asyncio.Lock per key, dropped once no task holds or waits for it"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


class ProgressionService:
    """
    Service for progression features.

    Responsibilities:
    - Single write path for progression records
    - Per-user serialization of events
    - Challenge roster bookkeeping
    - Community challenge rank finalization
    """

    def __init__(
        self,
        store: Optional[InMemoryProgressionStore] = None,
        engine: Optional[ProgressionEngine] = None
    ):
        """
        Initialize ProgressionService.

        Args:
            store: Record and challenge store
            engine: Progression engine (default configuration and catalog if omitted)
        """
        self.store = store or InMemoryProgressionStore()
        self.engine = engine or ProgressionEngine()
        self._user_locks = _KeyedLocks()
        self._challenge_locks = _KeyedLocks()
        logger.debug("ProgressionService initialized")

    def _load_or_create(self, user_id: str, now: datetime) -> ProgressionRecord:
        record = self.store.get_record(user_id)
        if record is None:
            record = ProgressionRecord.new(
                user_id, now, tokens=self.engine.config.max_forgiveness_tokens
            )
            logger.info(f"Created progression record for user {user_id}")
        return record

    async def get_record(self, user_id: str, now: datetime) -> ProgressionRecord:
        """Stored record, or a fresh unsaved one for an unknown user"""
        return self._load_or_create(user_id, now)

    # ==========================================
    # Event application
    # ==========================================

    async def apply_event(self, event: ProgressionEvent) -> ProgressionResult:
        """
        Apply one event to its user's record and persist the outcome.

        Args:
            event: Any progression event

        Returns:
            Consolidated ProgressionResult

        Raises:
            DuplicateEventError: event_id already applied
            ProgressionRuleError: rule violation; nothing is persisted
            ConcurrencyConflictError: record changed between read and write
        """
        async with self._user_locks.hold(event.user_id):
            record = self._load_or_create(event.user_id, event.occurred_at)

            with track_event(event.event_type):
                new_record, result = self.engine.apply_event(record, event)

            self.store.save_record(new_record, expected_version=record.version)

            for challenge in result.created_challenges + result.updated_challenges:
                self.store.save_challenge(challenge)

        record_result(result)
        return result

    async def replay(self, events: List[ProgressionEvent]) -> List[ProgressionResult]:
        """Apply events in order, skipping ones already applied"""
        results = []
        for event in events:
            try:
                results.append(await self.apply_event(event))
            except DuplicateEventError:
                logger.debug(f"Skipping already applied event {event.event_id}")
        return results

    # ==========================================
    # Challenges
    # ==========================================

    def _get_challenge(self, challenge_id: str, user_id: Optional[str] = None) -> Challenge:
        challenge = self.store.get_challenge(challenge_id)
        if challenge is None:
            raise RecordNotFoundError(
                f"Challenge {challenge_id} not found",
                record_type="Challenge",
                record_id=challenge_id,
                user_id=user_id,
            )
        return challenge

    async def create_challenge(self, challenge: Challenge) -> Challenge:
        self.store.save_challenge(challenge)
        logger.info(f"Created {challenge.challenge_type.value} challenge '{challenge.id}'")
        return challenge

    async def create_challenge_from_template(
        self,
        template_id: str,
        start_date: datetime,
        challenge_type: Optional[ChallengeType] = None,
        capacity: Optional[int] = None
    ) -> Challenge:
        challenge = challenges.create_challenge_from_template(
            template_id, start_date, challenge_type=challenge_type, capacity=capacity
        )
        return await self.create_challenge(challenge)

    async def edit_challenge(self, challenge_id: str, **changes: Any) -> Challenge:
        """Admin edit; in-flight participations keep their joined terms"""
        async with self._challenge_locks.hold(challenge_id):
            edited = challenges.edit_challenge(self._get_challenge(challenge_id), **changes)
            self.store.save_challenge(edited)
        return edited

    async def list_active_challenges(self, now: datetime) -> List[Challenge]:
        return [c for c in self.store.list_challenges() if c.is_active_at(now)]

    async def join_challenge(
        self,
        user_id: str,
        challenge_id: str,
        now: datetime,
        event_id: Optional[str] = None
    ) -> ProgressionResult:
        """Join a stored challenge; the roster is updated under the challenge lock"""
        async with self._challenge_locks.hold(challenge_id):
            challenge = self._get_challenge(challenge_id, user_id)
            event = ChallengeJoined(
                event_id=event_id or str(uuid4()),
                user_id=user_id,
                occurred_at=now,
                challenge=challenge,
            )
            return await self.apply_event(event)

    async def leave_challenge(
        self,
        user_id: str,
        challenge_id: str,
        now: datetime,
        event_id: Optional[str] = None
    ) -> ProgressionResult:
        """Abandon a participation and drop the user from the roster"""
        async with self._challenge_locks.hold(challenge_id):
            event = ChallengeLeft(
                event_id=event_id or str(uuid4()),
                user_id=user_id,
                occurred_at=now,
                challenge_id=challenge_id,
            )
            result = await self.apply_event(event)

            challenge = self.store.get_challenge(challenge_id)
            if challenge is not None:
                self.store.save_challenge(
                    challenge.model_copy(update={"participants": challenge.participants - {user_id}})
                )
        return result

    async def report_progress(
        self,
        user_id: str,
        challenge_id: str,
        now: datetime,
        progress: Optional[float] = None,
        event_id: Optional[str] = None
    ) -> ProgressionResult:
        """Explicit progress, or a requirement re-check when progress is None"""
        event = ChallengeProgressUpdated(
            event_id=event_id or str(uuid4()),
            user_id=user_id,
            occurred_at=now,
            challenge_id=challenge_id,
            progress=progress,
        )
        return await self.apply_event(event)

    async def finalize_challenge(self, challenge_id: str, now: datetime) -> List[ProgressionResult]:
        """
        Rank an ended community challenge and pay rank bonuses.

        Safe to call repeatedly: bonus events carry deterministic ids and
        already-ranked participations produce no further events.

        Returns:
            One result per rank bonus applied by this call
        """
        async with self._challenge_locks.hold(challenge_id):
            challenge = self._get_challenge(challenge_id)
            participations = self.store.participations_for(challenge_id)

            _, bonus_events = challenges.finalize_ranks(
                challenge, participations, now, self.engine.config
            )

            results = []
            for event in bonus_events:
                try:
                    results.append(await self.apply_event(event))
                except DuplicateEventError:
                    logger.debug(f"Rank bonus {event.event_id} already applied")

        logger.info(f"Finalized challenge {challenge_id}: {len(results)} rank bonuses applied")
        return results

    # ==========================================
    # Forgiveness
    # ==========================================

    async def request_forgiveness(
        self,
        user_id: str,
        habit_id: str,
        missed_date: datetime,
        now: datetime,
        event_id: Optional[str] = None
    ) -> ProgressionResult:
        event = ForgivenessRequested(
            event_id=event_id or str(uuid4()),
            user_id=user_id,
            occurred_at=now,
            habit_id=habit_id,
            missed_date=missed_date,
        )
        return await self.apply_event(event)

    async def grants_available(self, user_id: str, now: datetime) -> int:
        record = self._load_or_create(user_id, now)
        return forgiveness.grants_available(record, now, self.engine.config)

    # ==========================================
    # Read models
    # ==========================================

    async def get_level_info(self, user_id: str, now: datetime) -> LevelInfo:
        record = self._load_or_create(user_id, now)
        return calculate_level_info(record.total_xp, self.engine.config)

    async def get_achievements(
        self,
        user_id: str,
        now: datetime,
        include_locked: bool = False
    ) -> Dict[str, Any]:
        record = self._load_or_create(user_id, now)
        stats = compute_habit_stats(record)
        return get_user_achievements(record, stats, self.engine.catalog, include_locked)
