"""
Service Layer Package

- ProgressionService: applies events, owns records, finalizes challenges
- InMemoryProgressionStore: versioned record and challenge storage
"""

from habit_progression.services.progression_service import ProgressionService
from habit_progression.services.store import InMemoryProgressionStore

__all__ = [
    "ProgressionService",
    "InMemoryProgressionStore",
]
