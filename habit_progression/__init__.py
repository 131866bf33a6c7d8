"""
Habit progression engine

Turns habit-completion events into XP, levels, achievements, forgiveness
token grants and challenge outcomes. Pure computation over immutable
progression records; persistence and concurrency live in the owning service.
"""

__version__ = "0.1.0"
