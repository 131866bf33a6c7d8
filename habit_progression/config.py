"""Configuration management"""
import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from habit_progression.exceptions import ConfigurationError

load_dotenv()

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# Monitoring
ENABLE_PROMETHEUS: bool = os.getenv("ENABLE_PROMETHEUS", "true").lower() == "true"

# Achievement catalog (optional JSON override of the built-in catalog)
_catalog_path = os.getenv("ACHIEVEMENT_CATALOG_PATH", "")
ACHIEVEMENT_CATALOG_PATH: Optional[Path] = Path(_catalog_path) if _catalog_path else None


class ProgressionConfig(BaseModel):
    """
    Tunable constants of the progression engine

    The level curve charges round(XP_BASE * XP_MULTIPLIER^(n-1)) XP to go from
    level n to n+1, rounded to the nearest XP_ROUNDING. A multiplier >= 1 keeps
    the per-level cost non-decreasing, so bonus XP yields fewer levels the
    higher a user climbs.
    """

    model_config = ConfigDict(frozen=True)

    xp_base: int = Field(default=100, gt=0)
    xp_multiplier: float = Field(default=1.2, ge=1.0)
    xp_rounding: int = Field(default=10, gt=0)

    habit_base_xp: int = Field(default=10, ge=0)
    streak_bonus_per_day: int = Field(default=2, ge=0)
    streak_bonus_cap: int = Field(default=50, ge=0)

    max_forgiveness_tokens: int = Field(default=3, ge=0)
    forgiveness_window_hours: int = Field(default=24, gt=0)

    rank_bonus_percentages: Tuple[int, ...] = (50, 30, 20)

    recovery_base_days: int = Field(default=3, ge=1)
    recovery_days_per_miss: int = Field(default=2, ge=0)
    recovery_max_days: int = Field(default=14, ge=1)
    recovery_base_xp: int = Field(default=15, gt=0)
    recovery_xp_per_miss: int = Field(default=5, ge=0)
    recovery_max_xp: int = Field(default=60, gt=0)

    perfect_day_tokens: int = Field(default=1, ge=0)  # 0 disables perfect-day token rewards

    @model_validator(mode='after')
    def check_bounds(self) -> 'ProgressionConfig':
        """Rank bonuses are bounded percentages, best rank first; caps cover their bases"""
        previous = 100
        for pct in self.rank_bonus_percentages:
            if pct < 0 or pct > 100:
                raise ValueError(f"Rank bonus {pct}% is outside 0-100")
            if pct > previous:
                raise ValueError("Rank bonus percentages must be non-increasing")
            previous = pct

        if self.recovery_max_days < self.recovery_base_days:
            raise ValueError("recovery_max_days must be >= recovery_base_days")
        if self.recovery_max_xp < self.recovery_base_xp:
            raise ValueError("recovery_max_xp must be >= recovery_base_xp")
        return self


def _parse_percentages(raw: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in raw.split(",") if part.strip())


def load_progression_config() -> ProgressionConfig:
    """
    Build the engine configuration from environment variables

    Raises:
        ConfigurationError: If any value fails to parse or validate
    """
    env_fields = {
        "xp_base": ("XP_BASE", int),
        "xp_multiplier": ("XP_MULTIPLIER", float),
        "xp_rounding": ("XP_ROUNDING", int),
        "habit_base_xp": ("HABIT_BASE_XP", int),
        "streak_bonus_per_day": ("STREAK_BONUS_PER_DAY", int),
        "streak_bonus_cap": ("STREAK_BONUS_CAP", int),
        "max_forgiveness_tokens": ("MAX_FORGIVENESS_TOKENS", int),
        "forgiveness_window_hours": ("FORGIVENESS_WINDOW_HOURS", int),
        "rank_bonus_percentages": ("RANK_BONUS_PERCENTAGES", _parse_percentages),
        "recovery_base_days": ("RECOVERY_BASE_DAYS", int),
        "recovery_days_per_miss": ("RECOVERY_DAYS_PER_MISS", int),
        "recovery_max_days": ("RECOVERY_MAX_DAYS", int),
        "recovery_base_xp": ("RECOVERY_BASE_XP", int),
        "recovery_xp_per_miss": ("RECOVERY_XP_PER_MISS", int),
        "recovery_max_xp": ("RECOVERY_MAX_XP", int),
        "perfect_day_tokens": ("PERFECT_DAY_TOKENS", int),
    }

    values = {}
    for field_name, (env_key, parse) in env_fields.items():
        raw = os.getenv(env_key)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = parse(raw)
        except ValueError as e:
            raise ConfigurationError(
                message=f"Invalid value for {env_key}: {raw!r}",
                config_key=env_key,
                cause=e,
            ) from e

    try:
        return ProgressionConfig(**values)
    except PydanticValidationError as e:
        raise ConfigurationError(
            message=f"Invalid progression configuration: {e.error_count()} error(s)",
            cause=e,
        ) from e


# Validation
def validate_config() -> None:
    """Validate configuration"""
    if LOG_LEVEL.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError(f"Unknown LOG_LEVEL {LOG_LEVEL!r}", config_key="LOG_LEVEL")
    if ACHIEVEMENT_CATALOG_PATH is not None and not ACHIEVEMENT_CATALOG_PATH.is_file():
        raise ConfigurationError(
            f"Achievement catalog not found at {ACHIEVEMENT_CATALOG_PATH}",
            config_key="ACHIEVEMENT_CATALOG_PATH",
        )
    load_progression_config()


# Engine defaults when no explicit configuration is supplied
DEFAULT_CONFIG = ProgressionConfig()
