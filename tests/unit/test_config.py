"""Tests for progression configuration loading and validation"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from habit_progression import config
from habit_progression.config import DEFAULT_CONFIG, ProgressionConfig, load_progression_config, validate_config
from habit_progression.exceptions import ConfigurationError

ENV_KEYS = [
    "XP_BASE", "XP_MULTIPLIER", "XP_ROUNDING", "HABIT_BASE_XP",
    "STREAK_BONUS_PER_DAY", "STREAK_BONUS_CAP", "MAX_FORGIVENESS_TOKENS",
    "FORGIVENESS_WINDOW_HOURS", "RANK_BONUS_PERCENTAGES", "RECOVERY_BASE_DAYS",
    "RECOVERY_DAYS_PER_MISS", "RECOVERY_MAX_DAYS", "RECOVERY_BASE_XP",
    "RECOVERY_XP_PER_MISS", "RECOVERY_MAX_XP", "PERFECT_DAY_TOKENS",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every progression variable so defaults apply"""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestProgressionConfig:
    """Test defaults and model-level validation"""

    def test_defaults(self):
        assert DEFAULT_CONFIG.xp_base == 100
        assert DEFAULT_CONFIG.xp_multiplier == 1.2
        assert DEFAULT_CONFIG.max_forgiveness_tokens == 3
        assert DEFAULT_CONFIG.forgiveness_window_hours == 24
        assert DEFAULT_CONFIG.rank_bonus_percentages == (50, 30, 20)

    def test_config_is_frozen(self):
        with pytest.raises(PydanticValidationError):
            DEFAULT_CONFIG.xp_base = 5

    def test_multiplier_below_one_rejected(self):
        """A shrinking per-level cost would let bonuses run away"""
        with pytest.raises(ValueError):
            ProgressionConfig(xp_multiplier=0.9)

    def test_increasing_rank_bonuses_rejected(self):
        with pytest.raises(ValueError):
            ProgressionConfig(rank_bonus_percentages=(20, 30, 50))

    def test_rank_bonus_over_100_rejected(self):
        with pytest.raises(ValueError):
            ProgressionConfig(rank_bonus_percentages=(150,))

    def test_recovery_cap_below_base_rejected(self):
        with pytest.raises(ValueError):
            ProgressionConfig(recovery_base_days=10, recovery_max_days=5)


class TestLoadProgressionConfig:
    """Test building the configuration from environment variables"""

    def test_defaults_without_env(self, clean_env):
        assert load_progression_config() == ProgressionConfig()

    def test_values_from_env(self, clean_env):
        clean_env.setenv("XP_BASE", "200")
        clean_env.setenv("XP_MULTIPLIER", "1.5")
        clean_env.setenv("RANK_BONUS_PERCENTAGES", "40, 20")
        clean_env.setenv("MAX_FORGIVENESS_TOKENS", "5")

        loaded = load_progression_config()

        assert loaded.xp_base == 200
        assert loaded.xp_multiplier == 1.5
        assert loaded.rank_bonus_percentages == (40, 20)
        assert loaded.max_forgiveness_tokens == 5

    def test_unparseable_value(self, clean_env):
        clean_env.setenv("XP_BASE", "lots")

        with pytest.raises(ConfigurationError) as exc_info:
            load_progression_config()

        assert exc_info.value.config_key == "XP_BASE"

    def test_invalid_value(self, clean_env):
        clean_env.setenv("XP_MULTIPLIER", "0.5")

        with pytest.raises(ConfigurationError):
            load_progression_config()

    def test_empty_value_uses_default(self, clean_env):
        clean_env.setenv("XP_BASE", "")
        assert load_progression_config().xp_base == 100


class TestValidateConfig:
    """Test startup validation"""

    def test_valid(self, clean_env, monkeypatch):
        monkeypatch.setattr(config, "LOG_LEVEL", "INFO")
        monkeypatch.setattr(config, "ACHIEVEMENT_CATALOG_PATH", None)
        validate_config()

    def test_unknown_log_level(self, clean_env, monkeypatch):
        monkeypatch.setattr(config, "LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError):
            validate_config()

    def test_missing_catalog_file(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setattr(config, "LOG_LEVEL", "INFO")
        monkeypatch.setattr(config, "ACHIEVEMENT_CATALOG_PATH", tmp_path / "missing.json")

        with pytest.raises(ConfigurationError):
            validate_config()
