"""Unit tests for the exception hierarchy"""
import logging
from datetime import datetime

import pytest

from habit_progression.exceptions import (
    AlreadyFullError,
    ConcurrencyConflictError,
    ConfigurationError,
    DuplicateEventError,
    HabitProgressionError,
    InsufficientTokensError,
    ProgressionRuleError,
    RecordNotFoundError,
    ValidationError,
    WindowExpiredError,
)


class TestHabitProgressionError:
    """Test base exception class"""

    def test_basic_exception(self):
        error = HabitProgressionError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)

    def test_exception_with_context(self):
        error = HabitProgressionError(
            message="Apply failed",
            user_id="user-1",
            operation="apply_event",
            context={"event_id": "evt-1"},
            user_message="Could not record your habit",
        )
        assert error.user_id == "user-1"
        assert error.operation == "apply_event"
        assert error.context["event_id"] == "evt-1"
        assert error.user_message == "Could not record your habit"

    def test_exception_with_cause(self):
        original_error = ValueError("Invalid value")
        error = HabitProgressionError(message="Validation failed", cause=original_error)
        assert error.cause == original_error

    def test_to_dict(self):
        error = HabitProgressionError("Test error", user_message="Friendly")
        data = error.to_dict()

        assert data["error"] == "HabitProgressionError"
        assert data["message"] == "Test error"
        assert data["user_message"] == "Friendly"
        assert data["request_id"] == error.request_id

    def test_logs_on_creation(self, caplog):
        with caplog.at_level(logging.ERROR, logger="habit_progression.exceptions"):
            HabitProgressionError("Something broke", user_id="user-1")

        assert "Something broke" in caplog.text


class TestSubclasses:
    """Test specialized exceptions"""

    def test_validation_error(self):
        error = ValidationError("must be positive", field="days_missed", value=0)
        assert error.field == "days_missed"
        assert error.context == {"field": "days_missed", "value": 0}
        assert "days_missed" in error.user_message

    def test_record_not_found(self):
        error = RecordNotFoundError("missing", record_type="Challenge", record_id="c-1")
        assert error.record_id == "c-1"
        assert error.user_message == "Challenge not found."

    def test_configuration_error(self):
        error = ConfigurationError("bad", config_key="XP_BASE")
        assert error.context["config_key"] == "XP_BASE"

    def test_concurrency_conflict(self):
        error = ConcurrencyConflictError("stale", expected_version=2, actual_version=3)
        assert error.expected_version == 2
        assert error.actual_version == 3

    @pytest.mark.parametrize("error_class", [
        InsufficientTokensError,
        WindowExpiredError,
        AlreadyFullError,
        DuplicateEventError,
    ])
    def test_rule_errors_are_recoverable(self, error_class):
        error = error_class("rule violated", user_id="user-1")

        assert isinstance(error, ProgressionRuleError)
        assert isinstance(error, HabitProgressionError)
        assert error.log_level == logging.WARNING
        assert error.user_message == error_class.default_user_message

    def test_rule_error_custom_user_message(self):
        error = InsufficientTokensError("none left", user_message="Come back next month")
        assert error.user_message == "Come back next month"

    def test_rule_errors_log_as_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="habit_progression.exceptions"):
            DuplicateEventError("seen before")

        assert caplog.records[-1].levelno == logging.WARNING
