"""
Standardized exception hierarchy for habit-progression
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class HabitProgressionError(Exception):
    """
    Base exception for all habit-progression errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise HabitProgressionError(
            message="Failed to apply event",
            user_id="user-1",
            operation="apply_event",
            context={"event_id": "evt-123"}
        )
    """

    log_level = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (Caller Input)
# ==========================================

class ValidationError(HabitProgressionError):
    """
    Raised when event or command input fails validation

    Example:
        raise ValidationError(
            message="missed_date cannot be in the future",
            field="missed_date",
            value="2026-01-02T00:00:00+00:00",
            user_id="user-1"
        )
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


class RecordNotFoundError(HabitProgressionError):
    """Requested record does not exist"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class ConfigurationError(HabitProgressionError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


class ConcurrencyConflictError(HabitProgressionError):
    """A record was written by someone else since it was read"""

    log_level = logging.WARNING

    def __init__(self, message: str, expected_version: int, actual_version: int, **kwargs):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message=message,
            user_message="Your progress changed while we were saving. Please try again.",
            context={"expected_version": expected_version, "actual_version": actual_version},
            **kwargs
        )


# ==========================================
# Progression Rule Violations
# ==========================================

class ProgressionRuleError(HabitProgressionError):
    """
    Base class for recoverable, user-facing rule violations

    None of these are fatal; the caller reports them back to the user and
    the progression record is left untouched.
    """

    log_level = logging.WARNING
    default_user_message = "That action isn't allowed right now."

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("user_message", self.default_user_message)
        super().__init__(message=message, **kwargs)


class InsufficientTokensError(ProgressionRuleError):
    """No forgiveness tokens left in the current monthly window"""
    default_user_message = "You have no forgiveness tokens left this month."


class WindowExpiredError(ProgressionRuleError):
    """Forgiveness requested too long after the missed day"""
    default_user_message = "Forgiveness can only be used within 24 hours of a missed day."


class DuplicateGrantError(ProgressionRuleError):
    """A forgiveness grant already exists for this habit and date"""
    default_user_message = "This day has already been forgiven."


class ChallengeEndedError(ProgressionRuleError):
    """The challenge (or the participant's copy of its deadline) has passed"""
    default_user_message = "This challenge has already ended."


class ChallengeNotEndedError(ProgressionRuleError):
    """Ranks cannot be finalized before the challenge end date"""
    default_user_message = "Rankings are available once the challenge ends."


class AlreadyFullError(ProgressionRuleError):
    """Challenge capacity reached"""
    default_user_message = "This challenge is full."


class AlreadyJoinedError(ProgressionRuleError):
    """User already has an active participation in this challenge"""
    default_user_message = "You're already participating in this challenge."


class ParticipationNotActiveError(ProgressionRuleError):
    """Participation is abandoned or expired and can no longer change"""
    default_user_message = "This challenge is no longer active for you."


class RecoveryChallengeAlreadyActiveError(ProgressionRuleError):
    """A habit may only have one active recovery challenge at a time"""
    default_user_message = "You already have an active recovery challenge for this habit."


class DuplicateEventError(ProgressionRuleError):
    """Event idempotency key was already applied to this record"""
    default_user_message = "This activity was already counted."


class InvalidProgressError(ProgressionRuleError):
    """Progress update is out of range or would move progress backwards"""
    default_user_message = "Challenge progress can only move forward."
