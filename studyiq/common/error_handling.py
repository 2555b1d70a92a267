"""
Error Handling for StudyIQ

Every failure the engine reports to its caller is a StudyIQError subclass
carrying a machine-readable ErrorCode, a severity, structured details and an
HTTP status for whatever transport sits in front of the service. Subclasses
mostly differ only in their class-level defaults.

Also here: conversion of foreign exceptions, the user-facing error response,
structured error logging and a retry decorator for transient failures.
"""

import json
import time
import random
import asyncio
import logging
import functools
import itertools
import traceback
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, TypeVar, Union, cast

from pydantic import BaseModel, ConfigDict, Field

from studyiq.common.logger import app_logger

F = TypeVar('F', bound=Callable)

logger = app_logger.getChild("errors")


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Codes reported to callers; the values are part of the public contract."""
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    CONFLICT_ERROR = "conflict_error"
    TECHNICAL_ERROR = "technical_error"

    # Generation prerequisites
    USER_NOT_FOUND = "user_not_found"
    LEVEL_NOT_SET = "level_not_set"
    INSUFFICIENT_DATA = "insufficient_data"
    INSUFFICIENT_QUESTIONS = "insufficient_questions"

    # Rate limiting
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    COOLDOWN_ACTIVE = "cooldown_active"

    # Session lifecycle
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    SESSION_COMPLETED = "session_completed"
    SESSION_ABANDONED = "session_abandoned"


class ErrorInfo(BaseModel):
    """Serializable snapshot of a StudyIQError"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    severity: ErrorSeverity
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    exception_type: str
    details: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    stack_trace: Optional[List[str]] = None


class StudyIQError(Exception):
    """
    Base class of all engine errors.

    Class attributes provide the defaults a subclass stands for; ``code`` and
    ``severity`` can still be overridden per instance.
    """

    http_status: int = 500
    retryable: bool = False
    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    default_severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        severity: Optional[ErrorSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.severity = severity or self.default_severity
        self.details = dict(details or {})
        self.cause = cause
        self.context = dict(context or {})
        self.timestamp = datetime.now(timezone.utc)

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}

        stack_trace = None
        if include_stack_trace:
            stack_trace = "".join(traceback.format_exception(type(self), self, self.__traceback__)).splitlines()

        return ErrorInfo(
            code=self.code,
            message=self.message,
            severity=self.severity,
            timestamp=self.timestamp,
            exception_type=type(self).__name__,
            details=details,
            context=self.context,
            stack_trace=stack_trace,
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        text = f"{self.code.value}: {self.message}"
        if self.details:
            text += f" (details: {self.details})"
        if self.cause is not None:
            text += f" caused by {type(self.cause).__name__}: {self.cause}"
        return text


class ValidationError(StudyIQError):
    """Malformed input"""
    http_status = 400
    default_code = ErrorCode.VALIDATION_ERROR
    default_severity = ErrorSeverity.WARNING


class StateError(StudyIQError):
    """The session is expired, completed or abandoned"""
    http_status = 409
    default_code = ErrorCode.SESSION_COMPLETED
    default_severity = ErrorSeverity.WARNING


class TechnicalError(StudyIQError):
    """Unexpected failure wrapped at an operation boundary"""
    retryable = True
    default_code = ErrorCode.TECHNICAL_ERROR


class InsufficientItemsError(StudyIQError):
    """No questions could be acquired for a quiz"""
    http_status = 422
    default_code = ErrorCode.INSUFFICIENT_QUESTIONS
    default_severity = ErrorSeverity.WARNING


class NotFoundError(StudyIQError):
    """A user, session, schedule or category does not exist"""

    http_status = 404
    default_code = ErrorCode.NOT_FOUND_ERROR
    default_severity = ErrorSeverity.WARNING

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        message: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            message or f"{resource_type} with ID {resource_id} not found",
            code=code,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
            context=context,
        )


class SessionNotFoundError(StateError, NotFoundError):
    """
    Adaptive quiz session does not exist.

    Submission callers handle it as a StateError; callers that only care
    about missing resources handle it as a NotFoundError.
    """

    http_status = 404

    def __init__(self, session_id: str, context: Optional[Dict[str, Any]] = None):
        NotFoundError.__init__(
            self,
            "AdaptiveQuizSession",
            session_id,
            message=f"Adaptive quiz session {session_id} not found",
            code=ErrorCode.SESSION_NOT_FOUND,
            context=context,
        )


class RateLimitError(StudyIQError):
    """The daily cap or the cooldown blocks a generation"""

    http_status = 429
    retryable = True
    default_code = ErrorCode.DAILY_LIMIT_EXCEEDED
    default_severity = ErrorSeverity.WARNING

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.retry_after = retry_after
        details = dict(details or {})
        if retry_after is not None:
            details["retry_after_seconds"] = retry_after
        super().__init__(message, code=code, details=details, context=context)


class InsufficientDataError(StudyIQError):
    """Too few scored attempts to analyze a user"""

    http_status = 422
    default_code = ErrorCode.INSUFFICIENT_DATA
    default_severity = ErrorSeverity.INFO

    def __init__(
        self,
        message: str,
        required: Optional[int] = None,
        current: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = {}
        if required is not None:
            details["required_attempts"] = required
        if current is not None:
            details["current_attempts"] = current
        super().__init__(message, details=details, context=context)


class ConflictError(StudyIQError):
    """A store uniqueness constraint was violated; never reaches callers as is"""

    http_status = 409
    default_code = ErrorCode.CONFLICT_ERROR
    default_severity = ErrorSeverity.WARNING

    def __init__(self, entity_type: str, entity_id: Any, cause: Optional[Exception] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} with ID {entity_id} already exists",
            details={"entity_type": entity_type, "entity_id": str(entity_id)},
            cause=cause,
        )


_SUGGESTIONS: Dict[ErrorCode, str] = {
    ErrorCode.USER_NOT_FOUND: "Sign in again or contact support.",
    ErrorCode.LEVEL_NOT_SET: "Set your study level in your profile before generating an adaptive quiz.",
    ErrorCode.INSUFFICIENT_DATA: "Complete a few more regular quizzes so we can analyze your performance.",
    ErrorCode.INSUFFICIENT_QUESTIONS: "Try again later or practice with a regular quiz in the meantime.",
    ErrorCode.DAILY_LIMIT_EXCEEDED: "Review your previous results and come back tomorrow.",
    ErrorCode.COOLDOWN_ACTIVE: "Take a short break and review your last quiz before trying again.",
    ErrorCode.SESSION_NOT_FOUND: "Generate a new adaptive quiz.",
    ErrorCode.SESSION_EXPIRED: "This quiz has expired. Generate a new adaptive quiz.",
    ErrorCode.SESSION_COMPLETED: "This quiz was already submitted. Check your results.",
    ErrorCode.SESSION_ABANDONED: "This quiz was abandoned. Generate a new adaptive quiz.",
    ErrorCode.TECHNICAL_ERROR: "Please try again in a moment.",
}


def suggestion_for(code: ErrorCode) -> Optional[str]:
    """User-facing guidance for an error code, if there is any."""
    return _SUGGESTIONS.get(code)


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    context: Optional[Dict[str, Any]] = None
) -> StudyIQError:
    """
    Return ``exception`` as a StudyIQError.

    Domain errors come back as the same object with ``context`` merged in;
    anything else is wrapped in a TechnicalError.
    """
    if isinstance(exception, StudyIQError):
        exception.context.update(context or {})
        return exception
    return TechnicalError(default_message, cause=exception, context=context)


def _backoff(initial: float, factor: float, jitter: float) -> Iterator[float]:
    """Endless sequence of jittered, exponentially growing delays."""
    delay = initial
    while True:
        yield delay * (1 + random.uniform(-jitter, jitter))
        delay *= factor


def retry(
    max_retries: int = 3,
    retry_delay: float = 0.5,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Retry a sync or async callable on transient exceptions.

    Args:
        max_retries: Retries after the first call; the last error is re-raised
        retry_delay: Delay before the first retry in seconds
        backoff_factor: Multiplier applied to the delay after each retry
        jitter: Relative random spread applied to each delay
        retry_exceptions: Exception types that trigger a retry
        ignore_exceptions: Exception types re-raised immediately, checked first
        on_retry: Called with (retry number, error, delay) before sleeping
    """
    def decorator(func: F) -> F:
        def plan_retry(attempt: int, error: Exception, delays: Iterator[float]) -> Optional[float]:
            if attempt > max_retries:
                return None
            wait = next(delays)
            if on_retry:
                on_retry(attempt, error, wait)
            logger.warning(
                f"{func.__name__} failed with {type(error).__name__}: {error}; "
                f"retry {attempt}/{max_retries} in {wait:.2f}s"
            )
            return wait

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                delays = _backoff(retry_delay, backoff_factor, jitter)
                for attempt in itertools.count(1):
                    try:
                        return await func(*args, **kwargs)
                    except ignore_exceptions:
                        raise
                    except retry_exceptions as e:
                        wait = plan_retry(attempt, e, delays)
                        if wait is None:
                            raise
                    await asyncio.sleep(wait)

            return cast(F, async_wrapper)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            delays = _backoff(retry_delay, backoff_factor, jitter)
            for attempt in itertools.count(1):
                try:
                    return func(*args, **kwargs)
                except ignore_exceptions:
                    raise
                except retry_exceptions as e:
                    wait = plan_retry(attempt, e, delays)
                    if wait is None:
                        raise
                time.sleep(wait)

        return cast(F, sync_wrapper)

    return decorator


def error_response(error: Union[StudyIQError, Exception], include_details: bool = True) -> Dict[str, Any]:
    """
    User-facing error payload.

    Only rate-limit and technical errors are marked retryable; a rate-limit
    error also says when.
    """
    error = convert_exception(error)
    response = {
        "status": "error",
        "http_status": error.http_status,
        "code": error.code.value,
        "message": error.message,
        "can_retry": error.retryable,
        "retry_after_seconds": getattr(error, "retry_after", None),
        "suggestion": suggestion_for(error.code),
    }
    if include_details and error.details:
        response["details"] = error.to_error_info().details
    return response


def log_error(
    error: Union[StudyIQError, Exception],
    level: int = logging.ERROR,
    include_stack_trace: bool = False,
    context: Optional[Dict[str, Any]] = None,
    log: Optional[logging.Logger] = None
) -> None:
    """
    Log an error as ``[code] message | key=value ... | caused by ...``.

    Foreign exceptions are converted first so every line carries a code.
    """
    error = convert_exception(error, default_message=str(error) or type(error).__name__, context=context)

    parts = [f"[{error.code.value}] {error.message}"]
    if error.context:
        parts.append(" ".join(f"{key}={value}" for key, value in error.context.items()))
    if error.cause is not None:
        parts.append(f"caused by {type(error.cause).__name__}: {error.cause}")

    (log or logger).log(level, " | ".join(parts), exc_info=error if include_stack_trace else None)
