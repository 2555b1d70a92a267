"""
Tests for the error taxonomy and helpers.
"""

import logging
import unittest
from unittest.mock import MagicMock

import pytest

from studyiq.common.error_handling import (
    ConflictError,
    ErrorCode,
    InsufficientDataError,
    NotFoundError,
    RateLimitError,
    SessionNotFoundError,
    StateError,
    StudyIQError,
    TechnicalError,
    ValidationError,
    convert_exception,
    error_response,
    log_error,
    retry,
)


class TestErrorTaxonomy(unittest.TestCase):

    def test_session_not_found_is_state_and_not_found(self):
        error = SessionNotFoundError("adaptive_1")
        self.assertIsInstance(error, StateError)
        self.assertIsInstance(error, NotFoundError)
        self.assertEqual(error.code, ErrorCode.SESSION_NOT_FOUND)
        self.assertEqual(error.http_status, 404)
        self.assertEqual(error.resource_id, "adaptive_1")

    def test_http_status(self):
        self.assertEqual(ValidationError("bad").http_status, 400)
        self.assertEqual(NotFoundError("User", "u1").http_status, 404)
        self.assertEqual(StateError("done").http_status, 409)
        self.assertEqual(RateLimitError("slow down", retry_after=30).http_status, 429)
        self.assertEqual(InsufficientDataError("more").http_status, 422)
        self.assertEqual(TechnicalError("boom").http_status, 500)

    def test_details(self):
        error = InsufficientDataError("more quizzes", required=3, current=1)
        self.assertEqual(error.details, {"required_attempts": 3, "current_attempts": 1})

        error = RateLimitError("slow down", retry_after=90.0, code=ErrorCode.COOLDOWN_ACTIVE)
        self.assertEqual(error.retry_after, 90.0)
        self.assertEqual(error.details["retry_after_seconds"], 90.0)

    def test_str_and_dict(self):
        cause = KeyError("x")
        error = TechnicalError("failed", cause=cause, context={"user_id": "u1"})
        self.assertIn("technical_error: failed", str(error))
        self.assertIn("KeyError", str(error))

        data = error.to_dict()
        self.assertEqual(data["code"], "technical_error")
        self.assertEqual(data["details"]["cause"]["type"], "KeyError")
        self.assertEqual(data["context"], {"user_id": "u1"})

    def test_convert_exception(self):
        domain = ValidationError("bad")
        self.assertIs(convert_exception(domain, context={"k": "v"}), domain)
        self.assertEqual(domain.context, {"k": "v"})

        converted = convert_exception(RuntimeError("db down"))
        self.assertIsInstance(converted, TechnicalError)
        self.assertIsInstance(converted.cause, RuntimeError)

    def test_conflict_error(self):
        error = ConflictError("AdaptiveQuizResult", "adaptive_1")
        self.assertEqual(error.code, ErrorCode.CONFLICT_ERROR)
        self.assertEqual(error.details["entity_id"], "adaptive_1")


class TestErrorResponse(unittest.TestCase):

    def test_rate_limit_response(self):
        response = error_response(RateLimitError("Daily limit reached", retry_after=3600))

        self.assertEqual(response["status"], "error")
        self.assertEqual(response["http_status"], 429)
        self.assertEqual(response["code"], "daily_limit_exceeded")
        self.assertTrue(response["can_retry"])
        self.assertEqual(response["retry_after_seconds"], 3600)
        self.assertIsNotNone(response["suggestion"])

    def test_state_error_not_retryable(self):
        response = error_response(StateError("done", code=ErrorCode.SESSION_EXPIRED), include_details=False)
        self.assertFalse(response["can_retry"])
        self.assertIsNone(response["retry_after_seconds"])
        self.assertNotIn("details", response)

    def test_unknown_exception(self):
        response = error_response(ValueError("oops"))
        self.assertEqual(response["code"], "technical_error")
        self.assertEqual(response["http_status"], 500)
        self.assertTrue(response["can_retry"])


def test_log_error_includes_context():
    log = MagicMock(spec=logging.Logger)
    log_error(NotFoundError("User", "u1"), level=logging.WARNING, context={"operation": "generate"}, log=log)

    level, message = log.log.call_args[0]
    assert level == logging.WARNING
    assert "not_found_error" in message
    assert "operation=generate" in message


@pytest.mark.asyncio
async def test_retry_async_recovers():
    calls = []

    @retry(max_retries=2, retry_delay=0, jitter=0, retry_exceptions=(ConnectionError,))
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("refused")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


def test_retry_sync_gives_up():
    on_retry = MagicMock()

    @retry(max_retries=1, retry_delay=0, jitter=0, on_retry=on_retry)
    def always_fails():
        raise ConnectionError("refused")

    with pytest.raises(ConnectionError):
        always_fails()
    assert on_retry.call_count == 1


def test_retry_ignores_domain_errors():
    calls = []

    @retry(max_retries=3, retry_delay=0, ignore_exceptions=(StudyIQError,))
    def invalid():
        calls.append(1)
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        invalid()
    assert len(calls) == 1
