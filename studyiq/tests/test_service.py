"""
Tests for service wiring and the end-to-end flows through the facade.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from studyiq.common.cache import MemoryCacheBackend
from studyiq.common.cache.redis import RedisCacheBackend
from studyiq.common.config import AppConfig, CacheConfig, DatabaseConfig
from studyiq.common.error_handling import InsufficientDataError, StateError
from studyiq.db import create_engine
from studyiq.db.repository import SqlUserRepository
from studyiq.domain.memory_repository import MemoryUserRepository
from studyiq.domain.model import ReviewResult, SessionStatus, StudyLevel
from studyiq.selection import SelectionCriteria
from studyiq.service import create_cache_backend, create_service, create_sql_service
from studyiq.tests.factories import NOW, USER_ID


def test_create_cache_backend(clock):
    memory = create_cache_backend(AppConfig(), clock)
    assert isinstance(memory, MemoryCacheBackend)
    assert memory.name == "analytics"

    redis_config = AppConfig(cache=CacheConfig(backend="redis", redis_key_prefix="test:"))
    backend = create_cache_backend(redis_config, clock)
    assert isinstance(backend, RedisCacheBackend)
    assert backend.qualify("k") == "test:k"


def test_create_service_defaults_to_memory_store(app_config, clock):
    service = create_service(config=app_config, clock=clock)
    assert isinstance(service.store.users, MemoryUserRepository)


@pytest.mark.asyncio
async def test_create_sql_service(clock):
    config = AppConfig(database=DatabaseConfig(url="sqlite+aiosqlite:///:memory:"))
    engine = create_engine(config.database)
    try:
        with patch("studyiq.service.create_engine", return_value=engine):
            service = await create_sql_service(config, clock=clock)

        assert isinstance(service.store.users, SqlUserRepository)
        with pytest.raises(InsufficientDataError):
            await service.analyze_user_performance(USER_ID)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_adaptive_flow(service):
    eligibility = await service.check_adaptive_quiz_eligibility(USER_ID)
    assert eligibility.can_generate

    snapshot = await service.analyze_user_performance(USER_ID)
    assert [c.category_id for c in snapshot.weakest_categories] == ["cat-weak", "cat-mid"]

    generation = await service.generate_adaptive_quiz(USER_ID)
    answers = {q.question_id: "a" for q in generation.questions}
    result = await service.submit_adaptive_quiz_results(generation.session_id, answers, time_spent_seconds=300)
    assert result.overall_score == 7

    with pytest.raises(StateError):
        await service.submit_adaptive_quiz_results(generation.session_id, answers)

    eligibility = await service.check_adaptive_quiz_eligibility(USER_ID)
    assert eligibility.sessions_today == 1

    second = await service.generate_adaptive_quiz(USER_ID)
    abandoned = await service.abandon_adaptive_quiz(second.session_id)
    assert abandoned.status is SessionStatus.ABANDONED


@pytest.mark.asyncio
async def test_cache_stats_and_selection_statistics(service):
    await service.analyze_user_performance(USER_ID)
    await service.analyze_user_performance(USER_ID)

    stats = await service.get_cache_stats()
    assert stats["hits"] == 1
    assert stats["ttl_seconds"] == 1800

    selection = await service.get_selection_statistics(SelectionCriteria(
        student_level=StudyLevel.A, weak_category_ids=["cat-weak"], strong_category_ids=["cat-strong"]
    ))
    assert selection["total_available"] == 40


@pytest.mark.asyncio
async def test_spaced_repetition_flow(service, clock):
    schedule = await service.create_spaced_repetition_schedule(USER_ID, "Pharmacology", ["q1", "q2", "q3"])
    assert await service.generate_review_session(USER_ID) is None

    clock.advance(days=1)
    session = await service.generate_review_session(USER_ID, max_cards=2)
    assert len(session.cards) == 2
    assert session.estimated_duration_minutes == 4

    updated = await service.update_schedule_after_review(schedule.schedule_id, [
        ReviewResult(question_id=card.question_id, quality=5) for card in session.cards
    ])
    assert sum(1 for card in updated.cards if card.repetitions == 1) == 2

    stats = await service.get_user_progress_stats(USER_ID)
    assert stats.total_cards == 3
    assert stats.completed_cards == 0
    assert stats.streak_days == 1
    assert stats.next_review_date == NOW + timedelta(days=2)
