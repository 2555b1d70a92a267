"""
Adaptive Learning Service

Single entry point of the engine. Wires analytics, selection, scheduling and the
adaptive quiz orchestrator over one store, and exposes the operations a
transport layer calls.
"""

import random
from typing import Any, Dict, Iterable, List, Mapping, Optional

from studyiq.adaptive.orchestrator import AdaptiveQuizOrchestrator
from studyiq.adaptive.rate_limiter import GenerationRateLimiter
from studyiq.analytics.cache import AnalyticsCache
from studyiq.analytics.engine import PerformanceAnalyticsEngine
from studyiq.common.cache import CacheBackend, MemoryCacheBackend
from studyiq.common.cache.redis import RedisCacheBackend
from studyiq.common.clock import Clock, SystemClock
from studyiq.common.config import AppConfig, get_config
from studyiq.common.logger import app_logger, apply_logging_config, log_execution_time
from studyiq.db import create_engine, create_sql_store, init_models
from studyiq.domain.memory_repository import create_memory_store
from studyiq.domain.model import (
    AdaptiveQuizGeneration,
    AdaptiveQuizResult,
    AdaptiveQuizSession,
    Difficulty,
    EligibilityReport,
    PerformanceSnapshot,
    ProgressStats,
    ReviewResult,
    ReviewSession,
    SpacedRepetitionSchedule,
)
from studyiq.domain.repository import Store
from studyiq.scheduling.scheduler import SpacedRepetitionScheduler
from studyiq.selection.acquisition import ItemAcquisition
from studyiq.selection.engine import QuestionSelectionEngine, SelectionCriteria

logger = app_logger.getChild("service")


class AdaptiveLearningService:
    """
    Facade over the adaptive learning components.

    Build it with ``create_service`` (or ``create_sql_service``) rather than
    directly.
    """

    def __init__(
        self,
        store: Store,
        analytics: PerformanceAnalyticsEngine,
        selection: QuestionSelectionEngine,
        scheduler: SpacedRepetitionScheduler,
        orchestrator: AdaptiveQuizOrchestrator
    ):
        self.store = store
        self.analytics = analytics
        self.selection = selection
        self.scheduler = scheduler
        self.orchestrator = orchestrator

    # Adaptive quizzes

    async def generate_adaptive_quiz(self, user_id: str) -> AdaptiveQuizGeneration:
        return await self.orchestrator.generate(user_id)

    async def submit_adaptive_quiz_results(
        self,
        session_id: str,
        answers: Mapping[str, Any],
        time_spent_seconds: int = 0
    ) -> AdaptiveQuizResult:
        return await self.orchestrator.submit_results(session_id, answers, time_spent_seconds)

    async def check_adaptive_quiz_eligibility(self, user_id: str) -> EligibilityReport:
        return await self.orchestrator.check_eligibility(user_id)

    async def abandon_adaptive_quiz(self, session_id: str) -> AdaptiveQuizSession:
        return await self.orchestrator.abandon_session(session_id)

    # Analytics and selection

    @log_execution_time(logger)
    async def analyze_user_performance(self, user_id: str) -> PerformanceSnapshot:
        return await self.analytics.analyze(user_id)

    async def get_selection_statistics(self, criteria: SelectionCriteria) -> Dict[str, Any]:
        return await self.selection.get_selection_statistics(criteria)

    async def get_cache_stats(self) -> Dict[str, Any]:
        return await self.analytics.cache.get_stats()

    # Spaced repetition

    async def create_spaced_repetition_schedule(
        self,
        user_id: str,
        deck_name: str,
        question_ids: Iterable[str],
        difficulty_hint: Optional[Difficulty] = None
    ) -> SpacedRepetitionSchedule:
        return await self.scheduler.create_schedule(user_id, deck_name, question_ids, difficulty_hint)

    async def generate_review_session(
        self,
        user_id: str,
        max_cards: Optional[int] = None,
        duration_minutes: Optional[int] = None
    ) -> Optional[ReviewSession]:
        return await self.scheduler.generate_review_session(user_id, max_cards, duration_minutes)

    async def update_schedule_after_review(
        self,
        schedule_id: str,
        results: List[ReviewResult]
    ) -> SpacedRepetitionSchedule:
        return await self.scheduler.update_after_review(schedule_id, results)

    async def get_user_progress_stats(self, user_id: str) -> ProgressStats:
        return await self.scheduler.get_user_progress_stats(user_id)


def create_cache_backend(config: AppConfig, clock: Clock) -> CacheBackend:
    """
    Build the analytics cache backend named by ``config.cache.backend``.

    Args:
        config: Application configuration
        clock: Clock driving expiry of the memory backend

    Returns:
        A MemoryCacheBackend or a RedisCacheBackend
    """
    if config.cache.backend == "redis":
        logger.info(f"Using Redis analytics cache at {config.redis.host}:{config.redis.port}")
        return RedisCacheBackend(
            url=config.redis.connection_string,
            key_prefix=config.cache.redis_key_prefix,
            name="analytics",
        )
    return MemoryCacheBackend(
        max_size=config.cache.memory_max_size,
        name="analytics",
        time_func=clock.timestamp,
    )


def create_service(
    config: Optional[AppConfig] = None,
    store: Optional[Store] = None,
    cache_backend: Optional[CacheBackend] = None,
    clock: Optional[Clock] = None,
    item_acquisition: Optional[ItemAcquisition] = None,
    rng: Optional[random.Random] = None
) -> AdaptiveLearningService:
    """
    Wire an AdaptiveLearningService.

    Args:
        config: Application configuration (defaults to ``get_config()``)
        store: Store to use (defaults to an empty in-memory store)
        cache_backend: Analytics cache backend (defaults to the configured one)
        clock: Time source (defaults to the system clock)
        item_acquisition: Optional item source for generation; the question
            pool is used when omitted
        rng: Random source for question shuffling

    Returns:
        The wired service
    """
    config = config or get_config()
    clock = clock or SystemClock()
    if store is None:
        logger.warning("No store given; using an empty in-memory store")
        store = create_memory_store()

    cache = AnalyticsCache(
        backend=cache_backend or create_cache_backend(config, clock),
        ttl_seconds=config.cache.analytics_ttl_seconds,
        enabled=config.cache.enabled,
    )
    analytics = PerformanceAnalyticsEngine(store, cache=cache, config=config.analytics, clock=clock)
    selection = QuestionSelectionEngine(store, config=config.selection, rng=rng, clock=clock)
    scheduler = SpacedRepetitionScheduler(store, config=config.spaced_repetition, clock=clock)
    orchestrator = AdaptiveQuizOrchestrator(
        store,
        analytics=analytics,
        selection=selection,
        rate_limiter=GenerationRateLimiter(store, config=config.adaptive, clock=clock),
        config=config.adaptive,
        clock=clock,
        item_acquisition=item_acquisition,
    )

    logger.info(
        f"Adaptive learning service ready (cache={cache_backend.name if cache_backend else config.cache.backend}, "
        f"items={'acquisition' if item_acquisition else 'pool'})"
    )
    return AdaptiveLearningService(store, analytics, selection, scheduler, orchestrator)


async def create_sql_service(config: Optional[AppConfig] = None, **kwargs) -> AdaptiveLearningService:
    """
    Wire an AdaptiveLearningService over the SQL store of ``config.database``.

    Logging is configured from ``config.logging`` and tables are created
    when missing. Remaining keyword arguments go to ``create_service``.
    """
    config = config or get_config()
    apply_logging_config(config.logging)
    engine = create_engine(config.database)
    await init_models(engine)
    return create_service(config=config, store=create_sql_store(engine), **kwargs)
