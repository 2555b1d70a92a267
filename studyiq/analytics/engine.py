"""
Performance Analytics Engine

Computes category-level and overall success statistics from a learner's
attempt history and ranks categories into weakest and strongest sets.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from studyiq.common.clock import Clock, SystemClock
from studyiq.common.config import AnalyticsConfig
from studyiq.common.error_handling import InsufficientDataError
from studyiq.common.logger import app_logger, log_execution_time
from studyiq.domain.model import Attempt, CategoryPerformance, PerformanceSnapshot
from studyiq.domain.repository import Store

from .cache import AnalyticsCache

logger = app_logger.getChild("analytics.engine")


@dataclass
class _CategoryTally:
    total: int = 0
    correct: int = 0
    last_attempt: Optional[datetime] = None

    def add(self, correct: bool, completed_at: datetime) -> None:
        self.total += 1
        if correct:
            self.correct += 1
        if self.last_attempt is None or completed_at > self.last_attempt:
            self.last_attempt = completed_at


def rank_categories(
    performances: List[CategoryPerformance],
    min_attempts: int = 3,
    limit: int = 3
) -> Tuple[List[CategoryPerformance], List[CategoryPerformance]]:
    """
    Split eligible categories into weakest and strongest.

    Only categories with at least ``min_attempts`` answers are eligible. The
    weakest take the lower half (rounded up) of the ascending order and the
    strongest come from what remains, so a category never appears in both.

    Args:
        performances: Per-category statistics
        min_attempts: Minimum answers for a category to be ranked
        limit: Maximum size of each list

    Returns:
        Tuple of (weakest ascending, strongest descending)
    """
    eligible = sorted(
        (p for p in performances if p.total_questions >= min_attempts),
        key=lambda p: (p.success_rate, p.category_id)
    )
    weak_count = min(limit, math.ceil(len(eligible) / 2))
    weakest = eligible[:weak_count]
    remaining = eligible[weak_count:]
    strong_count = min(limit, len(remaining))
    strongest = list(reversed(remaining))[:strong_count]
    return weakest, strongest


class PerformanceAnalyticsEngine:
    """
    Analyzes attempt history into PerformanceSnapshot objects.

    Snapshots are cached per user; callers that persist new attempts or
    adaptive results must call ``invalidate`` afterwards.
    """

    def __init__(
        self,
        store: Store,
        cache: Optional[AnalyticsCache] = None,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._cache = cache or AnalyticsCache()
        self._config = config or AnalyticsConfig()
        self._clock = clock or SystemClock()

    @property
    def cache(self) -> AnalyticsCache:
        return self._cache

    @property
    def min_valid_attempts(self) -> int:
        return self._config.min_valid_attempts

    async def _valid_attempts(self, user_id: str) -> List[Attempt]:
        attempts = await self._store.attempts.list_for_student(
            user_id, limit=self._config.attempt_fetch_limit, valid_only=True
        )
        return [attempt for attempt in attempts if attempt.is_valid]

    async def has_minimum_data(self, user_id: str) -> bool:
        """
        Check whether a user has enough scored attempts to be analyzed.

        Args:
            user_id: The learner

        Returns:
            True if at least ``min_valid_attempts`` attempts have a valid score
        """
        return await self.count_valid_attempts(user_id) >= self._config.min_valid_attempts

    async def count_valid_attempts(self, user_id: str) -> int:
        return len(await self._valid_attempts(user_id))

    @log_execution_time(logger)
    async def analyze(self, user_id: str) -> PerformanceSnapshot:
        """
        Build (or fetch from cache) the performance snapshot of a user.

        Args:
            user_id: The learner

        Returns:
            The user's PerformanceSnapshot

        Raises:
            InsufficientDataError: If fewer than the minimum valid attempts exist
        """
        cached = await self._cache.get(user_id)
        if cached is not None:
            logger.debug(f"Analytics cache hit for user {user_id}")
            return cached

        attempts = await self._valid_attempts(user_id)
        if len(attempts) < self._config.min_valid_attempts:
            raise InsufficientDataError(
                f"At least {self._config.min_valid_attempts} completed quizzes are required for analysis",
                required=self._config.min_valid_attempts,
                current=len(attempts),
                context={"user_id": user_id}
            )

        performances, total_answered, total_correct = await self._compute_category_performances(attempts)
        weakest, strongest = rank_categories(
            performances,
            min_attempts=self._config.min_category_attempts,
            limit=self._config.max_ranked_categories
        )

        snapshot = PerformanceSnapshot(
            user_id=user_id,
            overall_success_rate=total_correct / total_answered if total_answered else 0.0,
            total_quizzes_taken=len(attempts),
            total_questions_answered=total_answered,
            category_performances=performances,
            weakest_categories=weakest,
            strongest_categories=strongest,
            analysis_date=self._clock.now(),
        )

        await self._cache.set(user_id, snapshot)
        logger.info(
            f"Analyzed {len(attempts)} attempts for user {user_id}: "
            f"{len(performances)} categories, overall {snapshot.overall_success_rate:.2f}"
        )
        return snapshot

    async def get_category_performance(self, user_id: str, category_id: str) -> Optional[CategoryPerformance]:
        """
        Recompute a single category's statistics, bypassing the cache.

        Args:
            user_id: The learner
            category_id: Category to compute

        Returns:
            The category's statistics, or None if the user has no answers in it
        """
        attempts = await self._valid_attempts(user_id)
        if not attempts:
            return None
        performances, _, _ = await self._compute_category_performances(attempts)
        for performance in performances:
            if performance.category_id == category_id:
                return performance
        return None

    async def invalidate(self, user_id: str) -> None:
        await self._cache.invalidate(user_id)

    async def _compute_category_performances(
        self,
        attempts: List[Attempt]
    ) -> Tuple[List[CategoryPerformance], int, int]:
        """
        Accumulate per-category totals over ``attempts``.

        Answers whose question cannot be resolved still count towards the
        overall totals but not towards any category.

        Returns:
            Tuple of (performances ordered by category id, total answered, total correct)
        """
        question_ids = {answer.question_id for attempt in attempts for answer in attempt.answers}
        questions = await self._store.questions.get_many(question_ids)

        tallies: Dict[str, _CategoryTally] = {}
        total_answered = 0
        total_correct = 0
        unresolved = 0

        for attempt in attempts:
            for answer in attempt.answers:
                total_answered += 1
                if answer.is_correct:
                    total_correct += 1
                question = questions.get(answer.question_id)
                if question is None:
                    unresolved += 1
                    continue
                tallies.setdefault(question.category_id, _CategoryTally()).add(
                    answer.is_correct, attempt.completed_at
                )

        if unresolved:
            logger.debug(f"{unresolved} answers reference unknown questions and were left uncategorized")

        categories = await self._store.categories.get_many(tallies.keys())
        performances = [
            CategoryPerformance(
                category_id=category_id,
                category_name=categories[category_id].title if category_id in categories else category_id,
                total_questions=tally.total,
                correct_answers=tally.correct,
                success_rate=tally.correct / tally.total,
                last_attempt_date=tally.last_attempt,
            )
            for category_id, tally in sorted(tallies.items())
        ]
        return performances, total_answered, total_correct
