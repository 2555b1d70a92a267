"""
Question Selection Engine

Selects a non-repeating, shuffled question set biased towards a learner's weak
categories. The weak/strong split follows a 70/30 policy that is adjusted for
what the question pool can actually supply.
"""

import math
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from studyiq.common.clock import Clock, SystemClock
from studyiq.common.config import SelectionConfig
from studyiq.common.logger import app_logger
from studyiq.domain.model import Difficulty, Question, QuizDistribution, StudyLevel
from studyiq.domain.repository import Store

logger = app_logger.getChild("selection.engine")


@dataclass
class DifficultyDistribution:
    easy: int
    medium: int
    hard: int

    @property
    def total(self) -> int:
        return self.easy + self.medium + self.hard

    @classmethod
    def default_for(cls, total: int) -> 'DifficultyDistribution':
        """
        Roughly 30% easy, 40% medium, 30% hard.

        Medium and easy are rounded up and hard takes whatever remains, so the
        parts always add up to ``total``.
        """
        medium = min(total, math.ceil(round(total * 0.4, 9)))
        easy = min(total - medium, math.ceil(round(total * 0.3, 9)))
        return cls(easy=easy, medium=medium, hard=total - medium - easy)

    def for_difficulty(self, difficulty: Difficulty) -> int:
        return {
            Difficulty.EASY: self.easy,
            Difficulty.MEDIUM: self.medium,
            Difficulty.HARD: self.hard,
        }[difficulty]


@dataclass
class SelectionCriteria:
    """
    Input of an adaptive selection.

    Attributes:
        student_level: Level of the learner; questions for that level or both match
        weak_category_ids: Categories to draw the weak share from
        strong_category_ids: Categories to draw the strong share from
        target_weak_questions: Explicit weak target (0 lets the policy decide)
        target_strong_questions: Explicit strong target (0 lets the policy decide)
        total_questions: Total used when both targets are 0 (defaults to config)
        exclude_question_ids: Questions that must not be selected
        balance_difficulty: Whether to re-partition the result by difficulty
        difficulty_distribution: Explicit difficulty split for balancing
    """
    student_level: StudyLevel
    weak_category_ids: List[str]
    strong_category_ids: List[str] = field(default_factory=list)
    target_weak_questions: int = 0
    target_strong_questions: int = 0
    total_questions: Optional[int] = None
    exclude_question_ids: List[str] = field(default_factory=list)
    balance_difficulty: bool = False
    difficulty_distribution: Optional[DifficultyDistribution] = None


@dataclass
class SelectionResult:
    questions: List[Question]
    distribution: QuizDistribution
    category_breakdown: Dict[str, int]


def adjust_for_availability(
    weak_target: int,
    strong_target: int,
    weak_available: int,
    strong_available: int
) -> Tuple[int, int]:
    """
    Fit the weak/strong targets to what is available.

    A shortfall on one side moves to the other side, bounded by that side's
    spare availability. The result never exceeds combined availability.

    Returns:
        Tuple of (weak, strong)
    """
    weak = min(weak_target, weak_available)
    weak_deficit = weak_target - weak
    if weak_deficit > 0:
        strong_target += min(weak_deficit, max(0, strong_available - strong_target))

    strong = min(strong_target, strong_available)
    strong_deficit = strong_target - strong
    if strong_deficit > 0:
        weak += min(strong_deficit, max(0, weak_available - weak))

    return weak, strong


def balance_difficulty(questions: List[Question], distribution: DifficultyDistribution) -> List[Question]:
    """
    Re-partition ``questions`` according to ``distribution``.

    Each difficulty band takes up to its quota in the current order; any
    shortfall is filled from the questions not used yet.

    Args:
        questions: Candidates, already shuffled
        distribution: Wanted number per difficulty

    Returns:
        At most ``distribution.total`` questions without duplicates
    """
    balanced: List[Question] = []
    used = set()
    for difficulty in (Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD):
        quota = distribution.for_difficulty(difficulty)
        for question in questions:
            if quota <= 0:
                break
            if question.difficulty is difficulty and question.question_id not in used:
                balanced.append(question)
                used.add(question.question_id)
                quota -= 1

    for question in questions:
        if len(balanced) >= distribution.total:
            break
        if question.question_id not in used:
            balanced.append(question)
            used.add(question.question_id)

    return balanced


class QuestionSelectionEngine:
    """
    Constrained question selection over the question store.

    The random source is injectable so that selections can be reproduced.
    """

    def __init__(
        self,
        store: Store,
        config: Optional[SelectionConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._config = config or SelectionConfig()
        self._rng = rng or random.Random()
        self._clock = clock or SystemClock()

    def apply_distribution_rules(self, criteria: SelectionCriteria) -> Tuple[int, int]:
        """
        Resolve the weak/strong targets of ``criteria``.

        Explicit targets are kept. When both are zero the total (default 7) is
        split with the weak share rounded up.

        Returns:
            Tuple of (weak target, strong target)
        """
        if criteria.target_weak_questions or criteria.target_strong_questions:
            return max(0, criteria.target_weak_questions), max(0, criteria.target_strong_questions)

        total = criteria.total_questions or self._config.default_total
        # round first so that 10 x 0.7 stays 7 instead of 7.000000000000001
        weak = math.ceil(round(total * self._config.weak_ratio, 9))
        return weak, total - weak

    async def check_availability(
        self,
        category_ids: Iterable[str],
        level: StudyLevel,
        exclude_ids: Iterable[str] = ()
    ) -> Dict[str, int]:
        """Count matching questions per category."""
        excluded = list(exclude_ids)
        return {
            category_id: await self._store.questions.count_matching([category_id], level, excluded)
            for category_id in dict.fromkeys(category_ids)
        }

    async def select_questions_from_categories(
        self,
        category_ids: List[str],
        count: int,
        level: StudyLevel,
        exclude_ids: Iterable[str] = ()
    ) -> List[Question]:
        """
        Draw ``count`` random questions from ``category_ids``.

        A candidate pool of max(pool_multiplier x count, min_pool_size) is
        fetched and shuffled; the first ``count`` are returned (or the whole
        pool when it is smaller).
        """
        if count <= 0 or not category_ids:
            return []

        pool_size = max(self._config.pool_multiplier * count, self._config.min_pool_size)
        pool = await self._store.questions.find_matching(category_ids, level, exclude_ids, limit=pool_size)
        self._rng.shuffle(pool)
        return pool[:count]

    async def select_adaptive_questions(self, criteria: SelectionCriteria) -> SelectionResult:
        """
        Select an adaptive question set.

        Args:
            criteria: Categories, targets, level and exclusions

        Returns:
            SelectionResult with the questions and their actual distribution
        """
        weak_target, strong_target = self.apply_distribution_rules(criteria)
        excluded = list(criteria.exclude_question_ids)

        weak_availability = await self.check_availability(criteria.weak_category_ids, criteria.student_level, excluded)
        strong_availability = await self.check_availability(criteria.strong_category_ids, criteria.student_level, excluded)

        weak_categories = [c for c, available in weak_availability.items() if available > 0]
        strong_categories = [c for c, available in strong_availability.items() if available > 0]
        dropped = [c for c, available in {**weak_availability, **strong_availability}.items() if available == 0]
        if dropped:
            logger.debug(f"Dropping categories without available questions: {dropped}")

        weak_count, strong_count = adjust_for_availability(
            weak_target,
            strong_target,
            sum(weak_availability.values()),
            sum(strong_availability.values()),
        )

        weak_questions = await self.select_questions_from_categories(
            weak_categories, weak_count, criteria.student_level, excluded
        )
        excluded.extend(q.question_id for q in weak_questions)
        strong_questions = await self.select_questions_from_categories(
            strong_categories, strong_count, criteria.student_level, excluded
        )

        # shuffled after joining and again after balancing, so neither the
        # weak/strong split nor the difficulty bands show in the order
        questions = weak_questions + strong_questions
        self._rng.shuffle(questions)
        if criteria.balance_difficulty and questions:
            distribution = criteria.difficulty_distribution or DifficultyDistribution.default_for(len(questions))
            questions = balance_difficulty(questions, distribution)
            self._rng.shuffle(questions)

        weak_ids = {q.question_id for q in weak_questions}
        selected_weak = sum(1 for q in questions if q.question_id in weak_ids)
        breakdown: Dict[str, int] = {}
        for question in questions:
            breakdown[question.category_id] = breakdown.get(question.category_id, 0) + 1

        logger.info(
            f"Selected {len(questions)} questions "
            f"({selected_weak} weak / {len(questions) - selected_weak} strong; "
            f"targets {weak_target}/{strong_target})"
        )
        return SelectionResult(
            questions=questions,
            distribution=QuizDistribution(
                weak=selected_weak,
                strong=len(questions) - selected_weak,
                total=len(questions),
            ),
            category_breakdown=breakdown,
        )

    async def exclude_recent_questions(self, user_id: str, days: Optional[int] = None) -> List[str]:
        """
        Question ids of every session the user generated in the last ``days``.

        Store failures degrade to an empty list.
        """
        days = self._config.recent_window_days if days is None else days
        cutoff = self._clock.now() - timedelta(days=days)
        try:
            sessions = await self._store.sessions.list_for_user(user_id, created_after=cutoff)
        except Exception as e:
            logger.warning(f"Could not load recent sessions for user {user_id}: {e}")
            return []

        recent: Dict[str, None] = {}
        for session in sessions:
            for question_id in session.question_ids:
                recent[question_id] = None
        return list(recent)

    async def get_selection_statistics(self, criteria: SelectionCriteria) -> Dict[str, Any]:
        """
        Report availability and the resulting distribution without selecting.

        Args:
            criteria: Selection input to evaluate

        Returns:
            Dictionary with totals, per-category availability and targets
        """
        weak_target, strong_target = self.apply_distribution_rules(criteria)
        excluded = list(criteria.exclude_question_ids)
        weak_availability = await self.check_availability(criteria.weak_category_ids, criteria.student_level, excluded)
        strong_availability = await self.check_availability(criteria.strong_category_ids, criteria.student_level, excluded)
        weak_available = sum(weak_availability.values())
        strong_available = sum(strong_availability.values())
        weak_count, strong_count = adjust_for_availability(weak_target, strong_target, weak_available, strong_available)

        return {
            "total_available": weak_available + strong_available,
            "weak_available": weak_available,
            "strong_available": strong_available,
            "category_availability": {**strong_availability, **weak_availability},
            "target_distribution": {"weak": weak_target, "strong": strong_target, "total": weak_target + strong_target},
            "adjusted_distribution": {"weak": weak_count, "strong": strong_count, "total": weak_count + strong_count},
        }
