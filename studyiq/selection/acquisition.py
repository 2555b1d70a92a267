"""
Item acquisition.

The orchestrator obtains quiz items for a category through the ItemAcquisition
interface. How items are produced (a content pipeline, a generator service, a
fixed pool) is opaque to the engine; PoolItemAcquisition is the deterministic
implementation that draws from the existing question pool.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List

from studyiq.common.logger import app_logger
from studyiq.domain.model import Question, StudyLevel

from .engine import QuestionSelectionEngine

logger = app_logger.getChild("selection.acquisition")


class ItemAcquisition(ABC):
    """Source of quiz items for one category."""

    @abstractmethod
    async def acquire(
        self,
        category_id: str,
        level: StudyLevel,
        count: int,
        exclude_ids: Iterable[str] = ()
    ) -> List[Question]:
        """
        Obtain up to ``count`` questions for ``category_id``.

        Args:
            category_id: Category to acquire for
            level: Learner level the questions must suit
            count: Number of questions wanted
            exclude_ids: Question ids that must not be returned

        Returns:
            The acquired questions, with answer-correctness markers
        """
        pass


class PoolItemAcquisition(ItemAcquisition):
    """Acquires items by random selection from the stored question pool."""

    def __init__(self, selection_engine: QuestionSelectionEngine):
        self._selection = selection_engine

    async def acquire(self, category_id: str, level: StudyLevel, count: int,
                      exclude_ids: Iterable[str] = ()) -> List[Question]:
        questions = await self._selection.select_questions_from_categories(
            [category_id], count, level, exclude_ids
        )
        if len(questions) < count:
            logger.debug(f"Pool supplied {len(questions)}/{count} questions for category {category_id}")
        return questions
