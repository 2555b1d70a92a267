"""
Repository Interfaces Module

This module defines the abstract store operations the engine depends on. Each
repository covers one record set; implementations must make every call atomic
on its own, but the engine never composes multi-record transactions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .model import (
    AdaptiveQuizResult,
    AdaptiveQuizSession,
    Attempt,
    Category,
    Question,
    ReviewTask,
    SpacedRepetitionCard,
    SpacedRepetitionSchedule,
    StudyLevel,
    User,
)


class UserRepository(ABC):

    @abstractmethod
    async def get(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def save(self, user: User) -> User:
        pass


class CategoryRepository(ABC):

    @abstractmethod
    async def get_many(self, category_ids: Iterable[str]) -> Dict[str, Category]:
        """Return the categories that exist among ``category_ids``, keyed by id."""
        pass

    @abstractmethod
    async def save(self, category: Category) -> Category:
        pass


class QuestionRepository(ABC):
    """
    Abstract interface for question storage.

    ``level`` filters follow the matching rule used throughout selection: a
    question matches a learner level when it targets that level or both.
    """

    @abstractmethod
    async def get_by_id(self, question_id: str) -> Optional[Question]:
        pass

    @abstractmethod
    async def get_many(self, question_ids: Iterable[str]) -> Dict[str, Question]:
        pass

    @abstractmethod
    async def save(self, question: Question) -> Question:
        pass

    @abstractmethod
    async def count_matching(
        self,
        category_ids: List[str],
        level: StudyLevel,
        exclude_ids: Iterable[str] = ()
    ) -> int:
        """
        Count questions in ``category_ids`` available to ``level``.

        Args:
            category_ids: Categories to search
            level: Learner level
            exclude_ids: Question ids to leave out

        Returns:
            Number of matching questions
        """
        pass

    @abstractmethod
    async def find_matching(
        self,
        category_ids: List[str],
        level: StudyLevel,
        exclude_ids: Iterable[str] = (),
        limit: Optional[int] = None
    ) -> List[Question]:
        pass

    @abstractmethod
    async def record_usage(self, question_id: str, correct: bool) -> None:
        """Fold one answer into the question's rolling usage counters."""
        pass


class AttemptRepository(ABC):

    @abstractmethod
    async def list_for_student(self, student_id: str, limit: int, valid_only: bool = False) -> List[Attempt]:
        """Most recent attempts first; with ``valid_only`` unscored attempts do not count towards ``limit``."""
        pass

    @abstractmethod
    async def save(self, attempt: Attempt) -> Attempt:
        pass


class SessionRepository(ABC):

    @abstractmethod
    async def get(self, session_id: str) -> Optional[AdaptiveQuizSession]:
        pass

    @abstractmethod
    async def create(self, session: AdaptiveQuizSession) -> AdaptiveQuizSession:
        pass

    @abstractmethod
    async def update(self, session: AdaptiveQuizSession) -> AdaptiveQuizSession:
        pass

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        created_after: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AdaptiveQuizSession]:
        """Sessions of ``user_id``, newest first, optionally bounded in time and count."""
        pass

    @abstractmethod
    async def count_created_since(self, user_id: str, since: datetime) -> int:
        pass


class ResultRepository(ABC):

    @abstractmethod
    async def create(self, result: AdaptiveQuizResult) -> AdaptiveQuizResult:
        """
        Persist a result.

        Raises:
            ConflictError: If a result for the same session already exists
        """
        pass

    @abstractmethod
    async def get_by_session(self, session_id: str) -> Optional[AdaptiveQuizResult]:
        pass

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        limit: Optional[int] = None,
        exclude_session_id: Optional[str] = None
    ) -> List[AdaptiveQuizResult]:
        """Results of ``user_id``, most recently completed first."""
        pass


class ScheduleRepository(ABC):
    """
    Abstract interface for spaced-repetition schedules.

    Cards are stored per (schedule_id, question_id) so that an update only
    rewrites the cards it touched.
    """

    @abstractmethod
    async def create(self, schedule: SpacedRepetitionSchedule) -> SpacedRepetitionSchedule:
        pass

    @abstractmethod
    async def get(self, schedule_id: str) -> Optional[SpacedRepetitionSchedule]:
        pass

    @abstractmethod
    async def update(
        self,
        schedule: SpacedRepetitionSchedule,
        changed_cards: List[SpacedRepetitionCard]
    ) -> SpacedRepetitionSchedule:
        """Persist schedule aggregates and the given cards."""
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[SpacedRepetitionSchedule]:
        pass

    @abstractmethod
    async def list_due_cards(self, user_id: str, due_before: datetime) -> List[SpacedRepetitionCard]:
        """Cards of every schedule of ``user_id`` with next_review_date <= ``due_before``."""
        pass

    @abstractmethod
    async def create_review_task(self, task: ReviewTask) -> ReviewTask:
        pass


@dataclass
class Store:
    """The record sets the engine reads and writes."""
    users: UserRepository
    categories: CategoryRepository
    questions: QuestionRepository
    attempts: AttemptRepository
    sessions: SessionRepository
    results: ResultRepository
    schedules: ScheduleRepository
