"""
Memory Repository Module

In-memory implementations of the store interfaces for development and testing.
Records are copied on the way in and out so callers never share mutable state
with the store, which mirrors how a real backing store behaves.
"""

import asyncio
import copy
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from studyiq.common.error_handling import ConflictError, NotFoundError

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
from .repository import (
    AttemptRepository,
    CategoryRepository,
    QuestionRepository,
    ResultRepository,
    ScheduleRepository,
    SessionRepository,
    Store,
    UserRepository,
)

logger = logging.getLogger(__name__)


def level_matches(question_level: StudyLevel, learner_level: StudyLevel) -> bool:
    return question_level is StudyLevel.BOTH or question_level is learner_level


class MemoryUserRepository(UserRepository):

    def __init__(self, initial_data: Optional[List[User]] = None):
        self._users: Dict[str, User] = {u.user_id: copy.deepcopy(u) for u in initial_data or []}

    async def get(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def save(self, user: User) -> User:
        self._users[user.user_id] = copy.deepcopy(user)
        return user


class MemoryCategoryRepository(CategoryRepository):

    def __init__(self, initial_data: Optional[List[Category]] = None):
        self._categories: Dict[str, Category] = {c.category_id: copy.deepcopy(c) for c in initial_data or []}

    async def get_many(self, category_ids: Iterable[str]) -> Dict[str, Category]:
        return {
            category_id: copy.deepcopy(self._categories[category_id])
            for category_id in set(category_ids)
            if category_id in self._categories
        }

    async def save(self, category: Category) -> Category:
        self._categories[category.category_id] = copy.deepcopy(category)
        return category


class MemoryQuestionRepository(QuestionRepository):
    """
    In-memory implementation of the QuestionRepository.

    Iteration order is insertion order, so matching queries are stable.
    """

    def __init__(self, initial_data: Optional[List[Question]] = None):
        self._questions: Dict[str, Question] = {}
        self._lock = asyncio.Lock()
        for question in initial_data or []:
            self._questions[question.question_id] = copy.deepcopy(question)

    async def get_by_id(self, question_id: str) -> Optional[Question]:
        question = self._questions.get(question_id)
        return copy.deepcopy(question) if question else None

    async def get_many(self, question_ids: Iterable[str]) -> Dict[str, Question]:
        return {
            question_id: copy.deepcopy(self._questions[question_id])
            for question_id in set(question_ids)
            if question_id in self._questions
        }

    async def save(self, question: Question) -> Question:
        self._questions[question.question_id] = copy.deepcopy(question)
        return question

    def _matching(self, category_ids: List[str], level: StudyLevel, exclude_ids: Iterable[str]) -> List[Question]:
        categories = set(category_ids)
        excluded = set(exclude_ids)
        return [
            question for question in self._questions.values()
            if question.category_id in categories
            and level_matches(question.student_level, level)
            and question.question_id not in excluded
        ]

    async def count_matching(self, category_ids: List[str], level: StudyLevel,
                             exclude_ids: Iterable[str] = ()) -> int:
        return len(self._matching(category_ids, level, exclude_ids))

    async def find_matching(self, category_ids: List[str], level: StudyLevel,
                            exclude_ids: Iterable[str] = (), limit: Optional[int] = None) -> List[Question]:
        matches = self._matching(category_ids, level, exclude_ids)
        if limit is not None:
            matches = matches[:limit]
        return [copy.deepcopy(question) for question in matches]

    async def record_usage(self, question_id: str, correct: bool) -> None:
        async with self._lock:
            question = self._questions.get(question_id)
            if question is None:
                raise NotFoundError("Question", question_id)
            question.record_usage(correct)

    def get_all(self) -> List[Question]:
        return [copy.deepcopy(question) for question in self._questions.values()]


class MemoryAttemptRepository(AttemptRepository):

    def __init__(self, initial_data: Optional[List[Attempt]] = None):
        self._attempts: List[Attempt] = list(initial_data or [])

    async def list_for_student(self, student_id: str, limit: int, valid_only: bool = False) -> List[Attempt]:
        attempts = [a for a in self._attempts if a.student_id == student_id and (a.is_valid or not valid_only)]
        attempts.sort(key=lambda a: a.completed_at, reverse=True)
        return attempts[:limit]

    async def save(self, attempt: Attempt) -> Attempt:
        # Attempts are frozen, so they can be shared safely
        self._attempts.append(attempt)
        return attempt


class MemorySessionRepository(SessionRepository):

    def __init__(self):
        self._sessions: Dict[str, AdaptiveQuizSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[AdaptiveQuizSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def create(self, session: AdaptiveQuizSession) -> AdaptiveQuizSession:
        async with self._lock:
            if session.session_id in self._sessions:
                raise ConflictError("AdaptiveQuizSession", session.session_id)
            self._sessions[session.session_id] = copy.deepcopy(session)
        return session

    async def update(self, session: AdaptiveQuizSession) -> AdaptiveQuizSession:
        async with self._lock:
            if session.session_id not in self._sessions:
                raise NotFoundError("AdaptiveQuizSession", session.session_id)
            self._sessions[session.session_id] = copy.deepcopy(session)
        return session

    async def list_for_user(self, user_id: str, created_after: Optional[datetime] = None,
                            limit: Optional[int] = None) -> List[AdaptiveQuizSession]:
        sessions = [
            s for s in self._sessions.values()
            if s.user_id == user_id and (created_after is None or s.created_at >= created_after)
        ]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        if limit is not None:
            sessions = sessions[:limit]
        return [copy.deepcopy(s) for s in sessions]

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        return sum(1 for s in self._sessions.values() if s.user_id == user_id and s.created_at >= since)


class MemoryResultRepository(ResultRepository):
    """Result store with one result per session, enforced at write time."""

    def __init__(self):
        self._results: Dict[str, AdaptiveQuizResult] = {}
        self._lock = asyncio.Lock()

    async def create(self, result: AdaptiveQuizResult) -> AdaptiveQuizResult:
        async with self._lock:
            if result.session_id in self._results:
                raise ConflictError("AdaptiveQuizResult", result.session_id)
            self._results[result.session_id] = copy.deepcopy(result)
        return result

    async def get_by_session(self, session_id: str) -> Optional[AdaptiveQuizResult]:
        result = self._results.get(session_id)
        return copy.deepcopy(result) if result else None

    async def list_for_user(self, user_id: str, limit: Optional[int] = None,
                            exclude_session_id: Optional[str] = None) -> List[AdaptiveQuizResult]:
        results = [
            r for r in self._results.values()
            if r.user_id == user_id and r.session_id != exclude_session_id
        ]
        results.sort(key=lambda r: r.completed_at, reverse=True)
        if limit is not None:
            results = results[:limit]
        return [copy.deepcopy(r) for r in results]


class MemoryScheduleRepository(ScheduleRepository):

    def __init__(self):
        self._schedules: Dict[str, SpacedRepetitionSchedule] = {}
        self._tasks: Dict[str, ReviewTask] = {}
        self._lock = asyncio.Lock()

    async def create(self, schedule: SpacedRepetitionSchedule) -> SpacedRepetitionSchedule:
        async with self._lock:
            if schedule.schedule_id in self._schedules:
                raise ConflictError("SpacedRepetitionSchedule", schedule.schedule_id)
            self._schedules[schedule.schedule_id] = copy.deepcopy(schedule)
        return schedule

    async def get(self, schedule_id: str) -> Optional[SpacedRepetitionSchedule]:
        schedule = self._schedules.get(schedule_id)
        return copy.deepcopy(schedule) if schedule else None

    async def update(self, schedule: SpacedRepetitionSchedule,
                     changed_cards: List[SpacedRepetitionCard]) -> SpacedRepetitionSchedule:
        async with self._lock:
            stored = self._schedules.get(schedule.schedule_id)
            if stored is None:
                raise NotFoundError("SpacedRepetitionSchedule", schedule.schedule_id)
            changed = {card.question_id: copy.deepcopy(card) for card in changed_cards}
            stored.cards = [changed.get(card.question_id, card) for card in stored.cards]
            stored.total_cards = schedule.total_cards
            stored.active_cards = schedule.active_cards
            stored.completed_cards = schedule.completed_cards
            stored.average_ease_factor = schedule.average_ease_factor
            stored.updated_at = schedule.updated_at
        return schedule

    async def list_for_user(self, user_id: str) -> List[SpacedRepetitionSchedule]:
        schedules = [s for s in self._schedules.values() if s.user_id == user_id]
        schedules.sort(key=lambda s: s.created_at)
        return [copy.deepcopy(s) for s in schedules]

    async def list_due_cards(self, user_id: str, due_before: datetime) -> List[SpacedRepetitionCard]:
        return [
            copy.deepcopy(card)
            for schedule in self._schedules.values() if schedule.user_id == user_id
            for card in schedule.cards if card.next_review_date <= due_before
        ]

    async def create_review_task(self, task: ReviewTask) -> ReviewTask:
        self._tasks[task.task_id] = copy.deepcopy(task)
        return task

    def get_tasks(self) -> List[ReviewTask]:
        return [copy.deepcopy(task) for task in self._tasks.values()]


def create_memory_store(
    users: Optional[List[User]] = None,
    categories: Optional[List[Category]] = None,
    questions: Optional[List[Question]] = None,
    attempts: Optional[List[Attempt]] = None
) -> Store:
    """
    Build a Store backed entirely by memory.

    Args:
        users: Optional users to seed
        categories: Optional categories to seed
        questions: Optional questions to seed
        attempts: Optional attempts to seed

    Returns:
        A Store whose repositories live in this process
    """
    return Store(
        users=MemoryUserRepository(users),
        categories=MemoryCategoryRepository(categories),
        questions=MemoryQuestionRepository(questions),
        attempts=MemoryAttemptRepository(attempts),
        sessions=MemorySessionRepository(),
        results=MemoryResultRepository(),
        schedules=MemoryScheduleRepository(),
    )
