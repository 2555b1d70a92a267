"""
SQL Repository Module

SQLAlchemy implementations of the store interfaces. Each public method runs in
its own transaction; uniqueness violations surface as ConflictError.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from studyiq.common.error_handling import ConflictError, NotFoundError
from studyiq.common.logger import app_logger
from studyiq.domain.model import (
    AdaptiveQuizResult,
    AdaptiveQuizSession,
    Attempt,
    AttemptAnswer,
    Category,
    CategoryResult,
    Difficulty,
    ProgressComparison,
    Question,
    QuestionOption,
    QuestionType,
    QuizDistribution,
    Recommendation,
    ReviewTask,
    SessionStatus,
    SpacedRepetitionCard,
    SpacedRepetitionSchedule,
    StudyLevel,
    User,
)
from studyiq.domain.repository import (
    AttemptRepository,
    CategoryRepository,
    QuestionRepository,
    ResultRepository,
    ScheduleRepository,
    SessionRepository,
    Store,
    UserRepository,
)

from .session import create_session_factory, session_scope
from .tables import (
    AdaptiveResultRow,
    AdaptiveSessionRow,
    AttemptRow,
    CardRow,
    CategoryRow,
    QuestionRow,
    ReviewTaskRow,
    ScheduleRow,
    UserRow,
)

logger = app_logger.getChild("db.repository")


class SqlRepository:
    """Shared plumbing for the SQL repositories."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    def _scope(self):
        return session_scope(self._session_factory)


def _question_from_row(row: QuestionRow) -> Question:
    return Question(
        question_id=row.question_id,
        category_id=row.category_id,
        text=row.text,
        options=[QuestionOption.from_dict(option) for option in row.options or []],
        difficulty=Difficulty(row.difficulty),
        student_level=StudyLevel(row.student_level),
        question_type=QuestionType(row.question_type),
        explanation=row.explanation,
        times_used=row.times_used,
        success_rate=row.success_rate,
    )


def _session_from_row(row: AdaptiveSessionRow) -> AdaptiveQuizSession:
    return AdaptiveQuizSession(
        session_id=row.session_id,
        user_id=row.user_id,
        question_ids=list(row.question_ids or []),
        distribution=QuizDistribution.from_dict(row.distribution or {}),
        analytics=dict(row.analytics or {}),
        student_level=StudyLevel(row.student_level),
        config=dict(row.config or {}),
        created_at=row.created_at,
        expires_at=row.expires_at,
        status=SessionStatus(row.status),
        completed_at=row.completed_at,
    )


def _session_values(session: AdaptiveQuizSession) -> Dict:
    return {
        "session_id": session.session_id,
        "user_id": session.user_id,
        "question_ids": list(session.question_ids),
        "distribution": session.distribution.to_dict(),
        "analytics": dict(session.analytics),
        "student_level": session.student_level.value,
        "config": dict(session.config),
        "status": session.status.value,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
        "completed_at": session.completed_at,
    }


def _result_from_row(row: AdaptiveResultRow) -> AdaptiveQuizResult:
    return AdaptiveQuizResult(
        result_id=row.result_id,
        session_id=row.session_id,
        user_id=row.user_id,
        overall_score=row.overall_score,
        max_score=row.max_score,
        success_rate=row.success_rate,
        time_spent_seconds=row.time_spent_seconds,
        category_results=[CategoryResult.from_dict(c) for c in row.category_results or []],
        recommendations=[Recommendation.from_dict(r) for r in row.recommendations or []],
        progress_comparison=ProgressComparison.from_dict(row.progress_comparison),
        improvement_areas=list(row.improvement_areas or []),
        strength_areas=list(row.strength_areas or []),
        completed_at=row.completed_at,
        next_adaptive_quiz_available_at=row.next_available_at,
    )


def _card_from_row(row: CardRow) -> SpacedRepetitionCard:
    return SpacedRepetitionCard(
        schedule_id=row.schedule_id,
        question_id=row.question_id,
        ease_factor=row.ease_factor,
        interval=row.interval_days,
        repetitions=row.repetitions,
        next_review_date=row.next_review_date,
        last_review_date=row.last_review_date,
        quality=row.quality,
    )


def _card_row(card: SpacedRepetitionCard, user_id: str, position: int) -> CardRow:
    return CardRow(
        schedule_id=card.schedule_id,
        question_id=card.question_id,
        user_id=user_id,
        position=position,
        ease_factor=card.ease_factor,
        interval_days=card.interval,
        repetitions=card.repetitions,
        next_review_date=card.next_review_date,
        last_review_date=card.last_review_date,
        quality=card.quality,
    )


class SqlUserRepository(SqlRepository, UserRepository):

    async def get(self, user_id: str) -> Optional[User]:
        async with self._scope() as session:
            row = await session.get(UserRow, user_id)
            if row is None:
                return None
            return User(
                user_id=row.user_id,
                study_level=StudyLevel(row.study_level) if row.study_level else None,
                created_at=row.created_at,
            )

    async def save(self, user: User) -> User:
        async with self._scope() as session:
            await session.merge(UserRow(
                user_id=user.user_id,
                study_level=user.study_level.value if user.study_level else None,
                created_at=user.created_at,
            ))
        return user


class SqlCategoryRepository(SqlRepository, CategoryRepository):

    async def get_many(self, category_ids: Iterable[str]) -> Dict[str, Category]:
        ids = list(set(category_ids))
        if not ids:
            return {}
        async with self._scope() as session:
            rows = await session.scalars(select(CategoryRow).where(CategoryRow.category_id.in_(ids)))
            return {row.category_id: Category(row.category_id, row.title) for row in rows}

    async def save(self, category: Category) -> Category:
        async with self._scope() as session:
            await session.merge(CategoryRow(category_id=category.category_id, title=category.title))
        return category


class SqlQuestionRepository(SqlRepository, QuestionRepository):

    async def get_by_id(self, question_id: str) -> Optional[Question]:
        async with self._scope() as session:
            row = await session.get(QuestionRow, question_id)
            return _question_from_row(row) if row else None

    async def get_many(self, question_ids: Iterable[str]) -> Dict[str, Question]:
        ids = list(set(question_ids))
        if not ids:
            return {}
        async with self._scope() as session:
            rows = await session.scalars(select(QuestionRow).where(QuestionRow.question_id.in_(ids)))
            return {row.question_id: _question_from_row(row) for row in rows}

    async def save(self, question: Question) -> Question:
        async with self._scope() as session:
            await session.merge(QuestionRow(
                question_id=question.question_id,
                category_id=question.category_id,
                text=question.text,
                options=[option.to_dict() for option in question.options],
                difficulty=question.difficulty.value,
                student_level=question.student_level.value,
                question_type=question.question_type.value,
                explanation=question.explanation,
                times_used=question.times_used,
                success_rate=question.success_rate,
            ))
        return question

    @staticmethod
    def _matching_clause(category_ids: List[str], level: StudyLevel, exclude_ids: Iterable[str]):
        clauses = [
            QuestionRow.category_id.in_(list(category_ids)),
            or_(QuestionRow.student_level == level.value,
                QuestionRow.student_level == StudyLevel.BOTH.value),
        ]
        excluded = list(set(exclude_ids))
        if excluded:
            clauses.append(QuestionRow.question_id.not_in(excluded))
        return clauses

    async def count_matching(self, category_ids: List[str], level: StudyLevel,
                             exclude_ids: Iterable[str] = ()) -> int:
        if not category_ids:
            return 0
        async with self._scope() as session:
            stmt = select(func.count()).select_from(QuestionRow).where(
                *self._matching_clause(category_ids, level, exclude_ids)
            )
            return int(await session.scalar(stmt) or 0)

    async def find_matching(self, category_ids: List[str], level: StudyLevel,
                            exclude_ids: Iterable[str] = (), limit: Optional[int] = None) -> List[Question]:
        if not category_ids:
            return []
        async with self._scope() as session:
            stmt = (
                select(QuestionRow)
                .where(*self._matching_clause(category_ids, level, exclude_ids))
                .order_by(QuestionRow.question_id)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = await session.scalars(stmt)
            return [_question_from_row(row) for row in rows]

    async def record_usage(self, question_id: str, correct: bool) -> None:
        # Single UPDATE so concurrent submissions do not lose increments
        async with self._scope() as session:
            result = await session.execute(
                update(QuestionRow)
                .where(QuestionRow.question_id == question_id)
                .values(
                    times_used=QuestionRow.times_used + 1,
                    success_rate=(QuestionRow.success_rate * QuestionRow.times_used + (1 if correct else 0))
                    / (QuestionRow.times_used + 1),
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Question", question_id)


class SqlAttemptRepository(SqlRepository, AttemptRepository):

    async def list_for_student(self, student_id: str, limit: int, valid_only: bool = False) -> List[Attempt]:
        query = select(AttemptRow).where(AttemptRow.student_id == student_id)
        if valid_only:
            query = query.where(AttemptRow.final_score.is_not(None), AttemptRow.final_score >= 0)
        async with self._scope() as session:
            rows = await session.scalars(
                query
                .order_by(AttemptRow.completed_at.desc())
                .limit(limit)
            )
            return [
                Attempt(
                    attempt_id=row.attempt_id,
                    student_id=row.student_id,
                    quiz_id=row.quiz_id,
                    answers=tuple(
                        AttemptAnswer(a["question_id"], a.get("submitted_answer"), bool(a.get("is_correct")))
                        for a in row.answers or []
                    ),
                    completed_at=row.completed_at,
                    final_score=row.final_score,
                )
                for row in rows
            ]

    async def save(self, attempt: Attempt) -> Attempt:
        async with self._scope() as session:
            session.add(AttemptRow(
                attempt_id=attempt.attempt_id,
                student_id=attempt.student_id,
                quiz_id=attempt.quiz_id,
                answers=[
                    {"question_id": a.question_id, "submitted_answer": a.submitted_answer, "is_correct": a.is_correct}
                    for a in attempt.answers
                ],
                completed_at=attempt.completed_at,
                final_score=attempt.final_score,
            ))
        return attempt


class SqlSessionRepository(SqlRepository, SessionRepository):

    async def get(self, session_id: str) -> Optional[AdaptiveQuizSession]:
        async with self._scope() as session:
            row = await session.get(AdaptiveSessionRow, session_id)
            return _session_from_row(row) if row else None

    async def create(self, quiz_session: AdaptiveQuizSession) -> AdaptiveQuizSession:
        try:
            async with self._scope() as session:
                session.add(AdaptiveSessionRow(**_session_values(quiz_session)))
        except IntegrityError as e:
            raise ConflictError("AdaptiveQuizSession", quiz_session.session_id, cause=e) from e
        return quiz_session

    async def update(self, quiz_session: AdaptiveQuizSession) -> AdaptiveQuizSession:
        async with self._scope() as session:
            row = await session.get(AdaptiveSessionRow, quiz_session.session_id)
            if row is None:
                raise NotFoundError("AdaptiveQuizSession", quiz_session.session_id)
            row.update(_session_values(quiz_session))
        return quiz_session

    async def list_for_user(self, user_id: str, created_after: Optional[datetime] = None,
                            limit: Optional[int] = None) -> List[AdaptiveQuizSession]:
        async with self._scope() as session:
            stmt = select(AdaptiveSessionRow).where(AdaptiveSessionRow.user_id == user_id)
            if created_after is not None:
                stmt = stmt.where(AdaptiveSessionRow.created_at >= created_after)
            stmt = stmt.order_by(AdaptiveSessionRow.created_at.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = await session.scalars(stmt)
            return [_session_from_row(row) for row in rows]

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        async with self._scope() as session:
            stmt = select(func.count()).select_from(AdaptiveSessionRow).where(
                AdaptiveSessionRow.user_id == user_id,
                AdaptiveSessionRow.created_at >= since,
            )
            return int(await session.scalar(stmt) or 0)


class SqlResultRepository(SqlRepository, ResultRepository):
    """Result store; the unique constraint on session_id allows one result per session."""

    async def create(self, result: AdaptiveQuizResult) -> AdaptiveQuizResult:
        try:
            async with self._scope() as session:
                session.add(AdaptiveResultRow(
                    result_id=result.result_id,
                    session_id=result.session_id,
                    user_id=result.user_id,
                    overall_score=result.overall_score,
                    max_score=result.max_score,
                    success_rate=result.success_rate,
                    time_spent_seconds=result.time_spent_seconds,
                    category_results=[c.to_dict() for c in result.category_results],
                    recommendations=[r.to_dict() for r in result.recommendations],
                    progress_comparison=result.progress_comparison.to_dict(),
                    improvement_areas=list(result.improvement_areas),
                    strength_areas=list(result.strength_areas),
                    completed_at=result.completed_at,
                    next_available_at=result.next_adaptive_quiz_available_at,
                ))
        except IntegrityError as e:
            raise ConflictError("AdaptiveQuizResult", result.session_id, cause=e) from e
        return result

    async def get_by_session(self, session_id: str) -> Optional[AdaptiveQuizResult]:
        async with self._scope() as session:
            row = await session.scalar(
                select(AdaptiveResultRow).where(AdaptiveResultRow.session_id == session_id)
            )
            return _result_from_row(row) if row else None

    async def list_for_user(self, user_id: str, limit: Optional[int] = None,
                            exclude_session_id: Optional[str] = None) -> List[AdaptiveQuizResult]:
        async with self._scope() as session:
            stmt = select(AdaptiveResultRow).where(AdaptiveResultRow.user_id == user_id)
            if exclude_session_id is not None:
                stmt = stmt.where(AdaptiveResultRow.session_id != exclude_session_id)
            stmt = stmt.order_by(AdaptiveResultRow.completed_at.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = await session.scalars(stmt)
            return [_result_from_row(row) for row in rows]


class SqlScheduleRepository(SqlRepository, ScheduleRepository):

    async def create(self, schedule: SpacedRepetitionSchedule) -> SpacedRepetitionSchedule:
        try:
            async with self._scope() as session:
                session.add(ScheduleRow(
                    schedule_id=schedule.schedule_id,
                    user_id=schedule.user_id,
                    deck_name=schedule.deck_name,
                    total_cards=schedule.total_cards,
                    active_cards=schedule.active_cards,
                    completed_cards=schedule.completed_cards,
                    average_ease_factor=schedule.average_ease_factor,
                    created_at=schedule.created_at,
                    updated_at=schedule.updated_at,
                ))
                # Parent row must exist before the cards that reference it
                await session.flush()
                session.add_all([
                    _card_row(card, schedule.user_id, position)
                    for position, card in enumerate(schedule.cards)
                ])
        except IntegrityError as e:
            raise ConflictError("SpacedRepetitionSchedule", schedule.schedule_id, cause=e) from e
        return schedule

    async def _load(self, session, row: ScheduleRow) -> SpacedRepetitionSchedule:
        cards = await session.scalars(
            select(CardRow).where(CardRow.schedule_id == row.schedule_id).order_by(CardRow.position)
        )
        return SpacedRepetitionSchedule(
            schedule_id=row.schedule_id,
            user_id=row.user_id,
            deck_name=row.deck_name,
            cards=[_card_from_row(card) for card in cards],
            total_cards=row.total_cards,
            active_cards=row.active_cards,
            completed_cards=row.completed_cards,
            average_ease_factor=row.average_ease_factor,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def get(self, schedule_id: str) -> Optional[SpacedRepetitionSchedule]:
        async with self._scope() as session:
            row = await session.get(ScheduleRow, schedule_id)
            return await self._load(session, row) if row else None

    async def update(self, schedule: SpacedRepetitionSchedule,
                     changed_cards: List[SpacedRepetitionCard]) -> SpacedRepetitionSchedule:
        async with self._scope() as session:
            row = await session.get(ScheduleRow, schedule.schedule_id)
            if row is None:
                raise NotFoundError("SpacedRepetitionSchedule", schedule.schedule_id)
            row.update({
                "total_cards": schedule.total_cards,
                "active_cards": schedule.active_cards,
                "completed_cards": schedule.completed_cards,
                "average_ease_factor": schedule.average_ease_factor,
                "updated_at": schedule.updated_at,
            })
            for card in changed_cards:
                card_row = await session.get(CardRow, (card.schedule_id, card.question_id))
                if card_row is None:
                    continue
                card_row.update({
                    "ease_factor": card.ease_factor,
                    "interval_days": card.interval,
                    "repetitions": card.repetitions,
                    "next_review_date": card.next_review_date,
                    "last_review_date": card.last_review_date,
                    "quality": card.quality,
                })
        return schedule

    async def list_for_user(self, user_id: str) -> List[SpacedRepetitionSchedule]:
        async with self._scope() as session:
            rows = await session.scalars(
                select(ScheduleRow).where(ScheduleRow.user_id == user_id).order_by(ScheduleRow.created_at)
            )
            return [await self._load(session, row) for row in rows.all()]

    async def list_due_cards(self, user_id: str, due_before: datetime) -> List[SpacedRepetitionCard]:
        async with self._scope() as session:
            rows = await session.scalars(
                select(CardRow)
                .where(CardRow.user_id == user_id, CardRow.next_review_date <= due_before)
                .order_by(CardRow.next_review_date, CardRow.ease_factor)
            )
            return [_card_from_row(row) for row in rows]

    async def create_review_task(self, task: ReviewTask) -> ReviewTask:
        async with self._scope() as session:
            session.add(ReviewTaskRow(
                task_id=task.task_id,
                user_id=task.user_id,
                schedule_id=task.schedule_id,
                question_ids=list(task.question_ids),
                due_date=task.due_date,
                created_at=task.created_at,
            ))
        return task


def create_sql_store(engine: AsyncEngine) -> Store:
    """
    Build a Store backed by the given async engine.

    Tables must already exist (see ``init_models``).
    """
    session_factory = create_session_factory(engine)
    return Store(
        users=SqlUserRepository(session_factory),
        categories=SqlCategoryRepository(session_factory),
        questions=SqlQuestionRepository(session_factory),
        attempts=SqlAttemptRepository(session_factory),
        sessions=SqlSessionRepository(session_factory),
        results=SqlResultRepository(session_factory),
        schedules=SqlScheduleRepository(session_factory),
    )
