"""
Adaptive Quiz Orchestrator

Drives the adaptive quiz session lifecycle: prerequisite checks, generation of
a weakness-biased quiz, submission scoring with recommendations and progress
comparison, and the session state transitions.

Session states:
    active -> completed  (results submitted)
    active -> expired    (past expires_at, detected when the session is accessed)
    active -> abandoned  (abandon_session)
"""

import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from studyiq.analytics.engine import PerformanceAnalyticsEngine
from studyiq.common.clock import Clock, SystemClock, consecutive_active_days
from studyiq.common.config import AdaptiveQuizConfig
from studyiq.common.error_handling import (
    ConflictError,
    ErrorCode,
    InsufficientDataError,
    InsufficientItemsError,
    NotFoundError,
    SessionNotFoundError,
    StateError,
    StudyIQError,
    TechnicalError,
    ValidationError,
    log_error,
    suggestion_for,
)
from studyiq.common.logger import LoggerAdapter, app_logger, log_execution_time
from studyiq.domain.model import (
    AdaptiveQuizGeneration,
    AdaptiveQuizResult,
    AdaptiveQuizSession,
    CategoryResult,
    EligibilityReport,
    PerformanceSnapshot,
    ProgressComparison,
    ProgressTrend,
    Question,
    QuizDistribution,
    Recommendation,
    SessionStatus,
    User,
    make_prefixed_id,
)
from studyiq.domain.repository import Store
from studyiq.selection.acquisition import ItemAcquisition
from studyiq.selection.engine import QuestionSelectionEngine, SelectionCriteria

from . import scoring
from .rate_limiter import GenerationRateLimiter

logger = app_logger.getChild("adaptive.orchestrator")

_TERMINAL_STATE_CODES = {
    SessionStatus.COMPLETED: ErrorCode.SESSION_COMPLETED,
    SessionStatus.EXPIRED: ErrorCode.SESSION_EXPIRED,
    SessionStatus.ABANDONED: ErrorCode.SESSION_ABANDONED,
}


def _validate_answers(answers: Any) -> Dict[str, Any]:
    if not isinstance(answers, Mapping):
        raise ValidationError(
            "Answers must be a mapping of question id to answer",
            details={"received_type": type(answers).__name__}
        )
    for question_id, value in answers.items():
        if isinstance(value, str):
            continue
        if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
            continue
        raise ValidationError(
            "Each answer must be a string or a list of strings",
            details={"question_id": str(question_id), "received_type": type(value).__name__}
        )
    return dict(answers)


class AdaptiveQuizOrchestrator:
    """
    Coordinates analytics, selection and scoring around adaptive quiz sessions.

    Domain errors raised by collaborators propagate unchanged; anything else
    is wrapped in a TechnicalError.
    """

    def __init__(
        self,
        store: Store,
        analytics: PerformanceAnalyticsEngine,
        selection: QuestionSelectionEngine,
        rate_limiter: GenerationRateLimiter,
        config: Optional[AdaptiveQuizConfig] = None,
        clock: Optional[Clock] = None,
        item_acquisition: Optional[ItemAcquisition] = None
    ):
        self._store = store
        self._analytics = analytics
        self._selection = selection
        self._rate_limiter = rate_limiter
        self._config = config or AdaptiveQuizConfig()
        self._clock = clock or SystemClock()
        self._item_acquisition = item_acquisition

    # Generation

    @log_execution_time(logger)
    async def generate(self, user_id: str) -> AdaptiveQuizGeneration:
        """
        Generate an adaptive quiz for a user.

        Args:
            user_id: The learner

        Returns:
            AdaptiveQuizGeneration with the session id, questions and metadata

        Raises:
            NotFoundError: If the user does not exist
            ValidationError: If the user has no study level
            InsufficientDataError: If the user has too few scored attempts
            RateLimitError: If the daily cap or the cooldown blocks the user
            InsufficientItemsError: If no question could be acquired
            TechnicalError: On any unexpected failure
        """
        log = LoggerAdapter(logger, {"user_id": user_id})
        try:
            user = await self._validate_prerequisites(user_id)

            async with self._rate_limiter.lease(user_id):
                decision = await self._rate_limiter.enforce(user_id)
                snapshot = await self._analytics.analyze(user_id)
                questions, distribution, strategy = await self._acquire_items(user, snapshot, log)
                session = self._build_session(user, snapshot, questions, distribution)
                await self._store.sessions.create(session)

            log.info(
                f"Generated adaptive session {session.session_id} with {distribution.total} questions "
                f"({distribution.weak} weak / {distribution.strong} strong, {strategy})"
            )
            return AdaptiveQuizGeneration(
                session_id=session.session_id,
                questions=questions,
                metadata={
                    "distribution": distribution.to_dict(),
                    "weak_categories": list(session.analytics["weak_category_ids"]),
                    "strong_categories": list(session.analytics["strong_category_ids"]),
                    "student_level": user.study_level.value,
                    "item_strategy": strategy,
                    "expires_at": session.expires_at.isoformat(),
                    "remaining_today": (
                        max(0, decision.remaining_today - 1) if decision.remaining_today is not None else None
                    ),
                },
            )
        except StudyIQError as e:
            log.info(f"Adaptive quiz generation refused: {e.code.value}")
            raise
        except Exception as e:
            log_error(e, context={"user_id": user_id, "operation": "generate"}, log=logger)
            raise TechnicalError(
                "Adaptive quiz generation failed",
                cause=e,
                context={"user_id": user_id}
            ) from e

    async def _validate_prerequisites(self, user_id: str) -> User:
        user = await self._store.users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id, code=ErrorCode.USER_NOT_FOUND)
        if user.study_level is None:
            raise ValidationError(
                "A study level must be set before generating an adaptive quiz",
                code=ErrorCode.LEVEL_NOT_SET,
                context={"user_id": user_id}
            )
        if not await self._analytics.has_minimum_data(user_id):
            raise InsufficientDataError(
                f"At least {self._analytics.min_valid_attempts} completed quizzes are required",
                required=self._analytics.min_valid_attempts,
                current=await self._analytics.count_valid_attempts(user_id),
                context={"user_id": user_id}
            )
        return user

    async def _acquire_items(
        self,
        user: User,
        snapshot: PerformanceSnapshot,
        log: LoggerAdapter
    ) -> Tuple[List[Question], QuizDistribution, str]:
        """
        Obtain the quiz items, through the configured acquisition or the pool.

        Returns:
            Tuple of (questions, distribution, strategy name)

        Raises:
            InsufficientItemsError: If no item could be obtained
        """
        weak_ids = [c.category_id for c in snapshot.weakest_categories]
        strong_ids = [c.category_id for c in snapshot.strongest_categories]
        recent = await self._selection.exclude_recent_questions(user.user_id)

        if self._item_acquisition is not None:
            strategy = "acquisition"
            categories = weak_ids[:self._config.max_weak_categories]
            questions: List[Question] = []
            if categories:
                per_category = min(
                    self._config.max_questions_per_category,
                    math.ceil(self._config.weak_questions / len(categories))
                )
                taken = set(recent)
                for category_id in categories:
                    acquired = await self._item_acquisition.acquire(
                        category_id, user.study_level, per_category, exclude_ids=list(taken)
                    )
                    for question in acquired:
                        if question.question_id not in taken:
                            questions.append(question)
                            taken.add(question.question_id)
            distribution = QuizDistribution(weak=len(questions), strong=0, total=len(questions))
        else:
            strategy = "pool"
            result = await self._selection.select_adaptive_questions(SelectionCriteria(
                student_level=user.study_level,
                weak_category_ids=weak_ids,
                strong_category_ids=strong_ids,
                target_weak_questions=self._config.weak_questions,
                target_strong_questions=self._config.strong_questions,
                exclude_question_ids=recent,
                balance_difficulty=self._config.balance_difficulty,
            ))
            questions = result.questions
            distribution = result.distribution

        if not questions:
            raise InsufficientItemsError(
                "No questions are available for an adaptive quiz right now",
                details={
                    "weak_categories": weak_ids,
                    "strong_categories": strong_ids,
                    "excluded_recent": len(recent),
                    "item_strategy": strategy,
                },
                context={"user_id": user.user_id}
            )
        if len(recent):
            log.debug(f"Excluded {len(recent)} recently seen questions")
        return questions, distribution, strategy

    def _build_session(
        self,
        user: User,
        snapshot: PerformanceSnapshot,
        questions: List[Question],
        distribution: QuizDistribution
    ) -> AdaptiveQuizSession:
        now = self._clock.now()
        return AdaptiveQuizSession(
            session_id=make_prefixed_id("adaptive", now),
            user_id=user.user_id,
            question_ids=[question.question_id for question in questions],
            distribution=distribution,
            analytics={
                "weak_category_ids": [c.category_id for c in snapshot.weakest_categories],
                "strong_category_ids": [c.category_id for c in snapshot.strongest_categories],
                "overall_success_rate": snapshot.overall_success_rate,
                "total_quizzes_taken": snapshot.total_quizzes_taken,
                "analysis_date": snapshot.analysis_date.isoformat(),
            },
            student_level=user.study_level,
            config={
                "weak_questions": self._config.weak_questions,
                "strong_questions": self._config.strong_questions,
                "target_success_rate": self._config.target_success_rate,
            },
            created_at=now,
            expires_at=now + timedelta(hours=self._config.session_expiry_hours),
        )

    # Session access

    async def get_session(self, session_id: str) -> AdaptiveQuizSession:
        """
        Load a session, marking it expired when its lifetime has passed.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        if session.status is SessionStatus.ACTIVE and session.is_past_expiry(self._clock.now()):
            session.status = SessionStatus.EXPIRED
            await self._store.sessions.update(session)
            logger.info(f"Adaptive session {session_id} expired")
        return session

    async def _load_active_session(self, session_id: str) -> AdaptiveQuizSession:
        session = await self.get_session(session_id)
        if session.status is not SessionStatus.ACTIVE:
            raise StateError(
                f"Adaptive session {session_id} is {session.status.value}",
                code=_TERMINAL_STATE_CODES[session.status],
                details={"status": session.status.value},
                context={"session_id": session_id}
            )
        return session

    async def abandon_session(self, session_id: str) -> AdaptiveQuizSession:
        """
        Move an active session to abandoned.

        Raises:
            SessionNotFoundError: If the session does not exist
            StateError: If the session is not active
        """
        session = await self._load_active_session(session_id)
        session.status = SessionStatus.ABANDONED
        await self._store.sessions.update(session)
        logger.info(f"Adaptive session {session_id} abandoned")
        return session

    # Submission

    @log_execution_time(logger)
    async def submit_results(
        self,
        session_id: str,
        answers: Mapping[str, Any],
        time_spent_seconds: int = 0
    ) -> AdaptiveQuizResult:
        """
        Score a submission and complete its session.

        Answers for questions outside the session are ignored.

        Args:
            session_id: Session being submitted
            answers: Mapping of question id to a string or list of strings
            time_spent_seconds: Time the learner spent on the quiz

        Returns:
            The persisted AdaptiveQuizResult

        Raises:
            ValidationError: If the answers are malformed
            SessionNotFoundError: If the session does not exist
            StateError: If the session is not active, including a concurrent duplicate submission
            TechnicalError: On any unexpected failure
        """
        answers = _validate_answers(answers)
        if isinstance(time_spent_seconds, bool) or not isinstance(time_spent_seconds, (int, float)) \
                or time_spent_seconds < 0:
            raise ValidationError(
                "time_spent_seconds must be a non-negative number",
                details={"time_spent_seconds": str(time_spent_seconds)}
            )

        log = LoggerAdapter(logger, {"session_id": session_id})
        try:
            session = await self._load_active_session(session_id)
            log = log.with_context(user_id=session.user_id)
            now = self._clock.now()

            evaluated = await self._evaluate_answers(session, answers, log)
            category_ids = list(dict.fromkeys(answer.category_id for answer in evaluated))
            categories = await self._store.categories.get_many(category_ids)
            category_results = scoring.build_category_results(
                evaluated,
                {category_id: category.title for category_id, category in categories.items()},
                await self._previous_rates(session.user_id, category_ids, log),
            )

            correct = sum(1 for answer in evaluated if answer.is_correct)
            # limits depend only on generated sessions, so this is final before the result is stored
            next_available_at = await self._next_available_at(session.user_id, now, log)
            result = AdaptiveQuizResult(
                result_id=make_prefixed_id("result", now),
                session_id=session_id,
                user_id=session.user_id,
                overall_score=correct,
                max_score=len(evaluated),
                success_rate=correct / len(evaluated) if evaluated else 0.0,
                category_results=category_results,
                recommendations=self._recommendations(category_results, now, log),
                progress_comparison=await self._progress_comparison(session, category_results, now, log),
                improvement_areas=scoring.improvement_areas(category_results, self._config.target_success_rate),
                strength_areas=scoring.strength_areas(category_results),
                completed_at=now,
                next_adaptive_quiz_available_at=next_available_at,
                time_spent_seconds=int(time_spent_seconds),
            )

            try:
                await self._store.results.create(result)
            except ConflictError as e:
                raise StateError(
                    f"Adaptive session {session_id} was already submitted",
                    code=ErrorCode.SESSION_COMPLETED,
                    cause=e,
                    context={"session_id": session_id}
                ) from e

            session.status = SessionStatus.COMPLETED
            session.completed_at = now
            await self._store.sessions.update(session)

            await self._record_usage(evaluated, log)
            await self._analytics.invalidate(session.user_id)

            log.info(
                f"Adaptive session completed: {correct}/{len(evaluated)} correct, "
                f"{len(result.recommendations)} recommendations"
            )
            return result
        except StudyIQError:
            raise
        except Exception as e:
            log_error(e, context={"session_id": session_id, "operation": "submit_results"}, log=logger)
            raise TechnicalError(
                "Adaptive quiz submission failed",
                cause=e,
                context={"session_id": session_id}
            ) from e

    async def _evaluate_answers(
        self,
        session: AdaptiveQuizSession,
        answers: Dict[str, Any],
        log: LoggerAdapter
    ) -> List[scoring.EvaluatedAnswer]:
        questions = await self._store.questions.get_many(session.question_ids)
        evaluated = []
        for question_id in session.question_ids:
            if question_id not in answers:
                continue
            question = questions.get(question_id)
            if question is None:
                log.warning(f"Question {question_id} of the session no longer exists; answer ignored")
                continue
            submitted = answers[question_id]
            evaluated.append(scoring.EvaluatedAnswer(
                question_id=question_id,
                category_id=question.category_id,
                submitted=submitted,
                is_correct=scoring.evaluate_answer(question, submitted),
            ))

        foreign = set(answers) - set(session.question_ids)
        if foreign:
            log.debug(f"Ignored {len(foreign)} answers for questions outside the session")
        return evaluated

    async def _previous_rates(
        self,
        user_id: str,
        category_ids: List[str],
        log: LoggerAdapter
    ) -> Dict[str, Optional[float]]:
        rates: Dict[str, Optional[float]] = {}
        try:
            for category_id in category_ids:
                performance = await self._analytics.get_category_performance(user_id, category_id)
                rates[category_id] = performance.success_rate if performance else None
        except Exception as e:
            log.warning(f"Previous category performance unavailable: {e}")
            return {}
        return rates

    def _recommendations(
        self,
        category_results: List[CategoryResult],
        now: datetime,
        log: LoggerAdapter
    ) -> List[Recommendation]:
        try:
            return scoring.build_recommendations(category_results, now, limit=self._config.max_recommendations)
        except Exception as e:
            log.warning(f"Recommendations could not be built: {e}")
            return []

    async def _progress_comparison(
        self,
        session: AdaptiveQuizSession,
        category_results: List[CategoryResult],
        now: datetime,
        log: LoggerAdapter
    ) -> ProgressComparison:
        streak = 0
        try:
            history = await self._store.results.list_for_user(session.user_id, exclude_session_id=session.session_id)
            streak = consecutive_active_days([r.completed_at for r in history] + [now], now)
        except Exception as e:
            log.warning(f"Streak could not be computed: {e}")

        try:
            recent = await self._store.results.list_for_user(
                session.user_id,
                limit=self._config.recent_results_window,
                exclude_session_id=session.session_id
            )
            return scoring.build_progress_comparison(category_results, recent, streak)
        except Exception as e:
            log.warning(f"Progress trend could not be computed: {e}")
            return ProgressComparison(
                previous_score=0.0,
                current_score=scoring.mean_category_rate(category_results),
                improvement=0.0,
                trend=ProgressTrend.STABLE,
                streak_days=streak,
            )

    async def _record_usage(self, evaluated: List[scoring.EvaluatedAnswer], log: LoggerAdapter) -> None:
        failures = 0
        for answer in evaluated:
            try:
                await self._store.questions.record_usage(answer.question_id, answer.is_correct)
            except Exception as e:
                failures += 1
                log.warning(f"Usage statistics not updated for question {answer.question_id}: {e}")
        if failures:
            log.warning(f"{failures}/{len(evaluated)} question usage updates failed")

    async def _next_available_at(self, user_id: str, now: datetime, log: LoggerAdapter) -> datetime:
        try:
            decision = await self._rate_limiter.check(user_id)
        except Exception as e:
            log.warning(f"Next availability could not be computed: {e}")
            return now
        return decision.next_available_at or now

    # Eligibility

    async def check_eligibility(self, user_id: str) -> EligibilityReport:
        """
        Report whether a user could generate an adaptive quiz now.

        Never raises; an unexpected failure is reported as a technical error.

        Args:
            user_id: The learner

        Returns:
            EligibilityReport with the first blocking reason, if any
        """
        daily_limit = self._config.daily_limit
        try:
            user = await self._store.users.get(user_id)
            if user is None:
                return EligibilityReport(
                    can_generate=False,
                    reason=ErrorCode.USER_NOT_FOUND.value,
                    requirements={},
                    sessions_today=0,
                    daily_limit=daily_limit,
                    suggested_actions=[suggestion_for(ErrorCode.USER_NOT_FOUND)],
                )

            current = await self._analytics.count_valid_attempts(user_id)
            required = self._analytics.min_valid_attempts
            decision = await self._rate_limiter.check(user_id)

            blocking: List[ErrorCode] = []
            if user.study_level is None:
                blocking.append(ErrorCode.LEVEL_NOT_SET)
            if current < required:
                blocking.append(ErrorCode.INSUFFICIENT_DATA)
            if not decision.allowed:
                blocking.append(decision.reason)

            return EligibilityReport(
                can_generate=not blocking,
                reason=blocking[0].value if blocking else None,
                requirements={
                    "min_quizzes": required,
                    "current_quizzes": current,
                    "level_set": user.study_level is not None,
                },
                sessions_today=decision.sessions_today,
                daily_limit=daily_limit,
                next_available_at=decision.next_available_at,
                suggested_actions=[suggestion_for(code) for code in blocking if suggestion_for(code)],
            )
        except Exception as e:
            log_error(e, context={"user_id": user_id, "operation": "check_eligibility"}, log=logger)
            return EligibilityReport(
                can_generate=False,
                reason=ErrorCode.TECHNICAL_ERROR.value,
                requirements={},
                sessions_today=0,
                daily_limit=daily_limit,
                suggested_actions=[suggestion_for(ErrorCode.TECHNICAL_ERROR)],
            )
