"""
Domain Model Module

This module defines the entities the adaptive learning engine reads and writes:
learners, questions and their attempts, adaptive quiz sessions and results, and
spaced-repetition schedules. All timestamps are timezone-aware UTC datetimes.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union


class StudyLevel(enum.Enum):
    """Curriculum level a learner studies for, or that a question targets."""
    A = "A"
    B = "B"
    BOTH = "both"


class Difficulty(enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuestionType(enum.Enum):
    SINGLE = "single"
    MULTI = "multi"


class SessionStatus(enum.Enum):
    """
    Lifecycle of an adaptive quiz session.

    ACTIVE is the only non-terminal state.
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.ACTIVE


class RecommendationType(enum.Enum):
    STUDY_MORE = "study_more"
    PRACTICE_QUIZ = "practice_quiz"
    REVIEW_MATERIAL = "review_material"
    MAINTAIN_STRENGTH = "maintain_strength"
    FOCUS_CATEGORY = "focus_category"


class RecommendationPriority(enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    RecommendationPriority.HIGH: 0,
    RecommendationPriority.MEDIUM: 1,
    RecommendationPriority.LOW: 2,
}


class ProgressTrend(enum.Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_prefixed_id(prefix: str, moment: datetime) -> str:
    """
    Build an id of the form ``<prefix>_<epoch-ms>_<random>``.

    Args:
        prefix: Id prefix, e.g. ``adaptive`` or ``srs``
        moment: Creation time used for the timestamp part

    Returns:
        The generated id
    """
    return f"{prefix}_{int(moment.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class User:
    user_id: str
    study_level: Optional[StudyLevel] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Category:
    category_id: str
    title: str


@dataclass
class QuestionOption:
    option_id: str
    text: str
    is_correct: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"option_id": self.option_id, "text": self.text, "is_correct": self.is_correct}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuestionOption':
        return cls(option_id=data["option_id"], text=data["text"], is_correct=bool(data.get("is_correct")))


@dataclass
class Question:
    """
    A quiz question.

    Attributes:
        question_id: Unique identifier for the question
        category_id: Category the question belongs to
        text: The question text
        options: Answer options with their correctness markers
        difficulty: Difficulty band of the question
        student_level: Level the question targets (A, B, or both)
        question_type: Single-choice or multi-select
        explanation: Optional explanation shown after answering
        times_used: Number of adaptive submissions that included the question
        success_rate: Rolling share of those submissions answered correctly
    """
    question_id: str
    category_id: str
    text: str
    options: List[QuestionOption]
    difficulty: Difficulty = Difficulty.MEDIUM
    student_level: StudyLevel = StudyLevel.BOTH
    question_type: QuestionType = QuestionType.SINGLE
    explanation: Optional[str] = None
    times_used: int = 0
    success_rate: float = 0.0

    @property
    def correct_option_ids(self) -> List[str]:
        return [option.option_id for option in self.options if option.is_correct]

    def record_usage(self, correct: bool) -> None:
        """
        Fold one more answer into the rolling usage counters.

        Args:
            correct: Whether the answer was correct
        """
        previous_correct = self.success_rate * self.times_used
        self.times_used += 1
        self.success_rate = (previous_correct + (1 if correct else 0)) / self.times_used

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "category_id": self.category_id,
            "text": self.text,
            "options": [option.to_dict() for option in self.options],
            "difficulty": self.difficulty.value,
            "student_level": self.student_level.value,
            "question_type": self.question_type.value,
            "explanation": self.explanation,
            "times_used": self.times_used,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        return cls(
            question_id=data["question_id"],
            category_id=data["category_id"],
            text=data.get("text", ""),
            options=[QuestionOption.from_dict(option) for option in data.get("options", [])],
            difficulty=Difficulty(data.get("difficulty", Difficulty.MEDIUM.value)),
            student_level=StudyLevel(data.get("student_level", StudyLevel.BOTH.value)),
            question_type=QuestionType(data.get("question_type", QuestionType.SINGLE.value)),
            explanation=data.get("explanation"),
            times_used=data.get("times_used", 0),
            success_rate=data.get("success_rate", 0.0),
        )


@dataclass(frozen=True)
class AttemptAnswer:
    question_id: str
    submitted_answer: Any
    is_correct: bool


@dataclass(frozen=True)
class Attempt:
    """
    A completed regular quiz. Immutable once created.

    An attempt counts towards analytics only when ``final_score`` is a
    number greater than or equal to zero.
    """
    attempt_id: str
    student_id: str
    quiz_id: str
    answers: Tuple[AttemptAnswer, ...]
    completed_at: datetime
    final_score: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        score = self.final_score
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            return False
        return score == score and score >= 0  # NaN is not a valid score


@dataclass
class CategoryPerformance:
    category_id: str
    category_name: str
    total_questions: int
    correct_answers: int
    success_rate: float
    last_attempt_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "success_rate": self.success_rate,
            "last_attempt_date": _iso(self.last_attempt_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CategoryPerformance':
        return cls(
            category_id=data["category_id"],
            category_name=data["category_name"],
            total_questions=data["total_questions"],
            correct_answers=data["correct_answers"],
            success_rate=data["success_rate"],
            last_attempt_date=_parse_dt(data.get("last_attempt_date")),
        )


@dataclass
class PerformanceSnapshot:
    """
    Derived per-user performance summary.

    Attributes:
        user_id: Learner the snapshot describes
        overall_success_rate: Correct answers over all answers (volume-weighted)
        total_quizzes_taken: Number of valid attempts analyzed
        total_questions_answered: Number of answers across those attempts
        category_performances: Per-category totals and success rates
        weakest_categories: Up to 3 lowest-scoring eligible categories
        strongest_categories: Up to 3 highest-scoring eligible categories
        analysis_date: When the snapshot was computed
    """
    user_id: str
    overall_success_rate: float
    total_quizzes_taken: int
    total_questions_answered: int
    category_performances: List[CategoryPerformance]
    weakest_categories: List[CategoryPerformance]
    strongest_categories: List[CategoryPerformance]
    analysis_date: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "overall_success_rate": self.overall_success_rate,
            "total_quizzes_taken": self.total_quizzes_taken,
            "total_questions_answered": self.total_questions_answered,
            "category_performances": [c.to_dict() for c in self.category_performances],
            "weakest_categories": [c.to_dict() for c in self.weakest_categories],
            "strongest_categories": [c.to_dict() for c in self.strongest_categories],
            "analysis_date": _iso(self.analysis_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceSnapshot':
        return cls(
            user_id=data["user_id"],
            overall_success_rate=data["overall_success_rate"],
            total_quizzes_taken=data["total_quizzes_taken"],
            total_questions_answered=data["total_questions_answered"],
            category_performances=[CategoryPerformance.from_dict(c) for c in data["category_performances"]],
            weakest_categories=[CategoryPerformance.from_dict(c) for c in data["weakest_categories"]],
            strongest_categories=[CategoryPerformance.from_dict(c) for c in data["strongest_categories"]],
            analysis_date=_parse_dt(data["analysis_date"]),
        )


@dataclass
class QuizDistribution:
    weak: int = 0
    strong: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"weak": self.weak, "strong": self.strong, "total": self.total}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuizDistribution':
        return cls(weak=data.get("weak", 0), strong=data.get("strong", 0), total=data.get("total", 0))


@dataclass
class AdaptiveQuizSession:
    """
    One generated adaptive quiz with a bounded lifetime.

    ``analytics`` holds a reference to the snapshot the quiz was built from
    (weak/strong category ids, overall rate, quizzes taken, analysis date).
    ``config`` records the targets in force at generation time.
    """
    session_id: str
    user_id: str
    question_ids: List[str]
    distribution: QuizDistribution
    analytics: Dict[str, Any]
    student_level: StudyLevel
    config: Dict[str, Any]
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    completed_at: Optional[datetime] = None

    def is_past_expiry(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "question_ids": list(self.question_ids),
            "distribution": self.distribution.to_dict(),
            "analytics": dict(self.analytics),
            "student_level": self.student_level.value,
            "config": dict(self.config),
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "status": self.status.value,
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class CategoryResult:
    category_id: str
    category_name: str
    questions_answered: int
    correct_answers: int
    incorrect_answers: int
    success_rate: float
    previous_success_rate: Optional[float] = None
    score_improvement: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "questions_answered": self.questions_answered,
            "correct_answers": self.correct_answers,
            "incorrect_answers": self.incorrect_answers,
            "success_rate": self.success_rate,
            "previous_success_rate": self.previous_success_rate,
            "score_improvement": self.score_improvement,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CategoryResult':
        return cls(**{key: data.get(key) for key in (
            "category_id", "category_name", "questions_answered", "correct_answers",
            "incorrect_answers", "success_rate", "previous_success_rate", "score_improvement",
        )})


@dataclass
class Recommendation:
    recommendation_id: str
    category_id: str
    type: RecommendationType
    priority: RecommendationPriority
    title: str
    description: str
    estimated_time_minutes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendation_id": self.recommendation_id,
            "category_id": self.category_id,
            "type": self.type.value,
            "priority": self.priority.value,
            "title": self.title,
            "description": self.description,
            "estimated_time_minutes": self.estimated_time_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Recommendation':
        return cls(
            recommendation_id=data["recommendation_id"],
            category_id=data["category_id"],
            type=RecommendationType(data["type"]),
            priority=RecommendationPriority(data["priority"]),
            title=data["title"],
            description=data["description"],
            estimated_time_minutes=data["estimated_time_minutes"],
        )


@dataclass
class ProgressComparison:
    previous_score: float
    current_score: float
    improvement: float
    trend: ProgressTrend
    streak_days: int
    last_quiz_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_score": self.previous_score,
            "current_score": self.current_score,
            "improvement": self.improvement,
            "trend": self.trend.value,
            "streak_days": self.streak_days,
            "last_quiz_date": _iso(self.last_quiz_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProgressComparison':
        return cls(
            previous_score=data["previous_score"],
            current_score=data["current_score"],
            improvement=data["improvement"],
            trend=ProgressTrend(data["trend"]),
            streak_days=data["streak_days"],
            last_quiz_date=_parse_dt(data.get("last_quiz_date")),
        )


@dataclass
class AdaptiveQuizResult:
    """
    Scored outcome of one completed adaptive quiz session.

    There is at most one result per session.
    """
    result_id: str
    session_id: str
    user_id: str
    overall_score: int
    max_score: int
    success_rate: float
    category_results: List[CategoryResult]
    recommendations: List[Recommendation]
    progress_comparison: ProgressComparison
    improvement_areas: List[str]
    strength_areas: List[str]
    completed_at: datetime
    next_adaptive_quiz_available_at: datetime
    time_spent_seconds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_id": self.result_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "overall_score": self.overall_score,
            "max_score": self.max_score,
            "success_rate": self.success_rate,
            "time_spent_seconds": self.time_spent_seconds,
            "category_results": [c.to_dict() for c in self.category_results],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "progress_comparison": self.progress_comparison.to_dict(),
            "improvement_areas": list(self.improvement_areas),
            "strength_areas": list(self.strength_areas),
            "completed_at": _iso(self.completed_at),
            "next_adaptive_quiz_available_at": _iso(self.next_adaptive_quiz_available_at),
        }


@dataclass
class SpacedRepetitionCard:
    """
    SM-2 state of one question inside one schedule.

    Only the review-update algorithm mutates these fields.
    """
    schedule_id: str
    question_id: str
    ease_factor: float
    interval: int
    repetitions: int
    next_review_date: datetime
    last_review_date: Optional[datetime] = None
    quality: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "question_id": self.question_id,
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "repetitions": self.repetitions,
            "next_review_date": _iso(self.next_review_date),
            "last_review_date": _iso(self.last_review_date),
            "quality": self.quality,
        }


@dataclass
class SpacedRepetitionSchedule:
    schedule_id: str
    user_id: str
    deck_name: str
    cards: List[SpacedRepetitionCard]
    total_cards: int = 0
    active_cards: int = 0
    completed_cards: int = 0
    average_ease_factor: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def card(self, question_id: str) -> Optional[SpacedRepetitionCard]:
        for card in self.cards:
            if card.question_id == question_id:
                return card
        return None


@dataclass
class ReviewTask:
    task_id: str
    user_id: str
    schedule_id: str
    question_ids: List[str]
    due_date: datetime
    created_at: datetime


@dataclass
class ReviewSession:
    session_id: str
    user_id: str
    schedule_id: str
    cards: List[SpacedRepetitionCard]
    estimated_duration_minutes: int
    created_at: datetime


@dataclass
class ReviewResult:
    question_id: str
    quality: int


@dataclass
class ProgressStats:
    total_cards: int
    active_cards: int
    completed_cards: int
    average_ease_factor: float
    next_review_date: Optional[datetime]
    streak_days: int


@dataclass
class AdaptiveQuizGeneration:
    """What the caller receives after generating an adaptive quiz."""
    session_id: str
    questions: List[Question]
    metadata: Dict[str, Any]


@dataclass
class EligibilityReport:
    can_generate: bool
    reason: Optional[str]
    requirements: Dict[str, Any]
    sessions_today: int
    daily_limit: int
    next_available_at: Optional[datetime] = None
    suggested_actions: List[str] = field(default_factory=list)
