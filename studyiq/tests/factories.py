"""
Builders for test data.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from studyiq.domain.model import (
    AdaptiveQuizSession,
    Attempt,
    AttemptAnswer,
    Category,
    Difficulty,
    Question,
    QuestionOption,
    QuestionType,
    QuizDistribution,
    StudyLevel,
    User,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

USER_ID = "user-1"
CATEGORY_TITLES = {
    "cat-strong": "Anatomy",
    "cat-mid": "Physiology",
    "cat-weak": "Pharmacology",
}


def make_question(
    question_id: str,
    category_id: str,
    difficulty: Difficulty = Difficulty.MEDIUM,
    level: StudyLevel = StudyLevel.BOTH,
    question_type: QuestionType = QuestionType.SINGLE,
    correct: Sequence[str] = ("a",)
) -> Question:
    options = [
        QuestionOption(option_id=option_id, text=f"Option {option_id.upper()}", is_correct=option_id in correct)
        for option_id in ("a", "b", "c", "d")
    ]
    return Question(
        question_id=question_id,
        category_id=category_id,
        text=f"Question {question_id}",
        options=options,
        difficulty=difficulty,
        student_level=level,
        question_type=question_type,
    )


def make_questions(category_id: str, count: int, level: StudyLevel = StudyLevel.BOTH) -> List[Question]:
    difficulties = [Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]
    return [
        make_question(f"{category_id}-q{i:02d}", category_id, difficulty=difficulties[i % 3], level=level)
        for i in range(count)
    ]


def make_attempt(
    attempt_id: str,
    answers: Iterable[Tuple[str, bool]],
    completed_at: datetime,
    student_id: str = USER_ID,
    final_score: Optional[float] = 1.0
) -> Attempt:
    return Attempt(
        attempt_id=attempt_id,
        student_id=student_id,
        quiz_id=f"quiz-{attempt_id}",
        answers=tuple(
            AttemptAnswer(question_id=question_id, submitted_answer="a" if correct else "b", is_correct=correct)
            for question_id, correct in answers
        ),
        completed_at=completed_at,
        final_score=final_score,
    )


def category_answers(category_id: str, correct: int, total: int, offset: int = 0) -> List[Tuple[str, bool]]:
    """``total`` answers in ``category_id`` of which the first ``correct`` are right."""
    return [(f"{category_id}-q{offset + i:02d}", i < correct) for i in range(total)]


def seeded_data(questions_per_category: int = 20):
    """
    A learner with three scored attempts.

    Success rates: cat-strong 0.8 (4/5), cat-mid 0.5 (2/4), cat-weak 0.2 (1/5).
    """
    users = [User(user_id=USER_ID, study_level=StudyLevel.A, created_at=NOW - timedelta(days=60))]
    categories = [Category(category_id=cid, title=title) for cid, title in CATEGORY_TITLES.items()]
    questions = [q for cid in CATEGORY_TITLES for q in make_questions(cid, questions_per_category)]
    attempts = [
        make_attempt("att-1", category_answers("cat-strong", 4, 5), NOW - timedelta(days=3)),
        make_attempt("att-2", category_answers("cat-mid", 2, 4), NOW - timedelta(days=2)),
        make_attempt("att-3", category_answers("cat-weak", 1, 5), NOW - timedelta(days=1)),
    ]
    return users, categories, questions, attempts


def make_session(
    session_id: str,
    question_ids: Sequence[str],
    created_at: datetime,
    user_id: str = USER_ID,
    expiry_hours: int = 24
) -> AdaptiveQuizSession:
    return AdaptiveQuizSession(
        session_id=session_id,
        user_id=user_id,
        question_ids=list(question_ids),
        distribution=QuizDistribution(weak=len(question_ids), total=len(question_ids)),
        analytics={},
        student_level=StudyLevel.A,
        config={},
        created_at=created_at,
        expires_at=created_at + timedelta(hours=expiry_hours),
    )
