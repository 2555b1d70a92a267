"""
Adaptive Quiz Scoring

Evaluates submitted answers, aggregates them per category, and derives the
recommendations and progress comparison shown with an adaptive quiz result.
Everything here is pure; the orchestrator supplies data loaded from the store.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from studyiq.common.logger import app_logger
from studyiq.domain.model import (
    AdaptiveQuizResult,
    CategoryResult,
    ProgressComparison,
    ProgressTrend,
    Question,
    QuestionType,
    Recommendation,
    RecommendationPriority,
    RecommendationType,
)

logger = app_logger.getChild("adaptive.scoring")

TREND_THRESHOLD = 0.05
DECLINE_THRESHOLD = -0.10
STRENGTH_THRESHOLD = 0.8

_WHITESPACE = re.compile(r"\s+")


@dataclass
class EvaluatedAnswer:
    question_id: str
    category_id: str
    submitted: Any
    is_correct: bool


def normalize_text(value: Any) -> str:
    """Lower-case ``value`` and collapse its whitespace."""
    return _WHITESPACE.sub(" ", str(value).strip()).lower()


def _resolve_option_ids(question: Question, submitted: Any) -> Optional[set]:
    values = submitted if isinstance(submitted, (list, tuple, set)) else [submitted]
    by_id = {normalize_text(option.option_id): option.option_id for option in question.options}
    by_text = {normalize_text(option.text): option.option_id for option in question.options}

    resolved = set()
    for value in values:
        if value is None:
            return None
        key = normalize_text(value)
        option_id = by_id.get(key) or by_text.get(key)
        if option_id is None:
            return None
        resolved.add(option_id)
    return resolved


def evaluate_answer(question: Question, submitted: Any) -> bool:
    """
    Decide whether ``submitted`` answers ``question`` correctly.

    Each submitted value is matched to an option by id or by text, ignoring
    case and surrounding or repeated whitespace. Single-choice questions need
    exactly their one correct option; multi-select questions need exactly the
    set of correct options.

    Args:
        question: The question with its options
        submitted: A string or a list of strings

    Returns:
        True if the answer is correct
    """
    correct = set(question.correct_option_ids)
    if not correct:
        return False

    chosen = _resolve_option_ids(question, submitted)
    if not chosen:
        return False

    if question.question_type is QuestionType.SINGLE and len(correct) != 1:
        logger.warning(f"Single-choice question {question.question_id} has {len(correct)} correct options")
        return False
    return chosen == correct


def build_category_results(
    answers: Sequence[EvaluatedAnswer],
    category_names: Dict[str, str],
    previous_rates: Optional[Dict[str, Optional[float]]] = None
) -> List[CategoryResult]:
    """
    Aggregate evaluated answers per category.

    Args:
        answers: Evaluated answers of one submission
        category_names: Display names keyed by category id
        previous_rates: Prior success rate per category, when known

    Returns:
        One CategoryResult per category, in first-seen order
    """
    previous_rates = previous_rates or {}
    totals: Dict[str, List[int]] = {}
    for answer in answers:
        counts = totals.setdefault(answer.category_id, [0, 0])
        counts[0] += 1
        if answer.is_correct:
            counts[1] += 1

    results = []
    for category_id, (answered, correct) in totals.items():
        success_rate = correct / answered
        previous = previous_rates.get(category_id)
        results.append(CategoryResult(
            category_id=category_id,
            category_name=category_names.get(category_id, category_id),
            questions_answered=answered,
            correct_answers=correct,
            incorrect_answers=answered - correct,
            success_rate=success_rate,
            previous_success_rate=previous,
            score_improvement=success_rate - previous if previous is not None else None,
        ))
    return results


def _recommendation(kind: RecommendationType, priority: RecommendationPriority, result: CategoryResult,
                    title: str, description: str, minutes: int, stamp: int) -> Recommendation:
    return Recommendation(
        recommendation_id=f"{kind.value}_{result.category_id}_{stamp}",
        category_id=result.category_id,
        type=kind,
        priority=priority,
        title=title,
        description=description,
        estimated_time_minutes=minutes,
    )


def build_recommendations(
    category_results: Iterable[CategoryResult],
    now: datetime,
    limit: int = 5
) -> List[Recommendation]:
    """
    Derive study recommendations from per-category results.

    Below 50% success a category gets a study and a practice action (high),
    from 50% to 70% a review action (medium), and from 80% a maintenance
    action (low). A drop of more than 10 points against the previous rate
    adds a high-priority focus action.

    Args:
        category_results: Results of the submission
        now: Time used for the recommendation ids
        limit: Maximum number of recommendations

    Returns:
        Recommendations ordered by priority, keeping rule order within a priority
    """
    stamp = int(now.timestamp() * 1000)
    recommendations: List[Recommendation] = []

    for result in category_results:
        name = result.category_name
        if result.success_rate < 0.5:
            recommendations.append(_recommendation(
                RecommendationType.STUDY_MORE, RecommendationPriority.HIGH, result,
                f"Study {name}",
                f"Your results in {name} need more study. Focus on the core concepts.",
                60, stamp
            ))
            recommendations.append(_recommendation(
                RecommendationType.PRACTICE_QUIZ, RecommendationPriority.HIGH, result,
                f"Practice {name}",
                f"Take more quizzes in {name} to improve your results.",
                30, stamp
            ))
        elif result.success_rate < 0.7:
            recommendations.append(_recommendation(
                RecommendationType.REVIEW_MATERIAL, RecommendationPriority.MEDIUM, result,
                f"Review {name}",
                f"Review the course material for {name} to consolidate what you know.",
                45, stamp
            ))
        elif result.success_rate >= STRENGTH_THRESHOLD:
            recommendations.append(_recommendation(
                RecommendationType.MAINTAIN_STRENGTH, RecommendationPriority.LOW, result,
                f"Keep up {name}",
                f"Excellent results in {name}. Keep practicing to stay at this level.",
                15, stamp
            ))

        if result.score_improvement is not None and result.score_improvement < DECLINE_THRESHOLD:
            recommendations.append(_recommendation(
                RecommendationType.FOCUS_CATEGORY, RecommendationPriority.HIGH, result,
                f"Focus on {name}",
                f"Your results in {name} dropped since last time. Make it your priority.",
                90, stamp
            ))

    recommendations.sort(key=lambda r: r.priority.rank)
    return recommendations[:limit]


def classify_trend(delta: float) -> ProgressTrend:
    if delta > TREND_THRESHOLD:
        return ProgressTrend.IMPROVING
    if delta < -TREND_THRESHOLD:
        return ProgressTrend.DECLINING
    return ProgressTrend.STABLE


def mean_category_rate(category_results: Sequence[CategoryResult]) -> float:
    if not category_results:
        return 0.0
    return sum(r.success_rate for r in category_results) / len(category_results)


def build_progress_comparison(
    category_results: Sequence[CategoryResult],
    prior_results: Sequence[AdaptiveQuizResult],
    streak_days: int
) -> ProgressComparison:
    """
    Compare this submission with the user's recent adaptive results.

    Args:
        category_results: Results of the submission
        prior_results: Earlier results of the user, most recent first
        streak_days: Current activity streak

    Returns:
        ProgressComparison; without prior results the previous score is 0
        and the trend is stable
    """
    current = mean_category_rate(category_results)
    if not prior_results:
        return ProgressComparison(
            previous_score=0.0,
            current_score=current,
            improvement=0.0,
            trend=ProgressTrend.STABLE,
            streak_days=streak_days,
        )

    previous = sum(r.success_rate for r in prior_results) / len(prior_results)
    improvement = current - previous
    return ProgressComparison(
        previous_score=previous,
        current_score=current,
        improvement=improvement,
        trend=classify_trend(improvement),
        streak_days=streak_days,
        last_quiz_date=prior_results[0].completed_at,
    )


def improvement_areas(category_results: Iterable[CategoryResult], threshold: float = 0.6) -> List[str]:
    return [r.category_id for r in category_results if r.success_rate < threshold]


def strength_areas(category_results: Iterable[CategoryResult], threshold: float = STRENGTH_THRESHOLD) -> List[str]:
    return [r.category_id for r in category_results if r.success_rate >= threshold]
