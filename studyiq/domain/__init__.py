"""
Domain entities and store interfaces for the adaptive learning engine.
"""

from .model import (
    AdaptiveQuizGeneration,
    AdaptiveQuizResult,
    AdaptiveQuizSession,
    Attempt,
    AttemptAnswer,
    Category,
    CategoryPerformance,
    CategoryResult,
    Difficulty,
    EligibilityReport,
    PerformanceSnapshot,
    ProgressComparison,
    ProgressStats,
    ProgressTrend,
    Question,
    QuestionOption,
    QuestionType,
    QuizDistribution,
    Recommendation,
    RecommendationPriority,
    RecommendationType,
    ReviewResult,
    ReviewSession,
    ReviewTask,
    SessionStatus,
    SpacedRepetitionCard,
    SpacedRepetitionSchedule,
    StudyLevel,
    User,
)
from .repository import Store
from .memory_repository import create_memory_store

__all__ = [
    'AdaptiveQuizGeneration', 'AdaptiveQuizResult', 'AdaptiveQuizSession',
    'Attempt', 'AttemptAnswer', 'Category', 'CategoryPerformance', 'CategoryResult',
    'Difficulty', 'EligibilityReport', 'PerformanceSnapshot', 'ProgressComparison',
    'ProgressStats', 'ProgressTrend', 'Question', 'QuestionOption', 'QuestionType',
    'QuizDistribution', 'Recommendation', 'RecommendationPriority', 'RecommendationType',
    'ReviewResult', 'ReviewSession', 'ReviewTask', 'SessionStatus',
    'SpacedRepetitionCard', 'SpacedRepetitionSchedule', 'StudyLevel', 'User',
    'Store', 'create_memory_store',
]
