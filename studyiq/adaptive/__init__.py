"""
Adaptive quiz lifecycle: rate limiting, scoring and orchestration.
"""

from .orchestrator import AdaptiveQuizOrchestrator
from .rate_limiter import GenerationRateLimiter, RateLimitDecision
from .scoring import (
    EvaluatedAnswer,
    build_category_results,
    build_progress_comparison,
    build_recommendations,
    evaluate_answer,
)

__all__ = [
    'AdaptiveQuizOrchestrator',
    'GenerationRateLimiter',
    'RateLimitDecision',
    'EvaluatedAnswer',
    'build_category_results',
    'build_progress_comparison',
    'build_recommendations',
    'evaluate_answer',
]
