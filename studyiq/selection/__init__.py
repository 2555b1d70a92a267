"""
Question selection and item acquisition.
"""

from .acquisition import ItemAcquisition, PoolItemAcquisition
from .engine import (
    DifficultyDistribution,
    QuestionSelectionEngine,
    SelectionCriteria,
    SelectionResult,
    adjust_for_availability,
    balance_difficulty,
)

__all__ = [
    'ItemAcquisition', 'PoolItemAcquisition',
    'DifficultyDistribution', 'QuestionSelectionEngine', 'SelectionCriteria', 'SelectionResult',
    'adjust_for_availability', 'balance_difficulty',
]
