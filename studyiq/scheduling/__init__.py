"""
Spaced repetition scheduling (SM-2).
"""

from .scheduler import MIXED_SCHEDULE_ID, SpacedRepetitionScheduler
from .sm2 import apply_review, new_card, updated_ease_factor

__all__ = [
    'SpacedRepetitionScheduler',
    'MIXED_SCHEDULE_ID',
    'apply_review',
    'new_card',
    'updated_ease_factor',
]
