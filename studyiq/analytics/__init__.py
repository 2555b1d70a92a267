"""
Performance analytics over attempt history.
"""

from .cache import AnalyticsCache
from .engine import PerformanceAnalyticsEngine, rank_categories

__all__ = ['AnalyticsCache', 'PerformanceAnalyticsEngine', 'rank_categories']
