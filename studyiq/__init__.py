"""
StudyIQ adaptive learning engine.

Performance analytics over quiz history, weakness-biased question selection,
SM-2 spaced repetition and the adaptive quiz session lifecycle.
"""

__version__ = "1.0.0"
