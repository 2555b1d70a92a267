"""
Common utilities and shared infrastructure for the StudyIQ engine.
"""
