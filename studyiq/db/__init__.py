"""
SQL store for StudyIQ, built on SQLAlchemy's async ORM.
"""

from .repository import create_sql_store
from .session import create_engine, create_session_factory, init_models

__all__ = ['create_engine', 'create_session_factory', 'create_sql_store', 'init_models']
