"""
Table models for the SQL store.

Schedule state is stored as one row per (schedule_id, question_id) card,
indexed on the owner and next review date, so an update rewrites only the
cards it touched and due-card queries do not scan whole decks.
"""

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import ModelBase, UTCDateTime


class UserRow(ModelBase):
    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)
    study_level = Column(String(8), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)


class CategoryRow(ModelBase):
    __tablename__ = "categories"

    category_id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)


class QuestionRow(ModelBase):
    __tablename__ = "questions"
    __table_args__ = (
        Index("ix_questions_category_level", "category_id", "student_level"),
    )

    question_id = Column(String(64), primary_key=True)
    category_id = Column(String(64), nullable=False)
    text = Column(Text, nullable=False, default="")
    options = Column(JSON, nullable=False, default=list)
    difficulty = Column(String(16), nullable=False)
    student_level = Column(String(8), nullable=False)
    question_type = Column(String(16), nullable=False)
    explanation = Column(Text, nullable=True)
    times_used = Column(Integer, nullable=False, default=0)
    success_rate = Column(Float, nullable=False, default=0.0)


class AttemptRow(ModelBase):
    __tablename__ = "attempts"
    __table_args__ = (
        Index("ix_attempts_student_completed", "student_id", "completed_at"),
    )

    attempt_id = Column(String(64), primary_key=True)
    student_id = Column(String(64), nullable=False)
    quiz_id = Column(String(64), nullable=False)
    answers = Column(JSON, nullable=False, default=list)
    completed_at = Column(UTCDateTime(), nullable=False)
    final_score = Column(Float, nullable=True)


class AdaptiveSessionRow(ModelBase):
    __tablename__ = "adaptive_sessions"
    __table_args__ = (
        Index("ix_adaptive_sessions_user_created", "user_id", "created_at"),
    )

    session_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)
    question_ids = Column(JSON, nullable=False, default=list)
    distribution = Column(JSON, nullable=False, default=dict)
    analytics = Column(JSON, nullable=False, default=dict)
    student_level = Column(String(8), nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False)
    completed_at = Column(UTCDateTime(), nullable=True)


class AdaptiveResultRow(ModelBase):
    __tablename__ = "adaptive_results"
    __table_args__ = (
        UniqueConstraint("session_id"),
        Index("ix_adaptive_results_user_completed", "user_id", "completed_at"),
    )

    result_id = Column(String(64), primary_key=True)
    session_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=False)
    overall_score = Column(Integer, nullable=False)
    max_score = Column(Integer, nullable=False)
    success_rate = Column(Float, nullable=False)
    time_spent_seconds = Column(Integer, nullable=False, default=0)
    category_results = Column(JSON, nullable=False, default=list)
    recommendations = Column(JSON, nullable=False, default=list)
    progress_comparison = Column(JSON, nullable=False, default=dict)
    improvement_areas = Column(JSON, nullable=False, default=list)
    strength_areas = Column(JSON, nullable=False, default=list)
    completed_at = Column(UTCDateTime(), nullable=False)
    next_available_at = Column(UTCDateTime(), nullable=False)


class ScheduleRow(ModelBase):
    __tablename__ = "srs_schedules"

    schedule_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    deck_name = Column(String(255), nullable=False)
    total_cards = Column(Integer, nullable=False, default=0)
    active_cards = Column(Integer, nullable=False, default=0)
    completed_cards = Column(Integer, nullable=False, default=0)
    average_ease_factor = Column(Float, nullable=False, default=0.0)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)


class CardRow(ModelBase):
    __tablename__ = "srs_cards"
    __table_args__ = (
        Index("ix_srs_cards_user_next_review", "user_id", "next_review_date"),
    )

    schedule_id = Column(String(64), ForeignKey("srs_schedules.schedule_id"), primary_key=True)
    question_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    ease_factor = Column(Float, nullable=False)
    interval_days = Column(Integer, nullable=False)
    repetitions = Column(Integer, nullable=False, default=0)
    next_review_date = Column(UTCDateTime(), nullable=False)
    last_review_date = Column(UTCDateTime(), nullable=True)
    quality = Column(Integer, nullable=True)


class ReviewTaskRow(ModelBase):
    __tablename__ = "srs_review_tasks"

    task_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    schedule_id = Column(String(64), ForeignKey("srs_schedules.schedule_id"), nullable=False)
    question_ids = Column(JSON, nullable=False, default=list)
    due_date = Column(UTCDateTime(), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False)
