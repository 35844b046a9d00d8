"""
Assessment persistence models.

Tables:
- knowledge_topics: topics per organization (authored elsewhere, read here)
- topic_questions: questions owned by a topic
- user_topic_progress: one mastery row per (user_id, topic_id)
- question_attempts: append-only attempt log
- training_sessions: session records and their end-of-session summary

Ids are stored as 36-character strings so the schema works on both
PostgreSQL and SQLite.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class KnowledgeTopicRow(Base):
    """A knowledge topic belonging to one organization."""

    __tablename__ = "knowledge_topics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(32), default="general")
    difficulty_level: Mapped[int] = mapped_column(Integer, default=1)  # 1-3
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    questions: Mapped[list["TopicQuestionRow"]] = relationship(
        "TopicQuestionRow", back_populates="topic", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<KnowledgeTopicRow(name={self.name!r}, category={self.category})>"


class TopicQuestionRow(Base):
    """A question owned by a topic."""

    __tablename__ = "topic_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    topic_id: Mapped[str] = mapped_column(
        ForeignKey("knowledge_topics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_template: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(32), default="open_ended")
    correct_answer: Mapped[str] = mapped_column(Text, default="")
    answer_options: Mapped[list | None] = mapped_column(JSON)  # multiple_choice only
    difficulty_level: Mapped[int] = mapped_column(Integer, default=1)
    points: Mapped[int] = mapped_column(Integer, default=1)
    explanation: Mapped[str] = mapped_column(Text, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    topic: Mapped[KnowledgeTopicRow] = relationship("KnowledgeTopicRow", back_populates="questions")

    def __repr__(self) -> str:
        return f"<TopicQuestionRow(type={self.question_type}, difficulty={self.difficulty_level})>"


class UserTopicProgressRow(Base):
    """
    Mastery state per learner per topic.

    mastery_level = correct_attempts / total_attempts; mastered_at is stamped
    once and never cleared.
    """

    __tablename__ = "user_topic_progress"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    topic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    mastery_level: Mapped[float] = mapped_column(Float, default=0.0)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    mastered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("user_id", "topic_id", name="uq_user_topic_progress"),
    )


class QuestionAttemptRow(Base):
    """Append-only log of answered questions."""

    __tablename__ = "question_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str | None] = mapped_column(String(36))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    question_id: Mapped[str | None] = mapped_column(String(64))
    question_asked: Mapped[str] = mapped_column(Text, nullable=False)
    user_answer: Mapped[str] = mapped_column(Text, default="")
    correct_answer: Mapped[str] = mapped_column(Text, default="")
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    time_spent_seconds: Mapped[float | None] = mapped_column(Float)
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_question_attempts_user_created", "user_id", "created_at"),
    )


class TrainingSessionRow(Base):
    """An assessment session and, once ended, its summary."""

    __tablename__ = "training_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True)
    organization_id: Mapped[str | None] = mapped_column(String(64))
    session_type: Mapped[str] = mapped_column(String(32), default="assessment")
    status: Mapped[str] = mapped_column(String(16), default="active")
    meta: Mapped[dict | None] = mapped_column(JSON)
    summary: Mapped[dict | None] = mapped_column(JSON)
    score: Mapped[int | None] = mapped_column(Integer)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
