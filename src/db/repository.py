"""
SQLAlchemy-backed QuestionStore and SessionStore.

Every SQLAlchemyError is re-raised as StorageError so the engine can apply
its read/write error policy without knowing about the database layer.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Callable

from loguru import logger
from sqlalchemy import Engine, select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.assessment.exceptions import StorageError
from src.assessment.models import (
    KnowledgeTopic,
    MasteryRecord,
    QuestionAttempt,
    QuestionType,
    TopicCategory,
    TopicQuestion,
    enum_value,
    utcnow,
)
from src.db.database import get_session_factory, session_scope
from src.db.models import (
    KnowledgeTopicRow,
    QuestionAttemptRow,
    TopicQuestionRow,
    TrainingSessionRow,
    UserTopicProgressRow,
)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; values are always stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _category(value: str | None) -> TopicCategory:
    try:
        return TopicCategory(value)
    except ValueError:
        return TopicCategory.GENERAL


def _question_type(value: str) -> QuestionType | str:
    # Unknown types are kept verbatim; the evaluator scores them incorrect.
    try:
        return QuestionType(value)
    except ValueError:
        return value


def topic_from_row(row: KnowledgeTopicRow) -> KnowledgeTopic:
    return KnowledgeTopic(
        id=row.id,
        organization_id=row.organization_id,
        name=row.name,
        description=row.description or "",
        category=_category(row.category),
        difficulty_level=row.difficulty_level or 1,
        is_active=bool(row.is_active),
    )


def question_from_row(row: TopicQuestionRow) -> TopicQuestion:
    return TopicQuestion(
        id=row.id,
        topic_id=row.topic_id,
        question_template=row.question_template,
        question_type=_question_type(row.question_type),
        correct_answer=row.correct_answer or "",
        answer_options=list(row.answer_options or []),
        difficulty_level=row.difficulty_level or 1,
        points=row.points or 1,
        explanation=row.explanation or "",
        is_active=bool(row.is_active),
    )


def attempt_from_row(row: QuestionAttemptRow) -> QuestionAttempt:
    return QuestionAttempt(
        session_id=row.session_id,
        user_id=row.user_id,
        topic_id=row.topic_id,
        question_id=row.question_id,
        question_asked=row.question_asked,
        learner_answer=row.user_answer or "",
        correct_answer=row.correct_answer or "",
        is_correct=bool(row.is_correct),
        points_earned=row.points_earned or 0,
        time_spent_seconds=row.time_spent_seconds,
        attempt_number=row.attempt_number or 1,
        created_at=_aware(row.created_at),
    )


def _copy_mastery(record: MasteryRecord, row: UserTopicProgressRow) -> None:
    row.mastery_level = record.mastery_level
    row.total_attempts = record.total_attempts
    row.correct_attempts = record.correct_attempts
    row.last_attempt_at = record.last_attempt_at
    row.mastered_at = record.mastered_at


def mastery_from_row(row: UserTopicProgressRow) -> MasteryRecord:
    return MasteryRecord(
        user_id=row.user_id,
        topic_id=row.topic_id,
        mastery_level=row.mastery_level or 0.0,
        total_attempts=row.total_attempts or 0,
        correct_attempts=row.correct_attempts or 0,
        last_attempt_at=_aware(row.last_attempt_at),
        mastered_at=_aware(row.mastered_at),
    )


class SqlAssessmentStore:
    """
    QuestionStore + SessionStore over SQLAlchemy.

    Args:
        engine: Explicit engine (tests, scripts); defaults to the configured one
    """

    def __init__(self, engine: Engine | None = None):
        self._factory = (
            sessionmaker(bind=engine, autocommit=False, autoflush=False)
            if engine is not None
            else get_session_factory()
        )

    @contextmanager
    def _scope(self, operation: str) -> Generator[Session, None, None]:
        try:
            with session_scope(self._factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            raise StorageError(operation, e) from e

    # =========================================================================
    # Authoring helpers (seeding, tests)
    # =========================================================================

    def add_topic(self, topic: KnowledgeTopic) -> str:
        with self._scope("add_topic") as session:
            row = KnowledgeTopicRow(
                id=topic.id or None,
                organization_id=topic.organization_id,
                name=topic.name,
                description=topic.description,
                category=enum_value(topic.category),
                difficulty_level=topic.difficulty_level,
                is_active=topic.is_active,
            )
            session.add(row)
            session.flush()
            return row.id

    def add_question(self, question: TopicQuestion) -> str:
        with self._scope("add_question") as session:
            row = TopicQuestionRow(
                id=question.id or None,
                topic_id=question.topic_id,
                question_template=question.question_template,
                question_type=enum_value(question.question_type),
                correct_answer=question.correct_answer,
                answer_options=list(question.answer_options) or None,
                difficulty_level=question.difficulty_level,
                points=question.points,
                explanation=question.explanation,
                is_active=question.is_active,
            )
            session.add(row)
            session.flush()
            return row.id

    # =========================================================================
    # QuestionStore
    # =========================================================================

    def list_active_questions(
        self, organization_id: str
    ) -> list[tuple[TopicQuestion, KnowledgeTopic]]:
        with self._scope("list_active_questions") as session:
            stmt = (
                select(TopicQuestionRow, KnowledgeTopicRow)
                .join(KnowledgeTopicRow, TopicQuestionRow.topic_id == KnowledgeTopicRow.id)
                .where(
                    KnowledgeTopicRow.organization_id == organization_id,
                    KnowledgeTopicRow.is_active.is_(True),
                    TopicQuestionRow.is_active.is_(True),
                )
                .order_by(TopicQuestionRow.created_at, TopicQuestionRow.id)
            )
            return [
                (question_from_row(q), topic_from_row(t))
                for q, t in session.execute(stmt).all()
            ]

    def list_active_topics(self, organization_id: str) -> list[KnowledgeTopic]:
        with self._scope("list_active_topics") as session:
            stmt = (
                select(KnowledgeTopicRow)
                .where(
                    KnowledgeTopicRow.organization_id == organization_id,
                    KnowledgeTopicRow.is_active.is_(True),
                )
                .order_by(KnowledgeTopicRow.created_at, KnowledgeTopicRow.id)
            )
            return [topic_from_row(t) for t in session.scalars(stmt)]

    def list_attempts(self, user_id: str) -> list[QuestionAttempt]:
        with self._scope("list_attempts") as session:
            stmt = (
                select(QuestionAttemptRow)
                .where(QuestionAttemptRow.user_id == user_id)
                .order_by(QuestionAttemptRow.id)
            )
            return [attempt_from_row(a) for a in session.scalars(stmt)]

    def list_mastery_records(self, user_id: str) -> list[MasteryRecord]:
        with self._scope("list_mastery_records") as session:
            stmt = (
                select(UserTopicProgressRow)
                .where(UserTopicProgressRow.user_id == user_id)
                .order_by(UserTopicProgressRow.topic_id)
            )
            return [mastery_from_row(r) for r in session.scalars(stmt)]

    def get_mastery_record(self, user_id: str, topic_id: str) -> MasteryRecord | None:
        with self._scope("get_mastery_record") as session:
            row = session.scalars(
                select(UserTopicProgressRow).where(
                    UserTopicProgressRow.user_id == user_id,
                    UserTopicProgressRow.topic_id == topic_id,
                )
            ).first()
            return mastery_from_row(row) if row else None

    def upsert_mastery_record(self, record: MasteryRecord) -> None:
        with self._scope("upsert_mastery_record") as session:
            row = session.scalars(
                select(UserTopicProgressRow)
                .where(
                    UserTopicProgressRow.user_id == record.user_id,
                    UserTopicProgressRow.topic_id == record.topic_id,
                )
                .with_for_update()
            ).first()
            if row is None:
                row = UserTopicProgressRow(user_id=record.user_id, topic_id=record.topic_id)
                session.add(row)
            _copy_mastery(record, row)

    def update_mastery_record(
        self,
        user_id: str,
        topic_id: str,
        update: Callable[[MasteryRecord], MasteryRecord],
    ) -> MasteryRecord:
        """
        Read, update and write one progress row in a single transaction.

        Concurrent first inserts for the same (user_id, topic_id) trip the
        unique constraint; the loser retries once against the winner's row.
        """
        try:
            with session_scope(self._factory) as session:
                return self._update_mastery_row(session, user_id, topic_id, update)
        except IntegrityError:
            logger.debug(f"Progress row {user_id}/{topic_id} inserted concurrently; retrying")
        except SQLAlchemyError as e:
            logger.error(f"Database error during update_mastery_record: {e}")
            raise StorageError("update_mastery_record", e) from e

        with self._scope("update_mastery_record") as session:
            return self._update_mastery_row(session, user_id, topic_id, update)

    def _update_mastery_row(
        self,
        session: Session,
        user_id: str,
        topic_id: str,
        update: Callable[[MasteryRecord], MasteryRecord],
    ) -> MasteryRecord:
        where = (
            UserTopicProgressRow.user_id == user_id,
            UserTopicProgressRow.topic_id == topic_id,
        )
        # Takes the write lock up front on SQLite, where FOR UPDATE is a no-op
        session.execute(
            sa_update(UserTopicProgressRow)
            .where(*where)
            .values(total_attempts=UserTopicProgressRow.total_attempts)
            .execution_options(synchronize_session=False)
        )
        row = session.scalars(
            select(UserTopicProgressRow).where(*where).with_for_update()
        ).first()
        if row is None:
            row = UserTopicProgressRow(user_id=user_id, topic_id=topic_id)
            session.add(row)
            current = MasteryRecord(user_id=user_id, topic_id=topic_id)
        else:
            current = mastery_from_row(row)

        record = update(current)
        _copy_mastery(record, row)
        session.flush()
        return record

    def append_attempt(self, attempt: QuestionAttempt) -> None:
        with self._scope("append_attempt") as session:
            session.add(
                QuestionAttemptRow(
                    session_id=attempt.session_id,
                    user_id=attempt.user_id,
                    topic_id=attempt.topic_id,
                    question_id=attempt.question_id,
                    question_asked=attempt.question_asked,
                    user_answer=attempt.learner_answer,
                    correct_answer=attempt.correct_answer,
                    is_correct=attempt.is_correct,
                    points_earned=attempt.points_earned,
                    time_spent_seconds=attempt.time_spent_seconds,
                    attempt_number=attempt.attempt_number,
                    created_at=attempt.created_at,
                )
            )

    # =========================================================================
    # SessionStore
    # =========================================================================

    def create_session(self, meta: dict[str, Any]) -> str:
        with self._scope("create_session") as session:
            row = TrainingSessionRow(
                user_id=meta.get("user_id"),
                organization_id=meta.get("organization_id"),
                session_type=meta.get("session_type", "assessment"),
                status="active",
                meta=meta,
            )
            session.add(row)
            session.flush()
            logger.debug(f"Created training session {row.id}")
            return row.id

    def update_session(self, session_id: str, summary: dict[str, Any]) -> None:
        with self._scope("update_session") as session:
            row = session.get(TrainingSessionRow, session_id)
            if row is None:
                raise StorageError("update_session", LookupError(f"no session {session_id}"))
            row.summary = summary
            row.score = summary.get("final_score")
            row.status = "completed"
            row.ended_at = utcnow()

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        """Stored session record, or None."""
        with self._scope("get_session") as session:
            row = session.get(TrainingSessionRow, session_id)
            if row is None:
                return None
            return {
                "id": row.id,
                "user_id": row.user_id,
                "organization_id": row.organization_id,
                "status": row.status,
                "meta": row.meta,
                "summary": row.summary,
                "score": row.score,
            }
