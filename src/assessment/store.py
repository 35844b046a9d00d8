"""
Collaborator interfaces consumed by the assessment engine.

- QuestionStore: topics, questions, attempt log and mastery rows
- SessionStore: persisted session records

InMemoryQuestionStore / InMemorySessionStore back the unit tests and
embedded use. The SQLAlchemy implementation lives in src.db.repository.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from typing import Any, Callable, Protocol

from src.assessment.models import (
    KnowledgeTopic,
    MasteryRecord,
    QuestionAttempt,
    TopicQuestion,
)


class QuestionStore(Protocol):
    """Topic/question store. Reads may raise StorageError."""

    def list_active_questions(
        self, organization_id: str
    ) -> list[tuple[TopicQuestion, KnowledgeTopic]]:
        """Active questions of active topics, joined with their topic."""
        ...

    def list_active_topics(self, organization_id: str) -> list[KnowledgeTopic]:
        ...

    def list_attempts(self, user_id: str) -> list[QuestionAttempt]:
        ...

    def list_mastery_records(self, user_id: str) -> list[MasteryRecord]:
        ...

    def get_mastery_record(self, user_id: str, topic_id: str) -> MasteryRecord | None:
        ...

    def upsert_mastery_record(self, record: MasteryRecord) -> None:
        ...

    def update_mastery_record(
        self,
        user_id: str,
        topic_id: str,
        update: Callable[[MasteryRecord], MasteryRecord],
    ) -> MasteryRecord:
        """
        Atomic read-modify-write of one mastery row.

        `update` receives the current record (a fresh one if the row does not
        exist) and returns the record to store. No other writer can touch the
        row between the read and the write. `update` may be called more than
        once if the store retries; each call gets a freshly read record.
        """
        ...

    def append_attempt(self, attempt: QuestionAttempt) -> None:
        ...


class SessionStore(Protocol):
    """Session-store collaborator."""

    def create_session(self, meta: dict[str, Any]) -> str:
        """Create a session record and return its id."""
        ...

    def update_session(self, session_id: str, summary: dict[str, Any]) -> None:
        ...


class InMemoryQuestionStore:
    """Thread-safe in-process QuestionStore."""

    def __init__(
        self,
        topics: list[KnowledgeTopic] | None = None,
        questions: list[TopicQuestion] | None = None,
    ):
        self._lock = threading.RLock()
        self._topics: dict[str, KnowledgeTopic] = {}
        self._questions: list[TopicQuestion] = []
        self._attempts: list[QuestionAttempt] = []
        self._mastery: dict[tuple[str, str], MasteryRecord] = {}
        for topic in topics or []:
            self.add_topic(topic)
        for question in questions or []:
            self.add_question(question)

    # Authoring helpers (the engine itself never calls these)

    def add_topic(self, topic: KnowledgeTopic) -> None:
        with self._lock:
            self._topics[topic.id] = topic

    def add_question(self, question: TopicQuestion) -> None:
        with self._lock:
            self._questions.append(question)

    # QuestionStore

    def list_active_questions(
        self, organization_id: str
    ) -> list[tuple[TopicQuestion, KnowledgeTopic]]:
        with self._lock:
            rows = []
            for question in self._questions:
                topic = self._topics.get(question.topic_id)
                if topic is None or topic.organization_id != organization_id:
                    continue
                if question.is_active and topic.is_active:
                    rows.append((question, topic))
            return rows

    def list_active_topics(self, organization_id: str) -> list[KnowledgeTopic]:
        with self._lock:
            return [
                t for t in self._topics.values()
                if t.organization_id == organization_id and t.is_active
            ]

    def list_attempts(self, user_id: str) -> list[QuestionAttempt]:
        with self._lock:
            return [a for a in self._attempts if a.user_id == user_id]

    def list_mastery_records(self, user_id: str) -> list[MasteryRecord]:
        with self._lock:
            return [replace(r) for (uid, _), r in self._mastery.items() if uid == user_id]

    def get_mastery_record(self, user_id: str, topic_id: str) -> MasteryRecord | None:
        with self._lock:
            record = self._mastery.get((user_id, topic_id))
            return replace(record) if record else None

    def upsert_mastery_record(self, record: MasteryRecord) -> None:
        with self._lock:
            self._mastery[(record.user_id, record.topic_id)] = replace(record)

    def update_mastery_record(
        self,
        user_id: str,
        topic_id: str,
        update: Callable[[MasteryRecord], MasteryRecord],
    ) -> MasteryRecord:
        with self._lock:
            current = self._mastery.get((user_id, topic_id))
            record = replace(current) if current else MasteryRecord(user_id=user_id, topic_id=topic_id)
            record = update(record)
            self._mastery[(user_id, topic_id)] = replace(record)
            return replace(record)

    def append_attempt(self, attempt: QuestionAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)


class InMemorySessionStore:
    """In-process SessionStore keyed by generated ids."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sessions: dict[str, dict[str, Any]] = {}

    def create_session(self, meta: dict[str, Any]) -> str:
        session_id = str(uuid.uuid4())
        with self._lock:
            self.sessions[session_id] = {"meta": dict(meta), "summary": None}
        return session_id

    def update_session(self, session_id: str, summary: dict[str, Any]) -> None:
        with self._lock:
            record = self.sessions.setdefault(session_id, {"meta": {}, "summary": None})
            record["summary"] = summary
