"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.assessment.exceptions import StorageError  # noqa: E402
from src.assessment.models import (  # noqa: E402
    KnowledgeTopic,
    QuestionAttempt,
    QuestionType,
    TopicCategory,
    TopicQuestion,
)
from src.assessment.store import InMemoryQuestionStore, InMemorySessionStore  # noqa: E402

ORG_ID = "org-1"
USER_ID = "user-1"
BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


# =============================================================================
# Builders
# =============================================================================


def make_topic(topic_id, name=None, category=TopicCategory.GENERAL, difficulty=1, **kwargs):
    return KnowledgeTopic(
        id=topic_id,
        organization_id=kwargs.pop("organization_id", ORG_ID),
        name=name or topic_id,
        category=category,
        difficulty_level=difficulty,
        **kwargs,
    )


def make_question(question_id, topic_id, text=None, difficulty=1, points=1, **kwargs):
    return TopicQuestion(
        id=question_id,
        topic_id=topic_id,
        question_template=text or f"Question {question_id}?",
        difficulty_level=difficulty,
        points=points,
        **kwargs,
    )


def make_attempt(question, is_correct, minutes=0, user_id=USER_ID, **kwargs):
    """Attempt on a question, created `minutes` after BASE_TIME."""
    return QuestionAttempt(
        session_id=kwargs.pop("session_id", "past-session"),
        user_id=user_id,
        topic_id=kwargs.pop("topic_id", question.topic_id),
        question_id=kwargs.pop("question_id", question.id),
        question_asked=kwargs.pop("question_asked", question.question_template),
        learner_answer=kwargs.pop("learner_answer", "answer"),
        correct_answer=question.correct_answer,
        is_correct=is_correct,
        points_earned=question.points if is_correct else 0,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **kwargs,
    )


# =============================================================================
# Stores
# =============================================================================


class FailingQuestionStore(InMemoryQuestionStore):
    """In-memory store whose reads and/or writes raise StorageError."""

    def __init__(self, *args, fail_reads=False, fail_writes=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def _read(self, operation):
        if self.fail_reads:
            raise StorageError(operation, ConnectionError("store unreachable"))

    def _write(self, operation):
        if self.fail_writes:
            raise StorageError(operation, ConnectionError("store unreachable"))

    def list_active_questions(self, organization_id):
        self._read("list_active_questions")
        return super().list_active_questions(organization_id)

    def list_active_topics(self, organization_id):
        self._read("list_active_topics")
        return super().list_active_topics(organization_id)

    def list_attempts(self, user_id):
        self._read("list_attempts")
        return super().list_attempts(user_id)

    def list_mastery_records(self, user_id):
        self._read("list_mastery_records")
        return super().list_mastery_records(user_id)

    def get_mastery_record(self, user_id, topic_id):
        self._read("get_mastery_record")
        return super().get_mastery_record(user_id, topic_id)

    def upsert_mastery_record(self, record):
        self._write("upsert_mastery_record")
        super().upsert_mastery_record(record)

    def update_mastery_record(self, user_id, topic_id, update):
        self._read("update_mastery_record")
        self._write("update_mastery_record")
        return super().update_mastery_record(user_id, topic_id, update)

    def append_attempt(self, attempt):
        self._write("append_attempt")
        super().append_attempt(attempt)


class FailingSessionStore(InMemorySessionStore):
    def __init__(self, fail_create=False, fail_update=False):
        super().__init__()
        self.fail_create = fail_create
        self.fail_update = fail_update

    def create_session(self, meta):
        if self.fail_create:
            raise StorageError("create_session", ConnectionError("down"))
        return super().create_session(meta)

    def update_session(self, session_id, summary):
        if self.fail_update:
            raise StorageError("update_session", ConnectionError("down"))
        super().update_session(session_id, summary)


class RecordingTransport:
    """Collects (event, payload) pairs."""

    def __init__(self):
        self.events = []

    def send(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [event.value for event, _ in self.events]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def coffee_topics():
    """Three topics of a coffee shop knowledge base."""
    return [
        make_topic("t-menu", "Menu", TopicCategory.MENU, difficulty=1),
        make_topic("t-opening", "Opening Procedures", TopicCategory.PROCEDURES, difficulty=1),
        make_topic("t-policy", "Food Safety Policy", TopicCategory.POLICIES, difficulty=2),
    ]


@pytest.fixture
def coffee_questions():
    return [
        make_question(
            "q-sizes",
            "t-menu",
            "What sizes are available for cappuccino?",
            question_type=QuestionType.MULTIPLE_CHOICE,
            correct_answer="250ml, 350ml, 450ml",
            answer_options=["250ml, 350ml, 450ml", "Only 350ml", "200ml, 400ml, 600ml"],
            points=2,
        ),
        make_question(
            "q-opening",
            "t-opening",
            "What should you do before opening?",
            question_type=QuestionType.OPEN_ENDED,
            correct_answer="wipe counter, sanitize, restock",
            points=3,
        ),
        make_question(
            "q-gloves",
            "t-policy",
            "Gloves must be worn when handling pastries. True or false?",
            difficulty=2,
            question_type=QuestionType.TRUE_FALSE,
            correct_answer="True",
        ),
        make_question(
            "q-flat-white",
            "t-menu",
            "How many shots go into a flat white?",
            difficulty=2,
            question_type=QuestionType.OPEN_ENDED,
            correct_answer="double shot",
        ),
    ]


@pytest.fixture
def question_store(coffee_topics, coffee_questions):
    return InMemoryQuestionStore(topics=coffee_topics, questions=coffee_questions)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def transport():
    return RecordingTransport()
