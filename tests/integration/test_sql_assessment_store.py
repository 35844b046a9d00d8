"""
Integration tests for SqlAssessmentStore on SQLite (in-memory, plus a file
database where several connections race).

Covers the QuestionStore/SessionStore contract and a full session run
against the SQL store.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from conftest import BASE_TIME, ORG_ID, USER_ID, make_attempt, make_question, make_topic
from src.assessment.exceptions import StorageError
from src.assessment.mastery_tracker import MasteryTracker, apply_attempt
from src.assessment.models import (
    MasteryRecord,
    QuestionStatus,
    QuestionType,
    SelectionStrategy,
    TopicCategory,
)
from src.assessment.selector import QuestionSelector
from src.assessment.session import AssessmentSession
from src.db.database import init_db, make_engine
from src.db.repository import SqlAssessmentStore


@pytest.fixture
def engine():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, coffee_topics, coffee_questions):
    store = SqlAssessmentStore(engine)
    for topic in coffee_topics:
        store.add_topic(topic)
    for question in coffee_questions:
        store.add_question(question)
    return store


class TestQuestionReads:
    def test_list_active_questions_joins_topics(self, store):
        rows = store.list_active_questions(ORG_ID)

        assert [q.id for q, _ in rows] == ["q-sizes", "q-opening", "q-gloves", "q-flat-white"]
        question, topic = rows[0]
        assert question.question_type is QuestionType.MULTIPLE_CHOICE
        assert question.answer_options == ["250ml, 350ml, 450ml", "Only 350ml", "200ml, 400ml, 600ml"]
        assert topic.name == "Menu"
        assert topic.category is TopicCategory.MENU

    def test_inactive_rows_are_hidden(self, store):
        store.add_topic(make_topic("t-old", "Retired Menu", is_active=False))
        store.add_question(make_question("q-old", "t-old"))
        store.add_question(make_question("q-off", "t-menu", is_active=False))

        question_ids = [q.id for q, _ in store.list_active_questions(ORG_ID)]
        topic_ids = [t.id for t in store.list_active_topics(ORG_ID)]

        assert "q-old" not in question_ids
        assert "q-off" not in question_ids
        assert "t-old" not in topic_ids

    def test_organization_scoping(self, store):
        assert store.list_active_questions("other-org") == []
        assert store.list_active_topics("other-org") == []

    def test_unknown_question_type_is_kept_verbatim(self, store):
        store.add_question(make_question("q-essay", "t-menu", question_type="essay"))
        question = next(q for q, _ in store.list_active_questions(ORG_ID) if q.id == "q-essay")
        assert question.question_type == "essay"


class TestWrites:
    def test_attempt_round_trip(self, store, coffee_questions):
        attempt = make_attempt(coffee_questions[0], True, minutes=3, time_spent_seconds=2.5)
        store.append_attempt(attempt)

        (loaded,) = store.list_attempts(USER_ID)

        assert loaded.question_id == "q-sizes"
        assert loaded.is_correct is True
        assert loaded.points_earned == 2
        assert loaded.time_spent_seconds == 2.5
        assert loaded.created_at == BASE_TIME + timedelta(minutes=3)

    def test_mastery_upsert(self, store):
        assert store.get_mastery_record(USER_ID, "t-menu") is None

        record = MasteryRecord(USER_ID, "t-menu", mastery_level=0.5, total_attempts=2, correct_attempts=1)
        store.upsert_mastery_record(record)
        record.total_attempts = 3
        record.mastery_level = 1 / 3
        store.upsert_mastery_record(record)

        loaded = store.get_mastery_record(USER_ID, "t-menu")
        assert loaded.total_attempts == 3
        assert loaded.mastery_level == pytest.approx(1 / 3)
        assert len(store.list_mastery_records(USER_ID)) == 1

    def test_session_records(self, store):
        session_id = store.create_session({"user_id": USER_ID, "organization_id": ORG_ID})
        store.update_session(session_id, {"final_score": 7})

        record = store.get_session(session_id)
        assert record["status"] == "completed"
        assert record["score"] == 7
        assert record["summary"] == {"final_score": 7}

    def test_update_unknown_session(self, store):
        with pytest.raises(StorageError):
            store.update_session("missing", {"final_score": 0})


class TestMasteryUpdates:
    def test_update_creates_missing_row(self, store):
        record = store.update_mastery_record(
            USER_ID, "t-menu", lambda r: apply_attempt(r, True, BASE_TIME, 0.8)
        )

        assert record.total_attempts == 1
        loaded = store.get_mastery_record(USER_ID, "t-menu")
        assert loaded.correct_attempts == 1
        assert loaded.mastered_at == BASE_TIME

    def test_losing_first_insert_retries_against_existing_row(self, engine, store, monkeypatch):
        winner = SqlAssessmentStore(engine)
        update_row = store._update_mastery_row
        calls = []

        def insert_collides_once(session, user_id, topic_id, update):
            calls.append(topic_id)
            if len(calls) == 1:
                winner.upsert_mastery_record(
                    MasteryRecord(USER_ID, "t-menu", mastery_level=1.0, total_attempts=1, correct_attempts=1)
                )
                raise IntegrityError("INSERT INTO user_topic_progress", {}, Exception("UNIQUE constraint failed"))
            return update_row(session, user_id, topic_id, update)

        monkeypatch.setattr(store, "_update_mastery_row", insert_collides_once)

        record = store.update_mastery_record(
            USER_ID, "t-menu", lambda r: apply_attempt(r, False, BASE_TIME, 0.8)
        )

        assert len(calls) == 2
        assert record.total_attempts == 2
        assert store.get_mastery_record(USER_ID, "t-menu").correct_attempts == 1

    def test_trackers_racing_on_missing_row(self, tmp_path, coffee_questions):
        file_engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
        init_db(file_engine)
        try:
            trackers = [
                MasteryTracker(SqlAssessmentStore(file_engine), mastery_threshold=0.8)
                for _ in range(2)
            ]
            start = threading.Barrier(len(trackers))
            results = []

            def answer(tracker):
                start.wait(timeout=5)
                for _ in range(5):
                    results.append(tracker.record_attempt(make_attempt(coffee_questions[0], True)))

            threads = [threading.Thread(target=answer, args=(t,)) for t in trackers]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert len(results) == 10
            assert None not in results
            stored = SqlAssessmentStore(file_engine).get_mastery_record(USER_ID, "t-menu")
            assert stored.total_attempts == 10
            assert stored.correct_attempts == 10
            assert len(SqlAssessmentStore(file_engine).list_mastery_records(USER_ID)) == 1
        finally:
            file_engine.dispose()


class TestErrors:
    def test_database_errors_become_storage_errors(self, engine, store):
        with engine.begin() as conn:
            conn.execute(text("DROP TABLE question_attempts"))

        with pytest.raises(StorageError) as excinfo:
            store.list_attempts(USER_ID)
        assert excinfo.value.operation == "list_attempts"

    def test_duplicate_topic_is_storage_error(self, store, coffee_topics):
        with pytest.raises(StorageError):
            store.add_topic(coffee_topics[0])


class TestSessionOnSqlStore:
    def test_full_session(self, store):
        session = AssessmentSession(
            USER_ID,
            ORG_ID,
            question_store=store,
            session_store=store,
            max_questions=3,
            selector=QuestionSelector(store, mastery_threshold=0.8, use_fallback=False),
        )
        payload = session.initialize()
        assert payload.strategy is SelectionStrategy.PRIORITY_BASED
        session_id = session.start()

        session.record_question_attempt(0, "250ml, 350ml, 450ml")
        session.record_question_attempt(1, "went home")
        summary = session.end()

        assert summary.final_score == 2
        assert store.get_session(session_id)["summary"]["improvement_areas"] == ["Opening Procedures"]
        assert store.get_mastery_record(USER_ID, "t-menu").mastered_at is not None

        report = QuestionSelector(store, use_fallback=False).question_progress(USER_ID, ORG_ID)
        statuses = {q.id: q.status for q in report.questions}
        assert statuses["q-sizes"] is QuestionStatus.CORRECT
        assert statuses["q-opening"] is QuestionStatus.INCORRECT

        # Next session surfaces unseen material first
        next_result = QuestionSelector(store, use_fallback=False).select(USER_ID, ORG_ID, 4)
        assert [q.id for q in next_result.questions] == ["q-gloves", "q-flat-white", "q-opening", "q-sizes"]
