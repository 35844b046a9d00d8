"""
Unit tests for AssessmentSession.

Tests:
- Lifecycle and state errors
- Per-turn recording (score, progress, improvement areas, mastery)
- Write failures never interrupt a session
- End-to-end scenario on a fresh learner
"""

import threading

import pytest

from conftest import (
    ORG_ID,
    USER_ID,
    FailingQuestionStore,
    FailingSessionStore,
    RecordingTransport,
    make_question,
    make_topic,
)
from src.assessment.exceptions import InvalidStateError, StorageError
from src.assessment.models import LearnerLevel, MasteryRecord, QuestionType, SelectionStrategy
from src.assessment.selector import QuestionSelector
from src.assessment.session import AssessmentSession, SessionEvent, SessionState
from src.assessment.store import InMemoryQuestionStore


def make_session(question_store, session_store, transport=None, max_questions=5, **kwargs):
    return AssessmentSession(
        USER_ID,
        ORG_ID,
        question_store=question_store,
        session_store=session_store,
        transport=transport,
        max_questions=max_questions,
        selector=QuestionSelector(
            question_store, mastery_threshold=0.8, topic_limit=3, fuzzy_matching=True, use_fallback=True
        ),
        **kwargs,
    )


@pytest.fixture
def session(question_store, session_store, transport):
    return make_session(question_store, session_store, transport)


@pytest.fixture
def active_session(session):
    session.initialize()
    session.start()
    return session


class TestLifecycle:
    def test_initial_state(self, session):
        assert session.state is SessionState.UNINITIALIZED
        assert session.session_id is None

    def test_initialize_builds_payload(self, session, transport):
        payload = session.initialize()

        assert session.state is SessionState.INITIALIZED
        assert payload.strategy is SelectionStrategy.PRIORITY_BASED
        assert payload.total_questions == 4
        assert [q["id"] for q in payload.questions] == ["q-sizes", "q-opening", "q-gloves", "q-flat-white"]
        assert payload.questions[0]["question"] == "What sizes are available for cappuccino?"
        assert payload.questions[0]["options"] == ["250ml, 350ml, 450ml", "Only 350ml", "200ml, 400ml, 600ml"]
        assert payload.learner_level is LearnerLevel.BEGINNER
        assert payload.focus_areas == ["menu", "procedures", "policies"]
        assert transport.names() == ["initialized"]

    def test_instructions_list_questions_in_order(self, session):
        payload = session.initialize()
        text = payload.instructions

        assert "Ask these EXACT questions in order" in text
        positions = [text.index(q["question"]) for q in payload.questions]
        assert positions == sorted(positions)
        assert "1. What sizes are available for cappuccino?" in text

    def test_current_topic_starts_at_first_question(self, session):
        session.initialize()
        assert session.get_progress().current_topic.id == "t-menu"

    def test_start_stamps_session_id(self, session, session_store, transport):
        session.initialize()
        session_id = session.start()

        assert session.state is SessionState.ACTIVE
        assert session_id in session_store.sessions
        assert session_store.sessions[session_id]["meta"]["user_id"] == USER_ID
        assert all(q.session_id == session_id for q in session.progress.questions_asked)
        assert transport.names() == ["initialized", "session_started"]

    def test_initialize_twice(self, session):
        session.initialize()
        with pytest.raises(InvalidStateError):
            session.initialize()

    def test_start_before_initialize(self, session):
        with pytest.raises(InvalidStateError):
            session.start()

    def test_end_before_start(self, session):
        session.initialize()
        with pytest.raises(InvalidStateError):
            session.end()

    def test_end_twice(self, active_session):
        active_session.end()
        with pytest.raises(InvalidStateError):
            active_session.end()
        assert active_session.state is SessionState.ENDED

    def test_record_before_start(self, session):
        session.initialize()
        with pytest.raises(InvalidStateError):
            session.record_question_attempt(0, "anything")

    def test_record_after_end(self, active_session):
        active_session.end()
        with pytest.raises(InvalidStateError):
            active_session.record_question_attempt(0, "anything")

    def test_create_session_failure_keeps_state(self, question_store):
        failing = FailingSessionStore(fail_create=True)
        session = make_session(question_store, failing)
        session.initialize()

        with pytest.raises(StorageError):
            session.start()
        assert session.state is SessionState.INITIALIZED

        failing.fail_create = False
        session.start()
        assert session.state is SessionState.ACTIVE


class TestRecordQuestionAttempt:
    def test_correct_answer(self, active_session, question_store, transport):
        event = active_session.record_question_attempt(0, "250ml, 350ml, 450ml", time_spent_seconds=4.2)

        assert event.is_correct is True
        assert event.points_earned == 2
        assert event.current_score == 2
        assert event.fraction_complete == pytest.approx(0.25)

        progress = active_session.get_progress()
        assert progress.session_score == 2
        assert progress.current_question_index == 1
        assert progress.current_topic.id == "t-opening"
        assert progress.questions_answered[0].time_spent_seconds == 4.2

        logged = question_store.list_attempts(USER_ID)
        assert len(logged) == 1
        assert logged[0].session_id == active_session.session_id
        assert question_store.get_mastery_record(USER_ID, "t-menu").correct_attempts == 1
        assert transport.events[-1] == (SessionEvent.QUESTION_ANSWERED, event.to_dict())

    def test_incorrect_answer_marks_improvement_area(self, active_session):
        event = active_session.record_question_attempt(1, "I made coffee")

        assert event.is_correct is False
        assert event.points_earned == 0
        assert active_session.progress.improvement_areas == ["Opening Procedures"]

    def test_out_of_range_is_noop(self, active_session, question_store):
        assert active_session.record_question_attempt(10, "true") is None
        assert active_session.record_question_attempt(-1, "true") is None

        assert active_session.progress.session_score == 0
        assert active_session.progress.questions_answered == []
        assert question_store.list_attempts(USER_ID) == []

    def test_submit_response_answers_current_question(self, active_session):
        active_session.submit_response("250ml, 350ml, 450ml")
        event = active_session.submit_response("wipe the counter and restock")

        assert event.question_index == 1
        assert event.is_correct is True
        assert active_session.progress.session_score == 5

    def test_repeat_answer_increments_attempt_number(self, active_session):
        active_session.record_question_attempt(0, "Only 350ml")
        active_session.record_question_attempt(0, "250ml, 350ml, 450ml")

        numbers = [a.attempt_number for a in active_session.progress.questions_answered]
        assert numbers == [1, 2]

    def test_write_failures_do_not_interrupt(self, coffee_topics, coffee_questions, session_store):
        store = FailingQuestionStore(coffee_topics, coffee_questions)
        session = make_session(store, session_store)
        session.initialize()
        session.start()
        store.fail_writes = True

        event = session.record_question_attempt(0, "250ml, 350ml, 450ml")

        assert event.is_correct is True
        assert session.progress.session_score == 2

    def test_concurrent_turns_are_serialized(self, active_session):
        threads = [
            threading.Thread(target=active_session.record_question_attempt, args=(i % 4, "250ml, 350ml, 450ml"))
            for i in range(40)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        progress = active_session.progress
        assert len(progress.questions_answered) == 40
        assert progress.session_score == sum(a.points_earned for a in progress.questions_answered)

    def test_concurrent_submits_answer_pending_questions_in_order(self, active_session):
        pending = [q.id for q in active_session.progress.questions_asked]
        start = threading.Barrier(len(pending))

        def submit():
            start.wait(timeout=5)
            active_session.submit_response("no idea")

        threads = [threading.Thread(target=submit) for _ in pending]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        answered = [a.question_id for a in active_session.progress.questions_answered]
        assert answered == pending
        assert active_session.progress.current_question_index == len(pending)

    def test_sessions_for_same_learner_share_mastery_row(self, question_store, session_store):
        sessions = [make_session(question_store, session_store) for _ in range(2)]
        for s in sessions:
            s.initialize()
            s.start()
        start = threading.Barrier(len(sessions))

        def answer(session):
            start.wait(timeout=5)
            for _ in range(5):
                session.record_question_attempt(0, "250ml, 350ml, 450ml")

        threads = [threading.Thread(target=answer, args=(s,)) for s in sessions]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        record = question_store.get_mastery_record(USER_ID, "t-menu")
        assert record.total_attempts == 10
        assert record.correct_attempts == 10

    def test_event_fraction_matches_progress_after_out_of_order_answers(self, active_session):
        active_session.record_question_attempt(2, "true")
        event = active_session.record_question_attempt(0, "250ml, 350ml, 450ml")

        assert event.fraction_complete == pytest.approx(0.75)
        assert event.fraction_complete == active_session.get_progress().fraction_complete


class TestEnd:
    def test_summary(self, active_session, session_store, transport):
        active_session.record_question_attempt(0, "250ml, 350ml, 450ml")
        active_session.record_question_attempt(1, "no idea")
        active_session.record_question_attempt(2, "true")

        summary = active_session.end()

        assert summary.final_score == 3
        assert summary.total_questions == 4
        assert summary.correct_answers == 2
        assert summary.accuracy == pytest.approx(0.5)
        assert summary.topics_covered == ["Menu", "Opening Procedures", "Food Safety Policy"]
        assert summary.improvement_areas == ["Opening Procedures"]
        assert len(summary.transcript) == 3
        assert session_store.sessions[summary.session_id]["summary"]["final_score"] == 3
        assert transport.names()[-1] == "session_ended"

    def test_empty_session_accuracy(self, session_store):
        store = InMemoryQuestionStore([make_topic("t", "Drinks")])
        store.upsert_mastery_record(
            MasteryRecord(USER_ID, "t", mastery_level=1.0, total_attempts=1, correct_attempts=1)
        )
        session = make_session(store, session_store)
        payload = session.initialize()
        assert payload.strategy is SelectionStrategy.ALL_MASTERED
        session.start()

        summary = session.end()

        assert summary.total_questions == 0
        assert summary.accuracy == 0.0

    def test_summary_write_failure_is_suppressed(self, question_store):
        session = make_session(question_store, FailingSessionStore(fail_update=True))
        session.initialize()
        session.start()

        summary = session.end()

        assert session.state is SessionState.ENDED
        assert summary.final_score == 0


class TestEndToEnd:
    def test_fresh_learner_two_topics(self, session_store):
        t1 = make_topic("t1", "T1", difficulty=1)
        t2 = make_topic("t2", "T2", difficulty=1)
        q1 = make_question(
            "q1", "t1", "Is espresso brewed under pressure?",
            question_type=QuestionType.TRUE_FALSE, correct_answer="true", points=2,
        )
        q2 = make_question(
            "q2", "t2", "What temperature is milk steamed to?",
            question_type=QuestionType.OPEN_ENDED, correct_answer="sixty five degrees", points=3,
        )
        q3 = make_question(
            "q3", "t2", "Name the three opening checks.", difficulty=2,
            question_type=QuestionType.OPEN_ENDED, correct_answer="lights, grinder, till",
        )
        store = InMemoryQuestionStore([t1, t2], [q1, q2, q3])
        transport = RecordingTransport()
        session = make_session(store, session_store, transport)

        payload = session.initialize()
        assert [q["id"] for q in payload.questions] == ["q1", "q2", "q3"]
        assert not any(q["id"].startswith("template:") for q in payload.questions)

        session.start()
        session.record_question_attempt(0, "yes, true")
        session.record_question_attempt(1, "just warm")

        progress = session.get_progress()
        assert progress.session_score == q1.points
        assert progress.improvement_areas == ["T2"]

        record = store.get_mastery_record(USER_ID, "t2")
        assert (record.total_attempts, record.correct_attempts, record.mastery_level) == (1, 0, 0.0)

        summary = session.end()
        assert summary.improvement_areas == ["T2"]
        assert transport.names() == [
            "initialized",
            "session_started",
            "question_answered",
            "question_answered",
            "session_ended",
        ]
