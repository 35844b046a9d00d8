"""
Assessment Session: orchestration of one learner's practice session.

Lifecycle (no state is skipped, ENDED is terminal):

    UNINITIALIZED -> initialize() -> INITIALIZED -> start() -> ACTIVE -> end() -> ENDED

- Selection -> src.assessment.selector
- Scoring -> src.assessment.evaluator
- Mastery -> src.assessment.mastery_tracker
- Persistence -> QuestionStore / SessionStore collaborators
- Presentation -> SessionTransport (receives the instruction payload and events)
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from src.assessment.evaluator import AnswerEvaluator
from src.assessment.exceptions import InvalidStateError, StorageError
from src.assessment.mastery_tracker import MasteryTracker
from src.assessment.models import (
    InstructionPayload,
    KnowledgeTopic,
    ProgressEvent,
    QuestionAttempt,
    QuestionWithStatus,
    SelectionResult,
    SessionProgress,
    SessionSummary,
    enum_value,
    utcnow,
)
from src.assessment.prompts import render_instructions
from src.assessment.selector import QuestionSelector
from src.assessment.store import QuestionStore, SessionStore


class SessionState(str, Enum):
    """Assessment session lifecycle states."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ACTIVE = "active"
    ENDED = "ended"


class SessionEvent(str, Enum):
    """Events delivered to the transport."""

    INITIALIZED = "initialized"
    SESSION_STARTED = "session_started"
    QUESTION_ANSWERED = "question_answered"
    SESSION_ENDED = "session_ended"


class SessionTransport(Protocol):
    """Presentation/transport collaborator (e.g. a conversational agent)."""

    def send(self, event: SessionEvent, payload: dict[str, Any]) -> None:
        ...


class NullTransport:
    """Transport that drops every event."""

    def send(self, event: SessionEvent, payload: dict[str, Any]) -> None:
        logger.debug(f"Dropping {event.value} event")


def question_payload(question: QuestionWithStatus) -> dict[str, Any]:
    """Verbatim structured form of one selected question."""
    return {
        "id": question.id,
        "topic_id": question.topic_id,
        "topic_name": question.topic_name,
        "question": question.question_template,
        "type": enum_value(question.question_type),
        "options": list(question.answer_options),
        "expected_answer": question.correct_answer,
        "explanation": question.explanation,
        "points": question.points,
        "difficulty": question.difficulty_level,
        "status": question.status.value,
    }


class AssessmentSession:
    """
    One assessment session for one learner.

    Turns are serialized: concurrent record_question_attempt() calls on the
    same session queue on an internal lock instead of interleaving.
    """

    def __init__(
        self,
        user_id: str,
        organization_id: str,
        question_store: QuestionStore,
        session_store: SessionStore,
        transport: SessionTransport | None = None,
        max_questions: int | None = None,
        selector: QuestionSelector | None = None,
        tracker: MasteryTracker | None = None,
        evaluator: AnswerEvaluator | None = None,
    ):
        self.user_id = user_id
        self.organization_id = organization_id
        self.question_store = question_store
        self.session_store = session_store
        self.transport = transport or NullTransport()
        self.max_questions = max_questions
        self.selector = selector or QuestionSelector(question_store)
        self.tracker = tracker or MasteryTracker(question_store)
        self.evaluator = evaluator or AnswerEvaluator()

        self.state = SessionState.UNINITIALIZED
        self.session_id: str | None = None
        self.progress = SessionProgress()
        self.selection: SelectionResult | None = None
        self.payload: InstructionPayload | None = None
        self.summary: SessionSummary | None = None
        self._topics: dict[str, KnowledgeTopic] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # State helpers
    # =========================================================================

    def _require(self, operation: str, expected: SessionState, reason: str | None = None) -> None:
        if self.state is not expected:
            raise InvalidStateError(operation, self.state.value, reason)

    def _topic_for(self, question: QuestionWithStatus | None) -> KnowledgeTopic | None:
        if question is None:
            return None
        return self._topics.get(question.topic_id)

    def _pending_question(self) -> QuestionWithStatus | None:
        index = self.progress.current_question_index
        if 0 <= index < len(self.progress.questions_asked):
            return self.progress.questions_asked[index]
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> InstructionPayload:
        """
        Select the question set and hand the instruction payload to the transport.

        Raises:
            InvalidStateError: If already initialized
            StorageError: If selection reads fail and no fallback applies
            NotFoundError: If nothing is selectable and no fallback applies
        """
        self._require("initialize", SessionState.UNINITIALIZED)

        selection = self.selector.select(self.user_id, self.organization_id, self.max_questions)
        stats = self.tracker.get_learner_stats(self.user_id)

        self.selection = selection
        self._topics = {topic.id: topic for topic in selection.topics}
        self.progress = SessionProgress(
            total_questions=len(selection.questions),
            questions_asked=list(selection.questions),
        )
        self.progress.current_topic = self._topic_for(self._pending_question())

        focus_areas = list(dict.fromkeys(t.category.value for t in selection.topics))
        self.payload = InstructionPayload(
            questions=[question_payload(q) for q in selection.questions],
            topics=[t.name for t in selection.topics],
            focus_areas=focus_areas,
            learner_level=stats.level,
            strategy=selection.strategy,
            instructions=render_instructions(
                selection.questions, focus_areas, stats.level.value
            ),
        )
        self.state = SessionState.INITIALIZED

        logger.info(
            f"Assessment initialized for {self.user_id}: {self.payload.total_questions} questions "
            f"({selection.strategy.value}), level {stats.level.value}"
        )
        self.transport.send(SessionEvent.INITIALIZED, self.payload.to_dict())
        return self.payload

    def start(self) -> str:
        """
        Create the persisted session record and become ACTIVE.

        Raises:
            InvalidStateError: If not INITIALIZED
            StorageError: If the session record cannot be created (state is unchanged)
        """
        self._require("start", SessionState.INITIALIZED)

        meta = {
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "session_type": "assessment",
            "strategy": self.selection.strategy.value,
            "total_questions": self.progress.total_questions,
            "topic_ids": [t.id for t in self.selection.topics],
            "started_at": utcnow().isoformat(),
        }
        session_id = self.session_store.create_session(meta)

        self.session_id = session_id
        for question in self.progress.questions_asked:
            question.session_id = session_id
        self.state = SessionState.ACTIVE

        logger.info(f"Assessment session {session_id} started")
        self.transport.send(SessionEvent.SESSION_STARTED, {"session_id": session_id})
        return session_id

    def record_question_attempt(
        self,
        question_index: int,
        learner_response: str,
        time_spent_seconds: float | None = None,
    ) -> ProgressEvent | None:
        """
        Evaluate and record the learner's answer to one question.

        An index outside the session's question list is logged and ignored.

        Args:
            question_index: Zero-based position in the selected question list
            learner_response: Raw learner response text
            time_spent_seconds: Optional answer latency

        Returns:
            The progress event delivered to the transport, or None if ignored

        Raises:
            InvalidStateError: If the session is not ACTIVE
        """
        with self._lock:
            event = self._record_locked(question_index, learner_response, time_spent_seconds)
        if event is not None:
            self.transport.send(SessionEvent.QUESTION_ANSWERED, event.to_dict())
        return event

    def submit_response(
        self, learner_response: str, time_spent_seconds: float | None = None
    ) -> ProgressEvent | None:
        """Record a response against the current pending question."""
        with self._lock:
            event = self._record_locked(
                self.progress.current_question_index, learner_response, time_spent_seconds
            )
        if event is not None:
            self.transport.send(SessionEvent.QUESTION_ANSWERED, event.to_dict())
        return event

    def _record_locked(
        self,
        question_index: int,
        learner_response: str,
        time_spent_seconds: float | None,
    ) -> ProgressEvent | None:
        # Caller holds self._lock
        self._require("record an attempt", SessionState.ACTIVE)

        questions = self.progress.questions_asked
        if not 0 <= question_index < len(questions):
            logger.warning(
                f"Session {self.session_id}: question index {question_index} "
                f"out of range (0..{len(questions) - 1}); ignoring"
            )
            return None

        question = questions[question_index]
        is_correct = self.evaluator.evaluate(learner_response, question)
        points = question.points if is_correct else 0
        previous = sum(
            1 for a in self.progress.questions_answered
            if a.question_id == question.id and a.question_asked == question.question_template
        )

        attempt = QuestionAttempt(
            session_id=self.session_id,
            user_id=self.user_id,
            topic_id=question.topic_id,
            question_id=question.id,
            question_asked=question.question_template,
            learner_answer=learner_response,
            correct_answer=question.correct_answer,
            is_correct=is_correct,
            points_earned=points,
            time_spent_seconds=time_spent_seconds,
            attempt_number=previous + 1,
        )

        progress = self.progress
        progress.questions_answered.append(attempt)
        progress.session_score += points
        progress.current_question_index = max(
            progress.current_question_index, question_index + 1
        )
        if not is_correct and question.topic_name not in progress.improvement_areas:
            progress.improvement_areas.append(question.topic_name)
        progress.current_topic = self._topic_for(self._pending_question())

        try:
            self.question_store.append_attempt(attempt)
        except StorageError as e:
            logger.warning(f"Failed to log attempt for session {self.session_id}: {e}")
        self.tracker.record_attempt(attempt)

        event = ProgressEvent(
            question_index=question_index,
            is_correct=is_correct,
            points_earned=points,
            current_score=progress.session_score,
            fraction_complete=progress.fraction_complete,
        )
        logger.info(
            f"Q{question_index + 1}/{progress.total_questions} "
            f"{'correct' if is_correct else 'incorrect'} (+{points}), "
            f"score {progress.session_score}"
        )
        return event

    def end(self) -> SessionSummary:
        """
        Summarize, persist and close the session.

        Raises:
            InvalidStateError: If not ACTIVE (including a second end())
        """
        with self._lock:
            if self.state is SessionState.ENDED:
                raise InvalidStateError("end", self.state.value, "session already ended")
            self._require("end", SessionState.ACTIVE)

            answered = self.progress.questions_answered
            total = self.progress.total_questions
            correct = sum(1 for a in answered if a.is_correct)

            names = {q.topic_id: q.topic_name for q in self.progress.questions_asked}
            topics_covered = list(dict.fromkeys(names.get(a.topic_id, a.topic_id) for a in answered))
            improvement_areas = list(
                dict.fromkeys(names.get(a.topic_id, a.topic_id) for a in answered if not a.is_correct)
            )

            summary = SessionSummary(
                session_id=self.session_id,
                final_score=self.progress.session_score,
                total_questions=total,
                correct_answers=correct,
                accuracy=correct / total if total else 0.0,
                topics_covered=topics_covered,
                improvement_areas=improvement_areas,
                transcript=[a.to_dict() for a in answered],
                strategy=self.selection.strategy,
            )

            try:
                self.session_store.update_session(self.session_id, summary.to_dict())
            except StorageError as e:
                logger.warning(f"Failed to persist summary for session {self.session_id}: {e}")

            self.summary = summary
            self.state = SessionState.ENDED

        logger.info(
            f"Assessment session {self.session_id} ended: score {summary.final_score}, "
            f"{correct}/{total} correct ({summary.accuracy_percentage}%)"
        )
        self.transport.send(SessionEvent.SESSION_ENDED, summary.to_dict())
        return summary

    def get_progress(self) -> SessionProgress:
        """Current in-memory progress."""
        return self.progress
