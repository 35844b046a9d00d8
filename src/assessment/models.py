"""
Domain models for the adaptive assessment engine.

Design:
- KnowledgeTopic / TopicQuestion: read-only records owned by the authoring side
- MasteryRecord: per learner x topic aggregate, mutated only by MasteryTracker
- QuestionAttempt: append-only log record
- QuestionWithStatus: a question annotated with the learner's latest outcome
- SessionProgress: in-memory state of one running session
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def enum_value(value: Any) -> Any:
    """Plain value of an enum member; anything else is returned unchanged."""
    return value.value if isinstance(value, Enum) else value


class TopicCategory(str, Enum):
    """Knowledge topic categories."""

    MENU = "menu"
    PROCEDURES = "procedures"
    POLICIES = "policies"
    GENERAL = "general"


class QuestionType(str, Enum):
    """Question types understood by the answer evaluator."""

    MULTIPLE_CHOICE = "multiple_choice"
    OPEN_ENDED = "open_ended"
    TRUE_FALSE = "true_false"


class QuestionStatus(str, Enum):
    """
    Learner status of a single question.

    Ordered by selection priority: unseen material first, then
    remediation, then review.
    """

    UNANSWERED = "unanswered"
    INCORRECT = "incorrect"
    CORRECT = "correct"

    @property
    def rank(self) -> int:
        """Sort rank (lower is asked first)."""
        return {
            QuestionStatus.UNANSWERED: 0,
            QuestionStatus.INCORRECT: 1,
            QuestionStatus.CORRECT: 2,
        }[self]


class SelectionStrategy(str, Enum):
    """Which selection path produced a question set."""

    PRIORITY_BASED = "priority_based"
    ADAPTIVE_PRIORITY = "adaptive_priority"
    ALL_MASTERED = "all_mastered"
    FALLBACK = "fallback"


class MatchSource(str, Enum):
    """How a question was linked to the attempt that set its status."""

    QUESTION_ID = "question_id"
    TEXT_PREFIX = "text_prefix"


class LearnerLevel(str, Enum):
    """Coarse learner level derived from average mastery."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def from_average_mastery(cls, average: float) -> LearnerLevel:
        if average >= 0.8:
            return cls.ADVANCED
        if average >= 0.6:
            return cls.INTERMEDIATE
        return cls.BEGINNER


# ============================================================================
# Store records
# ============================================================================


@dataclass
class KnowledgeTopic:
    """A topic of organizational knowledge."""

    id: str
    organization_id: str
    name: str
    description: str = ""
    category: TopicCategory = TopicCategory.GENERAL
    difficulty_level: int = 1  # 1-3
    is_active: bool = True


@dataclass
class TopicQuestion:
    """A question belonging to one topic."""

    id: str | None
    topic_id: str
    question_template: str
    question_type: QuestionType = QuestionType.OPEN_ENDED
    correct_answer: str = ""
    answer_options: list[str] = field(default_factory=list)  # multiple_choice only
    difficulty_level: int = 1  # 1-3
    points: int = 1
    explanation: str = ""
    is_active: bool = True


@dataclass
class MasteryRecord:
    """
    Mastery state for one learner on one topic.

    mastery_level == correct_attempts / total_attempts whenever
    total_attempts > 0, else 0. mastered_at is set once and never cleared.
    """

    user_id: str
    topic_id: str
    mastery_level: float = 0.0
    total_attempts: int = 0
    correct_attempts: int = 0
    last_attempt_at: datetime | None = None
    mastered_at: datetime | None = None

    @property
    def is_mastered(self) -> bool:
        return self.mastered_at is not None


@dataclass(frozen=True)
class QuestionAttempt:
    """Immutable log record of one answered question."""

    session_id: str
    user_id: str
    topic_id: str
    question_id: str | None
    question_asked: str
    learner_answer: str
    correct_answer: str
    is_correct: bool
    points_earned: int
    time_spent_seconds: float | None = None
    attempt_number: int = 1
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class QuestionWithStatus(TopicQuestion):
    """A TopicQuestion annotated with the learner's status on it."""

    status: QuestionStatus = QuestionStatus.UNANSWERED
    topic_name: str = ""
    topic_category: TopicCategory = TopicCategory.GENERAL
    matched_by: MatchSource | None = None
    session_id: str | None = None

    @classmethod
    def from_question(
        cls,
        question: TopicQuestion,
        topic: KnowledgeTopic,
        status: QuestionStatus = QuestionStatus.UNANSWERED,
        matched_by: MatchSource | None = None,
    ) -> QuestionWithStatus:
        base = {f.name: getattr(question, f.name) for f in fields(TopicQuestion)}
        base["answer_options"] = list(question.answer_options)
        return cls(
            **base,
            status=status,
            topic_name=topic.name,
            topic_category=topic.category,
            matched_by=matched_by,
        )


# ============================================================================
# Selection and reporting
# ============================================================================


@dataclass
class SelectionResult:
    """Shared output shape of every selection strategy."""

    questions: list[QuestionWithStatus]
    topics: list[KnowledgeTopic]
    strategy: SelectionStrategy

    @property
    def is_empty(self) -> bool:
        return not self.questions

    def status_breakdown(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for question in self.questions:
            counts[question.status.value] = counts.get(question.status.value, 0) + 1
        return counts


@dataclass
class TopicProgressSummary:
    """Per-topic counts of question statuses for one learner."""

    topic_id: str
    topic_name: str
    topic_category: TopicCategory
    total_questions: int = 0
    correct_questions: int = 0
    incorrect_questions: int = 0
    unanswered_questions: int = 0

    @property
    def mastery_percentage(self) -> int:
        if self.total_questions == 0:
            return 0
        return round(self.correct_questions / self.total_questions * 100)


@dataclass
class QuestionProgressReport:
    """Every active question with status, plus topic summaries."""

    questions: list[QuestionWithStatus]
    topics: list[TopicProgressSummary]


@dataclass
class LearnerStats:
    """Summary statistics across all of a learner's mastery records."""

    total_topics: int = 0
    mastered_topics: int = 0
    total_attempts: int = 0
    average_mastery: float = 0.0
    recent_activity: datetime | None = None

    @property
    def level(self) -> LearnerLevel:
        return LearnerLevel.from_average_mastery(self.average_mastery)


# ============================================================================
# Session
# ============================================================================


@dataclass
class SessionProgress:
    """In-memory progress of one assessment session."""

    current_question_index: int = 0
    total_questions: int = 0
    questions_asked: list[QuestionWithStatus] = field(default_factory=list)
    questions_answered: list[QuestionAttempt] = field(default_factory=list)
    current_topic: KnowledgeTopic | None = None
    session_score: int = 0
    improvement_areas: list[str] = field(default_factory=list)

    @property
    def fraction_complete(self) -> float:
        """Share of the question list up to and including the furthest answered index."""
        if self.total_questions == 0:
            return 0.0
        return self.current_question_index / self.total_questions


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted to the transport after every recorded turn."""

    question_index: int
    is_correct: bool
    points_earned: int
    current_score: int
    fraction_complete: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class InstructionPayload:
    """
    Ordered question set handed to the presentation/transport collaborator.

    The order of `questions` is the order they must be asked in.
    """

    questions: list[dict[str, Any]]
    topics: list[str]
    focus_areas: list[str]
    learner_level: LearnerLevel
    strategy: SelectionStrategy
    instructions: str

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "questions": self.questions,
            "topics": self.topics,
            "focus_areas": self.focus_areas,
            "learner_level": self.learner_level.value,
            "strategy": self.strategy.value,
            "total_questions": self.total_questions,
            "instructions": self.instructions,
        }


@dataclass
class SessionSummary:
    """Result of ending a session; also persisted to the session store."""

    session_id: str
    final_score: int
    total_questions: int
    correct_answers: int
    accuracy: float
    topics_covered: list[str]
    improvement_areas: list[str]
    transcript: list[dict[str, Any]]
    strategy: SelectionStrategy
    ended_at: datetime = field(default_factory=utcnow)

    @property
    def accuracy_percentage(self) -> int:
        return round(self.accuracy * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "final_score": self.final_score,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "accuracy": self.accuracy,
            "accuracy_percentage": self.accuracy_percentage,
            "topics_covered": self.topics_covered,
            "improvement_areas": self.improvement_areas,
            "transcript": self.transcript,
            "strategy": self.strategy.value,
            "ended_at": self.ended_at.isoformat(),
        }
