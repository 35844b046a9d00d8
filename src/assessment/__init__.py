"""
Assessment: adaptive knowledge-assessment engine.

- models: topics, questions, attempts, mastery records, session results
- mastery_tracker: per-learner, per-topic mastery ratio
- selector: priority-based and topic-adaptive question selection
- evaluator: type-specific answer heuristics
- session: the initialize -> start -> answer -> end state machine
"""

from src.assessment.evaluator import AnswerEvaluator
from src.assessment.exceptions import (
    AssessmentError,
    InvalidStateError,
    NotFoundError,
    StorageError,
)
from src.assessment.mastery_tracker import MasteryTracker
from src.assessment.selector import QuestionSelector
from src.assessment.session import AssessmentSession, SessionState
from src.assessment.store import InMemoryQuestionStore, InMemorySessionStore

__all__ = [
    # Engine
    "AnswerEvaluator",
    "AssessmentSession",
    "MasteryTracker",
    "QuestionSelector",
    "SessionState",
    # Stores
    "InMemoryQuestionStore",
    "InMemorySessionStore",
    # Errors
    "AssessmentError",
    "InvalidStateError",
    "NotFoundError",
    "StorageError",
]
