"""
Answer evaluation for free-text learner responses.

Each question type has a handler registered with @register:
- multiple_choice: response must contain the option equal to the correct answer
- open_ended: keyword overlap with the expected answer
- true_false: response must assert exactly one of true/false, matching the key

The open-ended heuristic is a known approximation: it counts expected
keywords (length > 2) that appear as substrings of the response and passes
at KEYWORD_MATCH_THRESHOLD. It does no semantic grading.
"""

from __future__ import annotations

import re
from typing import Protocol

from loguru import logger

from config import get_settings
from src.assessment.models import QuestionType, TopicQuestion

KEYWORD_SPLIT = re.compile(r"[\s,.]+")
WORD_SPLIT = re.compile(r"[^a-z]+")
MIN_KEYWORD_LENGTH = 3

TRUE_WORDS = frozenset({"true", "yes"})
FALSE_WORDS = frozenset({"false", "no"})


def normalize(text: str | None) -> str:
    """Trim and lowercase."""
    return (text or "").strip().lower()


def extract_keywords(expected: str) -> list[str]:
    """Tokens of the expected answer longer than two characters."""
    return [t for t in KEYWORD_SPLIT.split(normalize(expected)) if len(t) >= MIN_KEYWORD_LENGTH]


def asserted_boolean(text: str) -> bool | None:
    """
    Truth value asserted by a response.

    Returns None when the response contains neither indicator or both.
    """
    words = set(WORD_SPLIT.split(normalize(text)))
    says_true = bool(words & TRUE_WORDS)
    says_false = bool(words & FALSE_WORDS)
    if says_true == says_false:
        return None
    return says_true


class AnswerHandler(Protocol):
    """Protocol for per-question-type evaluators."""

    def evaluate(self, response: str, question: TopicQuestion, context: EvaluationContext) -> bool:
        ...


class EvaluationContext:
    """Tunables shared by all handlers."""

    def __init__(self, keyword_match_threshold: float):
        self.keyword_match_threshold = keyword_match_threshold


# Handler registry - populated by @register decorator
HANDLERS: dict[QuestionType, AnswerHandler] = {}


def register(question_type: QuestionType):
    """Decorator to register an answer handler."""
    def decorator(cls):
        HANDLERS[question_type] = cls()
        return cls
    return decorator


def get_handler(question_type: str | QuestionType) -> AnswerHandler | None:
    """Get the handler for a question type."""
    if isinstance(question_type, str):
        try:
            question_type = QuestionType(question_type.lower())
        except ValueError:
            return None
    return HANDLERS.get(question_type)


@register(QuestionType.MULTIPLE_CHOICE)
class MultipleChoiceHandler:
    """Response must mention the option that equals the correct answer."""

    def evaluate(self, response: str, question: TopicQuestion, context: EvaluationContext) -> bool:
        correct = normalize(question.correct_answer)
        option = next(
            (o for o in question.answer_options or [] if normalize(o) == correct),
            None,
        )
        if option is None:
            logger.debug(f"Question {question.id} has no option matching its correct answer")
            return False
        return normalize(option) in normalize(response)


@register(QuestionType.OPEN_ENDED)
class OpenEndedHandler:
    """Fraction of expected keywords present in the response."""

    def evaluate(self, response: str, question: TopicQuestion, context: EvaluationContext) -> bool:
        keywords = extract_keywords(question.correct_answer)
        if not keywords:
            return False
        answer = normalize(response)
        hits = sum(1 for keyword in keywords if keyword in answer)
        return hits / len(keywords) >= context.keyword_match_threshold


@register(QuestionType.TRUE_FALSE)
class TrueFalseHandler:
    """Learner must assert exactly one truth value, equal to the key."""

    def evaluate(self, response: str, question: TopicQuestion, context: EvaluationContext) -> bool:
        key = normalize(question.correct_answer)
        expected = "true" in key or "yes" in key
        asserted = asserted_boolean(response)
        if asserted is None:
            return False
        return asserted == expected


class AnswerEvaluator:
    """Score a learner response against a question's expected answer."""

    def __init__(self, keyword_match_threshold: float | None = None):
        self.context = EvaluationContext(
            keyword_match_threshold
            if keyword_match_threshold is not None
            else get_settings().keyword_match_threshold
        )

    def evaluate(self, learner_response: str, question: TopicQuestion) -> bool:
        """
        Evaluate a response.

        Unsupported question types evaluate to incorrect rather than raising.
        """
        handler = get_handler(question.question_type)
        if handler is None:
            logger.warning(
                f"No evaluator for question type {question.question_type!r}; marking incorrect"
            )
            return False
        return handler.evaluate(learner_response or "", question, self.context)
