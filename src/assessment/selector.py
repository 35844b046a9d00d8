"""
Question Selection for Adaptive Assessment.

Produces the ordered question set for a learner's next session.

Strategies (tried in order, same output shape):
- PriorityBasedSelection: per-question status ordering
  (unanswered -> incorrect -> correct, then easier, then topic name)
- TopicAdaptiveSelection: legacy topic-level mastery ordering, synthesizing a
  templated question for topics that have none
- Built-in constant question set when neither can produce anything
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Protocol

from loguru import logger

from config import get_settings
from src.assessment.exceptions import NotFoundError, StorageError
from src.assessment.models import (
    KnowledgeTopic,
    MatchSource,
    QuestionAttempt,
    QuestionProgressReport,
    QuestionStatus,
    QuestionType,
    QuestionWithStatus,
    SelectionResult,
    SelectionStrategy,
    TopicCategory,
    TopicProgressSummary,
    TopicQuestion,
)
from src.assessment.store import QuestionStore
from src.assessment.templates import synthesize_question

FUZZY_PREFIX_LENGTH = 20


# ============================================================================
# Status derivation
# ============================================================================


def _latest_by(attempts: Iterable[QuestionAttempt], key) -> dict:
    """Most recent attempt per key; later log position wins timestamp ties."""
    latest: dict = {}
    for attempt in attempts:
        k = key(attempt)
        current = latest.get(k)
        if current is None or attempt.created_at >= current.created_at:
            latest[k] = attempt
    return latest


def _prefix_overlap(asked: str, template: str) -> bool:
    asked = asked.lower()
    template = template.lower()
    if not asked or not template:
        return False
    return (
        template[:FUZZY_PREFIX_LENGTH] in asked
        or asked[:FUZZY_PREFIX_LENGTH] in template
    )


def derive_statuses(
    rows: list[tuple[TopicQuestion, KnowledgeTopic]],
    attempts: list[QuestionAttempt],
    fuzzy_matching: bool = True,
) -> list[QuestionWithStatus]:
    """
    Annotate each question with the learner's status on it.

    The status comes from the most recent attempt on the exact question id.
    Failing that, and only for attempts whose question id is missing or not
    in this pool, an attempt on the same topic whose text shares a
    20-character case-insensitive prefix with the question is used.

    Args:
        rows: (question, topic) pairs
        attempts: The learner's attempt log
        fuzzy_matching: Enable the text-prefix fallback

    Returns:
        QuestionWithStatus list in input order
    """
    pool_ids = {q.id for q, _ in rows if q.id is not None}
    by_id = _latest_by(
        (a for a in attempts if a.question_id is not None),
        lambda a: a.question_id,
    )
    legacy = [
        a for a in attempts
        if (a.question_id is None or a.question_id not in pool_ids) and a.question_asked
    ]

    annotated = []
    for question, topic in rows:
        attempt = by_id.get(question.id) if question.id is not None else None
        matched_by = MatchSource.QUESTION_ID if attempt else None

        if attempt is None and fuzzy_matching and legacy:
            matches = [
                a for a in legacy
                if a.topic_id == topic.id
                and _prefix_overlap(a.question_asked, question.question_template)
            ]
            if matches:
                attempt = _latest_by(matches, lambda a: "match")["match"]
                matched_by = MatchSource.TEXT_PREFIX

        if attempt is None:
            status = QuestionStatus.UNANSWERED
        elif attempt.is_correct:
            status = QuestionStatus.CORRECT
        else:
            status = QuestionStatus.INCORRECT

        annotated.append(
            QuestionWithStatus.from_question(question, topic, status, matched_by)
        )
    return annotated


def priority_key(question: QuestionWithStatus) -> tuple:
    """Composite sort key: status tier, difficulty, topic name."""
    return (
        question.status.rank,
        question.difficulty_level,
        question.topic_name.casefold(),
        question.topic_name,
    )


def distinct_topics(
    questions: list[QuestionWithStatus], topics_by_id: dict[str, KnowledgeTopic]
) -> list[KnowledgeTopic]:
    """Topics touched by a selection, in order of first appearance."""
    seen: dict[str, KnowledgeTopic] = {}
    for question in questions:
        if question.topic_id not in seen and question.topic_id in topics_by_id:
            seen[question.topic_id] = topics_by_id[question.topic_id]
    return list(seen.values())


# ============================================================================
# Strategies
# ============================================================================


class QuestionSelectionStrategy(Protocol):
    """
    A selection strategy.

    select() returns None when the strategy has nothing to work with, letting
    the selector move on to the next one.
    """

    name: SelectionStrategy

    def select(
        self, user_id: str, organization_id: str, max_questions: int
    ) -> SelectionResult | None:
        ...


class PriorityBasedSelection:
    """Order every active question by the learner's status on it."""

    name = SelectionStrategy.PRIORITY_BASED

    def __init__(self, store: QuestionStore, fuzzy_matching: bool = True):
        self.store = store
        self.fuzzy_matching = fuzzy_matching

    def select(
        self, user_id: str, organization_id: str, max_questions: int
    ) -> SelectionResult | None:
        rows = self.store.list_active_questions(organization_id)
        if not rows:
            logger.warning(
                f"No active questions for organization {organization_id}; "
                "falling back to topic-adaptive selection"
            )
            return None

        attempts = self.store.list_attempts(user_id)
        logger.debug(f"Found {len(rows)} questions, {len(attempts)} attempts")

        annotated = derive_statuses(rows, attempts, self.fuzzy_matching)
        ordered = sorted(annotated, key=priority_key)
        selected = ordered[:max_questions]

        topics_by_id = {topic.id: topic for _, topic in rows}
        result = SelectionResult(
            questions=selected,
            topics=distinct_topics(selected, topics_by_id),
            strategy=self.name,
        )
        logger.info(
            f"Priority-based selection: {len(selected)}/{len(annotated)} questions, "
            f"status breakdown {result.status_breakdown()}, {len(result.topics)} topics"
        )
        return result


class TopicAdaptiveSelection:
    """
    Legacy topic-level selection.

    Picks the least-mastered, least-attempted, easiest topics below the
    mastery threshold and splits the question budget across them.
    """

    name = SelectionStrategy.ADAPTIVE_PRIORITY

    def __init__(
        self,
        store: QuestionStore,
        mastery_threshold: float,
        topic_limit: int = 3,
        fuzzy_matching: bool = True,
    ):
        self.store = store
        self.mastery_threshold = mastery_threshold
        self.topic_limit = topic_limit
        self.fuzzy_matching = fuzzy_matching

    def select(
        self, user_id: str, organization_id: str, max_questions: int
    ) -> SelectionResult | None:
        topics = self.store.list_active_topics(organization_id)
        if not topics:
            logger.warning(f"No active topics for organization {organization_id}")
            return None

        progress = {r.topic_id: r for r in self.store.list_mastery_records(user_id)}

        def needs_practice(topic: KnowledgeTopic) -> bool:
            record = progress.get(topic.id)
            return record is None or record.mastery_level < self.mastery_threshold

        needing = [t for t in topics if needs_practice(t)]
        if not needing:
            logger.info(f"User {user_id} has mastered all topics")
            return SelectionResult(questions=[], topics=[], strategy=SelectionStrategy.ALL_MASTERED)

        def topic_priority(topic: KnowledgeTopic) -> tuple:
            record = progress.get(topic.id)
            mastery = record.mastery_level if record else 0.0
            attempts = record.total_attempts if record else 0
            return (mastery, attempts, topic.difficulty_level)

        needing.sort(key=topic_priority)
        per_topic = math.ceil(max_questions / min(self.topic_limit, len(needing)))

        rows = self.store.list_active_questions(organization_id)
        by_topic: dict[str, list[TopicQuestion]] = {}
        for question, topic in rows:
            by_topic.setdefault(topic.id, []).append(question)

        chosen: list[tuple[TopicQuestion, KnowledgeTopic]] = []
        selected_topics: list[KnowledgeTopic] = []
        for topic in needing[: self.topic_limit]:
            if len(chosen) >= max_questions:
                break
            questions = by_topic.get(topic.id, [])[:per_topic]
            if not questions:
                questions = [synthesize_question(topic)]
                logger.debug(f"Synthesized question for topic {topic.name}")
            chosen.extend((q, topic) for q in questions)
            selected_topics.append(topic)

        attempts = self.store.list_attempts(user_id)
        annotated = derive_statuses(chosen[:max_questions], attempts, self.fuzzy_matching)
        logger.info(
            f"Topic-adaptive selection: {len(annotated)} questions "
            f"from {len(selected_topics)} topics"
        )
        return SelectionResult(
            questions=annotated,
            topics=selected_topics,
            strategy=self.name,
        )


# ============================================================================
# Built-in question set
# ============================================================================

FALLBACK_TOPIC_ID = "fallback-topic"


def fallback_selection(organization_id: str, max_questions: int | None = None) -> SelectionResult:
    """Constant question set used when the store yields nothing usable."""
    topic = KnowledgeTopic(
        id=FALLBACK_TOPIC_ID,
        organization_id=organization_id,
        name="Coffee Shop Knowledge",
        description="Basic coffee shop operations and menu knowledge",
        category=TopicCategory.GENERAL,
        difficulty_level=1,
    )
    questions = [
        TopicQuestion(
            id="fallback-q1",
            topic_id=FALLBACK_TOPIC_ID,
            question_template="What sizes are available for cappuccino?",
            question_type=QuestionType.MULTIPLE_CHOICE,
            correct_answer="250ml, 350ml, 450ml",
            answer_options=["250ml, 350ml, 450ml", "Only 350ml", "200ml, 400ml, 600ml"],
            difficulty_level=1,
            points=2,
            explanation="Cappuccino comes in three sizes according to our menu",
        ),
        TopicQuestion(
            id="fallback-q2",
            topic_id=FALLBACK_TOPIC_ID,
            question_template="What is the price difference between a 250ml and 450ml cappuccino?",
            question_type=QuestionType.OPEN_ENDED,
            correct_answer="The price difference varies based on current menu pricing",
            difficulty_level=2,
            points=3,
            explanation="Understanding price differences helps with customer service",
        ),
    ]
    if max_questions:
        questions = questions[:max_questions]
    return SelectionResult(
        questions=[QuestionWithStatus.from_question(q, topic) for q in questions],
        topics=[topic],
        strategy=SelectionStrategy.FALLBACK,
    )


# ============================================================================
# Selector
# ============================================================================


class QuestionSelector:
    """
    Select questions for a learner.

    Tries priority-based selection, then topic-adaptive selection, then the
    built-in set. A read failure moves on to the next strategy; with the
    built-in set disabled it propagates instead.
    """

    def __init__(
        self,
        store: QuestionStore,
        mastery_threshold: float | None = None,
        topic_limit: int | None = None,
        fuzzy_matching: bool | None = None,
        use_fallback: bool | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.mastery_threshold = (
            mastery_threshold if mastery_threshold is not None else settings.mastery_threshold
        )
        self.fuzzy_matching = (
            fuzzy_matching if fuzzy_matching is not None else settings.fuzzy_attempt_matching
        )
        self.use_fallback = (
            use_fallback if use_fallback is not None else settings.use_fallback_questions
        )
        self.default_max_questions = settings.default_max_questions
        self.priority = PriorityBasedSelection(store, self.fuzzy_matching)
        self.adaptive = TopicAdaptiveSelection(
            store,
            self.mastery_threshold,
            topic_limit if topic_limit is not None else settings.adaptive_topic_limit,
            self.fuzzy_matching,
        )
        self.strategies: list[QuestionSelectionStrategy] = [self.priority, self.adaptive]

    def select(
        self, user_id: str, organization_id: str, max_questions: int | None = None
    ) -> SelectionResult:
        """
        Produce the ordered question set for a session.

        Raises:
            StorageError: Store unreachable and the built-in set is disabled
            NotFoundError: Nothing selectable and the built-in set is disabled
        """
        if max_questions is None:
            max_questions = self.default_max_questions

        last_error: StorageError | None = None
        for strategy in self.strategies:
            try:
                result = strategy.select(user_id, organization_id, max_questions)
            except StorageError as e:
                logger.error(f"{strategy.name.value} selection failed: {e}")
                last_error = e
                continue
            if result is not None:
                return result

        if self.use_fallback:
            logger.warning(f"Using built-in question set for organization {organization_id}")
            return fallback_selection(organization_id, max_questions)
        if last_error is not None:
            raise last_error
        raise NotFoundError(
            f"No questions or topics available for organization {organization_id}",
            {"user_id": user_id, "organization_id": organization_id},
        )

    def question_progress(self, user_id: str, organization_id: str) -> QuestionProgressReport:
        """
        Status of every active question plus per-topic summaries.

        Raises:
            StorageError: If the store cannot be read
        """
        rows = self.store.list_active_questions(organization_id)
        attempts = self.store.list_attempts(user_id)
        annotated = derive_statuses(rows, attempts, self.fuzzy_matching)

        summaries: dict[str, TopicProgressSummary] = {}
        for question in annotated:
            summary = summaries.get(question.topic_id)
            if summary is None:
                summary = summaries[question.topic_id] = TopicProgressSummary(
                    topic_id=question.topic_id,
                    topic_name=question.topic_name,
                    topic_category=question.topic_category,
                )
            summary.total_questions += 1
            if question.status is QuestionStatus.CORRECT:
                summary.correct_questions += 1
            elif question.status is QuestionStatus.INCORRECT:
                summary.incorrect_questions += 1
            else:
                summary.unanswered_questions += 1

        topics = sorted(summaries.values(), key=lambda s: (s.topic_name.casefold(), s.topic_name))
        return QuestionProgressReport(questions=annotated, topics=topics)
