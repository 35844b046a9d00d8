"""
Topic Mastery Tracker.

Tracks learner mastery per topic as a plain ratio:

    mastery_level = correct_attempts / total_attempts

A topic is marked mastered (mastered_at) the first time mastery_level reaches
the mastery threshold. The mark is permanent: later incorrect answers lower
mastery_level but never clear mastered_at.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from config import get_settings
from src.assessment.exceptions import StorageError
from src.assessment.models import (
    LearnerStats,
    MasteryRecord,
    QuestionAttempt,
    utcnow,
)
from src.assessment.store import QuestionStore


def apply_attempt(
    record: MasteryRecord,
    is_correct: bool,
    now: datetime,
    mastery_threshold: float,
) -> MasteryRecord:
    """
    Fold one attempt into a mastery record (in place) and return it.

    Args:
        record: Current state (a fresh record for a first attempt)
        is_correct: Whether the attempt was correct
        now: Attempt timestamp
        mastery_threshold: Level at which mastered_at is stamped

    Returns:
        The updated record
    """
    record.total_attempts += 1
    if is_correct:
        record.correct_attempts += 1
    record.mastery_level = min(1.0, record.correct_attempts / record.total_attempts)
    record.last_attempt_at = now
    if record.mastery_level >= mastery_threshold and record.mastered_at is None:
        record.mastered_at = now
    return record


class MasteryTracker:
    """
    Compute and persist per-learner, per-topic mastery.

    Each update is a single store-level read-modify-write, so trackers in
    different sessions (or processes sharing a database) never lose each
    other's attempts on the same (user_id, topic_id).
    """

    def __init__(self, store: QuestionStore, mastery_threshold: float | None = None):
        """
        Initialize tracker with a question store.

        Args:
            store: Topic/question store holding mastery rows
            mastery_threshold: Override for settings.mastery_threshold
        """
        self.store = store
        self.mastery_threshold = (
            mastery_threshold
            if mastery_threshold is not None
            else get_settings().mastery_threshold
        )

    def get_progress(self, user_id: str) -> list[MasteryRecord]:
        """
        Get all mastery records for a learner.

        Raises:
            StorageError: If the store cannot be read
        """
        return self.store.list_mastery_records(user_id)

    def record_attempt(self, attempt: QuestionAttempt) -> MasteryRecord | None:
        """
        Update (or lazily create) the mastery record an attempt belongs to.

        Storage failures are logged and swallowed so a session is never
        blocked by the analytics write.

        Returns:
            The updated record, or None if the store could not be updated
        """
        now = utcnow()
        try:
            record = self.store.update_mastery_record(
                attempt.user_id,
                attempt.topic_id,
                lambda current: apply_attempt(
                    current, attempt.is_correct, now, self.mastery_threshold
                ),
            )
        except StorageError as e:
            logger.warning(
                f"Mastery update failed for user {attempt.user_id} "
                f"topic {attempt.topic_id}: {e}"
            )
            return None

        if record.mastered_at == now:
            logger.info(f"User {attempt.user_id} mastered topic {attempt.topic_id}")
        logger.debug(
            f"Mastery {attempt.topic_id}: {record.correct_attempts}/{record.total_attempts} "
            f"= {record.mastery_level:.2f}"
        )
        return record

    def get_learner_stats(self, user_id: str) -> LearnerStats:
        """
        Summary statistics for a learner.

        Returns empty stats (beginner level) if progress cannot be read.
        """
        try:
            progress = self.get_progress(user_id)
        except StorageError as e:
            logger.warning(f"Could not get learner stats for {user_id}: {e}")
            return LearnerStats()

        if not progress:
            return LearnerStats()

        activity = [r.last_attempt_at for r in progress if r.last_attempt_at is not None]
        return LearnerStats(
            total_topics=len(progress),
            mastered_topics=sum(
                1 for r in progress if r.mastery_level >= self.mastery_threshold
            ),
            total_attempts=sum(r.total_attempts for r in progress),
            average_mastery=sum(r.mastery_level for r in progress) / len(progress),
            recent_activity=max(activity) if activity else None,
        )
