# SQLAlchemy models
from .assessment import (
    KnowledgeTopicRow,
    QuestionAttemptRow,
    TopicQuestionRow,
    TrainingSessionRow,
    UserTopicProgressRow,
)
from .base import Base
