"""
Question templates for synthesizing a question when a topic has none.

A template is a parameterized string keyed by topic category. The resolver
fills every named placeholder with the topic's own name.
"""

from __future__ import annotations

import string
from dataclasses import dataclass

from src.assessment.models import (
    KnowledgeTopic,
    QuestionType,
    TopicCategory,
    TopicQuestion,
)


@dataclass(frozen=True)
class QuestionTemplate:
    """A parameterized question string."""

    template: str
    difficulty: int
    category: TopicCategory

    @property
    def variables(self) -> list[str]:
        """Placeholder names in order of appearance."""
        return [
            name
            for _, name, _, _ in string.Formatter().parse(self.template)
            if name
        ]

    def render(self, values: dict[str, str]) -> str:
        """Fill placeholders; unknown ones render as [name]."""
        return self.template.format(
            **{name: values.get(name, f"[{name}]") for name in self.variables}
        )


QUESTION_TEMPLATES: dict[TopicCategory, tuple[QuestionTemplate, ...]] = {
    TopicCategory.MENU: (
        QuestionTemplate("What sizes are available for {item}?", 1, TopicCategory.MENU),
        QuestionTemplate("What is the price of {item} in {size}?", 1, TopicCategory.MENU),
        QuestionTemplate("Which ingredients are used in {item}?", 2, TopicCategory.MENU),
        QuestionTemplate("What is the difference between {item1} and {item2}?", 2, TopicCategory.MENU),
        QuestionTemplate("How should {item} be prepared or served?", 2, TopicCategory.MENU),
    ),
    TopicCategory.PROCEDURES: (
        QuestionTemplate("What is the first step in the {procedure} process?", 1, TopicCategory.PROCEDURES),
        QuestionTemplate("How long should you {action} when {situation}?", 2, TopicCategory.PROCEDURES),
        QuestionTemplate("What should you do if {problem} occurs?", 2, TopicCategory.PROCEDURES),
        QuestionTemplate("Who should you contact for {situation}?", 1, TopicCategory.PROCEDURES),
    ),
    TopicCategory.POLICIES: (
        QuestionTemplate("What is the company policy regarding {topic}?", 1, TopicCategory.POLICIES),
        QuestionTemplate("Is {action} allowed according to company policy?", 1, TopicCategory.POLICIES),
        QuestionTemplate("What are the consequences of {violation}?", 2, TopicCategory.POLICIES),
    ),
    TopicCategory.GENERAL: (
        QuestionTemplate("What do you know about {topic}?", 1, TopicCategory.GENERAL),
        QuestionTemplate("How would you explain {concept} to a new employee?", 2, TopicCategory.GENERAL),
        QuestionTemplate("Why is {topic} important for our business?", 3, TopicCategory.GENERAL),
    ),
}


def templates_for(category: TopicCategory | str) -> tuple[QuestionTemplate, ...]:
    """Templates for a category, falling back to the general set."""
    try:
        category = TopicCategory(category)
    except ValueError:
        return QUESTION_TEMPLATES[TopicCategory.GENERAL]
    return QUESTION_TEMPLATES.get(category) or QUESTION_TEMPLATES[TopicCategory.GENERAL]


def pick_template(topic: KnowledgeTopic) -> QuestionTemplate:
    """First template matching the topic's difficulty, else the first one."""
    candidates = templates_for(topic.category)
    for template in candidates:
        if template.difficulty == topic.difficulty_level:
            return template
    return candidates[0]


def synthesize_question(
    topic: KnowledgeTopic, template: QuestionTemplate | None = None
) -> TopicQuestion:
    """
    Build an open-ended question for a topic from a template.

    Every placeholder is filled with the topic name.
    """
    template = template or pick_template(topic)
    text = template.render({name: topic.name for name in template.variables})
    return TopicQuestion(
        id=f"template:{topic.id}",
        topic_id=topic.id,
        question_template=text,
        question_type=QuestionType.OPEN_ENDED,
        correct_answer=f"Answer should demonstrate understanding of {topic.name}",
        difficulty_level=template.difficulty,
        points=template.difficulty,
        explanation=(
            f"This question tests knowledge of {topic.name} "
            f"in the {TopicCategory(topic.category).value} category"
        ),
        is_active=True,
    )
