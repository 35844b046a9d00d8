"""
Structured assessment instructions for the presentation/transport layer.

The transport (a conversational agent) receives the rendered text together
with the structured question list and must ask the questions verbatim and in
order.
"""
from __future__ import annotations

from src.assessment.models import QuestionWithStatus, enum_value

# =============================================================================
# Question Block (one per selected question)
# =============================================================================

QUESTION_BLOCK = """{number}. {question}
   - Type: {question_type}
   - Topic: {topic}
   - Points: {points}
   - Expected Answer: {expected_answer}{options_line}
   - Explanation: {explanation}"""

# =============================================================================
# Assessment Instructions
# =============================================================================

ASSESSMENT_INSTRUCTIONS = """You are conducting a structured knowledge assessment. Ask these EXACT questions in order:

{question_list}

IMPORTANT INSTRUCTIONS:
1. Ask questions exactly as written above
2. For multiple choice questions, present all options clearly
3. After receiving an answer, provide brief feedback using the explanation
4. Move immediately to the next question
5. Track which questions have been asked
6. Be encouraging but focus on assessment
7. If the learner asks for clarification, provide it briefly then return to the assessment

Learner level: {learner_level}
Current focus areas: {focus_areas}
Assessment goal: Evaluate knowledge gaps and provide targeted feedback.
"""


def render_question_block(number: int, question: QuestionWithStatus) -> str:
    options_line = ""
    if question.answer_options:
        options_line = f"\n   - Options: {', '.join(question.answer_options)}"
    return QUESTION_BLOCK.format(
        number=number,
        question=question.question_template,
        question_type=enum_value(question.question_type),
        topic=question.topic_name or "Unknown",
        points=question.points,
        expected_answer=question.correct_answer,
        options_line=options_line,
        explanation=question.explanation,
    )


def render_instructions(
    questions: list[QuestionWithStatus],
    focus_areas: list[str],
    learner_level: str,
) -> str:
    """Render the numbered question list into the assessment instructions."""
    question_list = "\n\n".join(
        render_question_block(i, q) for i, q in enumerate(questions, start=1)
    )
    return ASSESSMENT_INSTRUCTIONS.format(
        question_list=question_list,
        learner_level=learner_level,
        focus_areas=", ".join(focus_areas) or "none",
    )
