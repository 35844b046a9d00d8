"""Demo knowledge base for `assess seed-demo`: a small coffee shop."""

from __future__ import annotations

from src.assessment.models import KnowledgeTopic, QuestionType, TopicCategory, TopicQuestion


def demo_topics(organization_id: str) -> list[KnowledgeTopic]:
    return [
        KnowledgeTopic(
            id=f"{organization_id}-espresso",
            organization_id=organization_id,
            name="Espresso Drinks",
            description="Sizes, prices and preparation of espresso-based drinks",
            category=TopicCategory.MENU,
            difficulty_level=1,
        ),
        KnowledgeTopic(
            id=f"{organization_id}-opening",
            organization_id=organization_id,
            name="Opening Procedures",
            description="Steps for opening the shop each morning",
            category=TopicCategory.PROCEDURES,
            difficulty_level=1,
        ),
        KnowledgeTopic(
            id=f"{organization_id}-food-safety",
            organization_id=organization_id,
            name="Food Safety Policy",
            description="Hygiene and food handling rules",
            category=TopicCategory.POLICIES,
            difficulty_level=2,
        ),
        # No questions: exercised through template synthesis
        KnowledgeTopic(
            id=f"{organization_id}-customer-service",
            organization_id=organization_id,
            name="Customer Service",
            description="Greeting and helping customers",
            category=TopicCategory.GENERAL,
            difficulty_level=2,
        ),
    ]


def demo_questions(organization_id: str) -> list[TopicQuestion]:
    espresso = f"{organization_id}-espresso"
    opening = f"{organization_id}-opening"
    food_safety = f"{organization_id}-food-safety"
    return [
        TopicQuestion(
            id=f"{espresso}-q1",
            topic_id=espresso,
            question_template="What sizes are available for cappuccino?",
            question_type=QuestionType.MULTIPLE_CHOICE,
            correct_answer="250ml, 350ml, 450ml",
            answer_options=["250ml, 350ml, 450ml", "Only 350ml", "200ml, 400ml, 600ml"],
            difficulty_level=1,
            points=2,
            explanation="Cappuccino comes in three sizes according to our menu",
        ),
        TopicQuestion(
            id=f"{espresso}-q2",
            topic_id=espresso,
            question_template="A flat white is made with a double shot of espresso. True or false?",
            question_type=QuestionType.TRUE_FALSE,
            correct_answer="true",
            difficulty_level=2,
            points=1,
            explanation="Our flat white always uses a double shot",
        ),
        TopicQuestion(
            id=f"{opening}-q1",
            topic_id=opening,
            question_template="What should you do before the first customer arrives?",
            question_type=QuestionType.OPEN_ENDED,
            correct_answer="wipe counter, sanitize, restock",
            difficulty_level=1,
            points=3,
            explanation="A clean, stocked counter is part of every opening checklist",
        ),
        TopicQuestion(
            id=f"{food_safety}-q1",
            topic_id=food_safety,
            question_template="How often must milk jugs be rinsed during service?",
            question_type=QuestionType.OPEN_ENDED,
            correct_answer="after every drink, rinse with hot water",
            difficulty_level=2,
            points=2,
            explanation="Rinsing between drinks prevents milk residue build-up",
        ),
    ]
