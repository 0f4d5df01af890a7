"""
Step Templates

Fixed mapping from step position to pedagogical template. Every session walks
the same six positions: warm-up, three core-thinking questions, application,
integration.
"""

from dataclasses import dataclass
from typing import Dict

from teach_me_engine.models import QuestionType, StepType


@dataclass(frozen=True)
class StepTemplate:
    """Static generation template for one step position."""
    step_number: int
    step_type: StepType
    question_type: QuestionType
    instructions: str
    answer_format: str


STEP_TEMPLATES: Dict[int, StepTemplate] = {
    1: StepTemplate(
        step_number=1,
        step_type=StepType.WARM_UP,
        question_type=QuestionType.TRUE_FALSE,
        instructions=(
            "- Create a simple TRUE/FALSE statement that activates prior knowledge\n"
            "- The correct answer must be exactly TRUE or FALSE\n"
            "- Include an explanation of why the statement is true or false"
        ),
        answer_format="TRUE or FALSE",
    ),
    2: StepTemplate(
        step_number=2,
        step_type=StepType.CORE_THINKING,
        question_type=QuestionType.OPEN_ANSWER,
        instructions=(
            "- Create an answer-writing question requiring a 2-3 sentence response\n"
            "- Focus on basic application of the concept\n"
            "- Provide a model answer for validation\n"
            "- Tag with exam relevance"
        ),
        answer_format="Model answer (2-3 sentences)",
    ),
    3: StepTemplate(
        step_number=3,
        step_type=StepType.CORE_THINKING,
        question_type=QuestionType.OPEN_ANSWER,
        instructions=(
            "- Create an answer-writing question requiring a 2-3 sentence response\n"
            "- Focus on deeper analysis of the concept\n"
            "- Provide a model answer for validation\n"
            "- Tag with exam relevance"
        ),
        answer_format="Model answer (2-3 sentences)",
    ),
    4: StepTemplate(
        step_number=4,
        step_type=StepType.CORE_THINKING,
        question_type=QuestionType.OPEN_ANSWER,
        instructions=(
            "- Create an answer-writing question requiring a 2-3 sentence response\n"
            "- Focus on critical thinking about the concept\n"
            "- Provide a model answer for validation\n"
            "- Tag with exam relevance"
        ),
        answer_format="Model answer (2-3 sentences)",
    ),
    5: StepTemplate(
        step_number=5,
        step_type=StepType.APPLICATION,
        question_type=QuestionType.MULTIPLE_CHOICE,
        instructions=(
            "- Create a multiple-choice question with exactly 4 options testing practical application\n"
            "- Provide 1 correct option and 3 plausible distractors, labelled A to D\n"
            "- The correct answer is the letter of the correct option"
        ),
        answer_format="Correct option letter (A, B, C or D)",
    ),
    6: StepTemplate(
        step_number=6,
        step_type=StepType.INTEGRATION,
        question_type=QuestionType.CONCEPT_SEQUENCING,
        instructions=(
            "- Create a concept-sequencing question: arrange 4 steps/events in order\n"
            "- Test understanding of the process or timeline\n"
            "- Provide the correct ordering of the item letters"
        ),
        answer_format="Correct sequence of item letters (e.g., B,A,D,C)",
    ),
}

TOTAL_STEPS = len(STEP_TEMPLATES)


def get_template(step_number: int) -> StepTemplate:
    """Return the template for a step position."""
    try:
        return STEP_TEMPLATES[step_number]
    except KeyError:
        raise ValueError(
            f"No step template for step {step_number} (valid: 1..{TOTAL_STEPS})"
        ) from None
