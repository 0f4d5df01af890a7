"""
Answer Validator

Grades a learner's answer for one step.

Closed-form question types (true/false, multiple choice, sequencing, one word)
are compared directly against the answer key. Open answers are graded by a
model against the reference answer using a 3-dimensional exam lens:

- concept-issue: fundamental misunderstanding of the concept
- writing-issue: correct concept, poor articulation that loses marks
- exam-mistake: common exam pitfall (incomplete answer, missing keywords)
- perfect: would score full marks

The validator never mutates the step; the session engine annotates it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from teach_me_engine.config import GradingPolicy
from teach_me_engine.errors import MalformedModelOutputError
from teach_me_engine.model_client import CallOptions, ModelClient
from teach_me_engine.models import (
    DETERMINISTIC_QUESTION_TYPES,
    FeedbackType,
    QuestionType,
    ValidationResult,
)
from teach_me_engine.response_parser import parse_json

logger = logging.getLogger(__name__)

DETERMINISTIC_MODEL = "deterministic"

GRADING_REQUIRED_FIELDS = [
    "is_correct",
    "feedback_type",
    "feedback_message",
    "score_percentage",
    "exam_relevance",
]

GRADING_JSON_SCHEMA = {
    "name": "answer_validation",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "is_correct": {"type": "boolean"},
            "feedback_type": {"type": "string", "enum": [f.value for f in FeedbackType]},
            "feedback_message": {"type": "string"},
            "score_percentage": {"type": "number"},
            "improvement_tip": {"type": ["string", "null"]},
            "exam_relevance": {"type": "string"},
        },
        "required": GRADING_REQUIRED_FIELDS,
        "additionalProperties": False,
    },
}

GRADING_SYSTEM_PROMPT = """You are an expert Indian competitive exam evaluator. Analyze student answers using a 3-dimensional exam lens.

FEEDBACK TYPES:
1. concept-issue: Fundamental misunderstanding of the concept
2. writing-issue: Correct concept but poor articulation that loses marks in exams
3. exam-mistake: Common exam pitfall that costs marks (e.g., incomplete answer, missing keywords, wrong structure)
4. perfect: Excellent answer that would score full marks

Return ONLY valid JSON without markdown."""


@dataclass
class GradedAnswer:
    """Verdict plus the name of the model that produced it."""
    result: ValidationResult
    model_used: str


def normalize_answer(answer: str) -> str:
    return (answer or "").strip().upper()


def apply_grading_policy(result: ValidationResult, policy: GradingPolicy) -> ValidationResult:
    """
    Reconcile is_correct with feedback_type for a model-graded verdict.

    A verdict that is incorrect but labelled perfect is contradictory under
    every policy and is rejected as malformed output.
    """
    if not result.is_correct and result.feedback_type == FeedbackType.PERFECT:
        raise MalformedModelOutputError(
            "Grading verdict is contradictory: is_correct=false with feedback_type=perfect"
        )

    if policy == GradingPolicy.STRICT and result.is_correct and result.feedback_type != FeedbackType.PERFECT:
        return result.model_copy(update={
            "is_correct": False,
            "score_percentage": min(result.score_percentage, 99),
        })

    return result


def weak_area_feedback(result: ValidationResult, policy: GradingPolicy) -> Optional[FeedbackType]:
    """Return the feedback bucket to record as a weak area, or None."""
    if result.feedback_type == FeedbackType.PERFECT:
        return None
    if not result.is_correct:
        return result.feedback_type
    if policy == GradingPolicy.TRACK_PARTIAL:
        return result.feedback_type
    return None


class AnswerValidator:
    """Produces a ValidationResult for a learner's answer to one step."""

    def __init__(
        self,
        model_client: ModelClient,
        grading_policy: GradingPolicy = GradingPolicy.TRUST_MODEL,
        temperature: float = 0.2,
        max_tokens: int = 800,
    ):
        self.model_client = model_client
        self.grading_policy = grading_policy
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def validate(self, step, user_answer: str) -> ValidationResult:
        """Grade ``user_answer`` for ``step``."""
        graded = await self.grade(step, user_answer)
        return graded.result

    async def grade(self, step, user_answer: str) -> GradedAnswer:
        question_type = QuestionType(step.question_type)

        if question_type in DETERMINISTIC_QUESTION_TYPES:
            result = self.compare(step, user_answer)
            logger.info(f"📊 Direct validation step {step.step_number}: "
                        f"{'CORRECT' if result.is_correct else 'INCORRECT'}")
            return GradedAnswer(result=result, model_used=DETERMINISTIC_MODEL)

        if question_type == QuestionType.OPEN_ANSWER:
            return await self._grade_with_model(step, user_answer)

        raise ValueError(f"No validation branch for question type {question_type.value}")

    def compare(self, step, user_answer: str) -> ValidationResult:
        """Exact, case-insensitive comparison against the answer key."""
        is_correct = normalize_answer(user_answer) == normalize_answer(step.correct_answer)

        if is_correct:
            return ValidationResult(
                is_correct=True,
                feedback_type=FeedbackType.PERFECT,
                feedback_message="Correct! Well done.",
                score_percentage=100,
                improvement_tip=None,
                exam_relevance=step.exam_context,
            )

        return ValidationResult(
            is_correct=False,
            feedback_type=FeedbackType.CONCEPT_ISSUE,
            feedback_message=f"Incorrect. The correct answer is: {step.correct_answer}",
            score_percentage=0,
            improvement_tip=f"Review the concept: {step.hint or 'Check the material again'}",
            exam_relevance=step.exam_context,
        )

    def build_grading_prompt(self, step, user_answer: str) -> str:
        return f"""Evaluate this student answer:

QUESTION: {step.question_text}
EXPECTED ANSWER: {step.correct_answer}
STUDENT ANSWER: {user_answer}
EXAM CONTEXT: {step.exam_tag} - {step.exam_context}

OUTPUT FORMAT (return ONLY this JSON):
{{
  "is_correct": true or false,
  "feedback_type": "concept-issue" | "writing-issue" | "exam-mistake" | "perfect",
  "feedback_message": "Specific feedback explaining the issue or praising the answer",
  "score_percentage": 0-100,
  "improvement_tip": "Actionable tip for improvement (null if perfect)",
  "exam_relevance": "How this relates to exam scoring"
}}"""

    async def _grade_with_model(self, step, user_answer: str) -> GradedAnswer:
        logger.info(f"🤖 Using model grading for step {step.step_number}")

        response = await self.model_client.call(
            GRADING_SYSTEM_PROMPT,
            self.build_grading_prompt(step, user_answer),
            CallOptions(
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
                json_schema=GRADING_JSON_SCHEMA,
            ),
        )

        try:
            result = parse_json(response.content, GRADING_REQUIRED_FIELDS, schema=ValidationResult)
            result = apply_grading_policy(result, self.grading_policy)
        except MalformedModelOutputError as e:
            logger.error(f"❌ Unusable grading output for step {step.step_number}: {e.message}")
            raise

        logger.info(f"📊 Model validation step {step.step_number}: "
                    f"{'CORRECT' if result.is_correct else 'INCORRECT'} ({result.feedback_type.value})")
        return GradedAnswer(result=result, model_used=response.model_used)
