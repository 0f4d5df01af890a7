"""
Teach-Me Data Model

Session, Step and ValidationResult types for the step-structured assessment.

Steps are a closed discriminated union keyed on ``question_type``: every
question type has exactly one Step class, and the extra fields it requires
(options, items to sequence) are declared in one place and consumed by both
the step generator and the answer validator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def _normalize_label(value: Any) -> Any:
    """'CONCEPT_ISSUE' / 'warm_up' / ' Perfect ' -> 'concept-issue' / 'warm-up' / 'perfect'."""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return value.strip().lower().replace("_", "-").replace(" ", "-")
    return value


class StepType(str, Enum):
    WARM_UP = "warm-up"
    CORE_THINKING = "core-thinking"
    APPLICATION = "application"
    INTEGRATION = "integration"


class QuestionType(str, Enum):
    TRUE_FALSE = "true-false"
    OPEN_ANSWER = "open-answer"
    MULTIPLE_CHOICE = "multiple-choice"
    CONCEPT_SEQUENCING = "concept-sequencing"
    ONE_WORD = "one-word"


class FeedbackType(str, Enum):
    CONCEPT_ISSUE = "concept-issue"
    WRITING_ISSUE = "writing-issue"
    EXAM_MISTAKE = "exam-mistake"
    PERFECT = "perfect"


# Labels written by earlier versions of the sessions table
QUESTION_TYPE_ALIASES: Dict[str, str] = {
    "answer-writing": QuestionType.OPEN_ANSWER.value,
    "mcq": QuestionType.MULTIPLE_CHOICE.value,
}

# Closed-form question types are graded by exact comparison, never by a model
DETERMINISTIC_QUESTION_TYPES = frozenset({
    QuestionType.TRUE_FALSE,
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.CONCEPT_SEQUENCING,
    QuestionType.ONE_WORD,
})

# Extra fields a model must return for each question type
QUESTION_TYPE_FIELDS: Dict[QuestionType, List[str]] = {
    QuestionType.TRUE_FALSE: [],
    QuestionType.OPEN_ANSWER: [],
    QuestionType.MULTIPLE_CHOICE: ["options"],
    QuestionType.CONCEPT_SEQUENCING: ["items_to_sequence"],
    QuestionType.ONE_WORD: [],
}


class ValidationResult(BaseModel):
    """Verdict attached to an answered step."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    is_correct: bool
    feedback_type: FeedbackType
    feedback_message: str
    score_percentage: int = Field(ge=0, le=100)
    improvement_tip: Optional[str] = None
    exam_relevance: str = ""

    @field_validator("feedback_type", mode="before")
    @classmethod
    def _normalize_feedback_type(cls, value):
        return _normalize_label(value)

    @field_validator("score_percentage", mode="before")
    @classmethod
    def _round_score(cls, value):
        # Models often answer 85.0 or 72.5
        if isinstance(value, float):
            return int(round(value))
        return value

    @field_validator("exam_relevance", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class BaseStep(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    step_number: int = Field(ge=1)
    step_type: StepType
    question_text: str = Field(min_length=1)
    correct_answer: str = Field(min_length=1)
    hint: Optional[str] = None
    exam_tag: str = ""
    exam_context: str = ""
    explanation: Optional[str] = None

    # Set once, when the learner answers
    user_answer: Optional[str] = None
    validation_result: Optional[ValidationResult] = None
    answered_at: Optional[datetime] = None

    @field_validator("step_type", mode="before")
    @classmethod
    def _normalize_step_type(cls, value):
        return _normalize_label(value)

    @field_validator("exam_tag", "exam_context", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @property
    def is_answered(self) -> bool:
        return self.validation_result is not None

    def with_answer(self, user_answer: str, result: ValidationResult, answered_at: datetime):
        """Return an annotated copy. The original step is left untouched."""
        return self.model_copy(update={
            "user_answer": user_answer,
            "validation_result": result,
            "answered_at": answered_at,
        })


class TrueFalseStep(BaseStep):
    question_type: Literal["true-false"] = "true-false"


class OpenAnswerStep(BaseStep):
    question_type: Literal["open-answer"] = "open-answer"


class MultipleChoiceStep(BaseStep):
    question_type: Literal["multiple-choice"] = "multiple-choice"
    options: List[str] = Field(min_length=4, max_length=4)


class ConceptSequencingStep(BaseStep):
    question_type: Literal["concept-sequencing"] = "concept-sequencing"
    items_to_sequence: List[str] = Field(min_length=1)


class OneWordStep(BaseStep):
    question_type: Literal["one-word"] = "one-word"


Step = Annotated[
    Union[TrueFalseStep, OpenAnswerStep, MultipleChoiceStep, ConceptSequencingStep, OneWordStep],
    Field(discriminator="question_type"),
]

STEP_ADAPTER: TypeAdapter = TypeAdapter(Step)


def normalize_step_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Canonicalize the question_type label so the discriminator can resolve it."""
    payload = dict(data)
    label = _normalize_label(payload.get("question_type"))
    if isinstance(label, str):
        payload["question_type"] = QUESTION_TYPE_ALIASES.get(label, label)
    return payload


def parse_step(data: Dict[str, Any]):
    """Validate a raw step dict into the Step variant for its question type."""
    return STEP_ADAPTER.validate_python(normalize_step_payload(data))


def dump_step(step) -> Dict[str, Any]:
    return step.model_dump(mode="json")


@dataclass
class SourceMaterial:
    """Study material a session is grounded on."""
    material_id: str
    title: str
    summary: Optional[str] = None
    key_points: List[str] = field(default_factory=list)
    detailed_content: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return bool(self.summary or self.key_points or self.detailed_content)


@dataclass
class TeachMeSession:
    """One learner's attempt at the step-structured assessment over one material."""
    session_id: str
    user_id: str
    material_id: str
    current_step: int = 1
    total_steps: int = 6
    steps: List[Any] = field(default_factory=list)
    # Weak-area signals, append-only
    concept_weak_areas: List[str] = field(default_factory=list)
    writing_weak_areas: List[str] = field(default_factory=list)
    exam_mistake_areas: List[str] = field(default_factory=list)
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    exam_tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    # Written after completion by the completion summarizer
    exam_risk_areas: Optional[List[Dict[str, Any]]] = None
    recommended_revision: Optional[Dict[str, Any]] = None
    performance_breakdown: Optional[Dict[str, Any]] = None

    def get_step(self, step_number: int):
        for step in self.steps:
            if step.step_number == step_number:
                return step
        return None

    def is_final_step(self, step_number: int) -> bool:
        return step_number == self.total_steps

    def check_invariants(self) -> Optional[str]:
        """Return a description of the first broken structural invariant, if any."""
        expected = self.total_steps if self.is_completed else self.current_step
        if len(self.steps) != expected:
            return f"expected {expected} steps, found {len(self.steps)}"
        numbers = [s.step_number for s in self.steps]
        if numbers != list(range(1, len(numbers) + 1)):
            return f"step numbers out of order: {numbers}"
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
