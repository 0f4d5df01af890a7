"""
Step Generator

Synthesizes the question for a step position from the source material and
the questions already asked, following the fixed template for that position.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from teach_me_engine.errors import MalformedModelOutputError
from teach_me_engine.model_client import CallOptions, ModelClient
from teach_me_engine.models import (
    QUESTION_TYPE_FIELDS,
    STEP_ADAPTER,
    QuestionType,
    SourceMaterial,
)
from teach_me_engine.response_parser import parse_json
from teach_me_engine.step_templates import StepTemplate, get_template

logger = logging.getLogger(__name__)

STEP_REQUIRED_FIELDS = [
    "question_text",
    "correct_answer",
    "exam_tag",
    "exam_context",
]

_BASE_STEP_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "step_number": {"type": "number"},
        "step_type": {"type": "string"},
        "question_type": {"type": "string"},
        "question_text": {"type": "string"},
        "correct_answer": {"type": "string"},
        "exam_tag": {"type": "string"},
        "exam_context": {"type": "string"},
        "hint": {"type": ["string", "null"]},
        "explanation": {"type": ["string", "null"]},
    },
    "required": ["step_number", "step_type", "question_type"] + STEP_REQUIRED_FIELDS,
    "additionalProperties": False,
}

_LIST_FIELD_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "options": {"type": "array", "items": {"type": "string"}, "minItems": 4, "maxItems": 4},
    "items_to_sequence": {"type": "array", "items": {"type": "string"}, "minItems": 2},
}

_LIST_FIELD_EXAMPLES: Dict[str, str] = {
    "options": '"options": ["A. Option 1", "B. Option 2", "C. Option 3", "D. Option 4"],',
    "items_to_sequence": '"items_to_sequence": ["A. Item 1", "B. Item 2", "C. Item 3", "D. Item 4"],',
}


@dataclass
class GeneratedStep:
    step: Any
    model_used: str


def build_step_schema(question_type: QuestionType) -> Dict[str, Any]:
    """JSON schema for a step of the given question type."""
    schema = copy.deepcopy(_BASE_STEP_SCHEMA)
    for extra in QUESTION_TYPE_FIELDS[question_type]:
        schema["properties"][extra] = _LIST_FIELD_SCHEMAS[extra]
        schema["required"].append(extra)
    return {"name": "teach_me_step", "strict": True, "schema": schema}


def build_material_excerpt(material: SourceMaterial, max_chars: int) -> str:
    key_points = "\n".join(material.key_points) if material.key_points else "N/A"
    content = f"""Title: {material.title}
Summary: {material.summary or 'N/A'}
Key Points: {key_points}
Detailed Content: {material.detailed_content or 'N/A'}"""
    return content.strip()[:max_chars]


class StepGenerator:
    """Builds the next Step with a model, pinned to the position's template."""

    def __init__(
        self,
        model_client: ModelClient,
        excerpt_chars: int = 8000,
        temperature: float = 0.6,
        max_tokens: int = 1200,
    ):
        self.model_client = model_client
        self.excerpt_chars = excerpt_chars
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, step_number: int, session_history: Sequence[Any], source_material: SourceMaterial):
        generated = await self.synthesize(step_number, session_history, source_material)
        return generated.step

    def build_system_prompt(self, template: StepTemplate) -> str:
        return f"""You are an expert Socratic teacher for Indian competitive exams.

STEP {template.step_number} GUIDELINES ({template.step_type.value.upper()}):
{template.instructions}

Return ONLY valid JSON without markdown."""

    def build_user_prompt(
        self,
        template: StepTemplate,
        session_history: Sequence[Any],
        source_material: SourceMaterial,
    ) -> str:
        previous = "\n".join(
            f"Step {s.step_number}: {s.question_text}" for s in session_history
        ) or "None"
        extras = "\n  ".join(_LIST_FIELD_EXAMPLES[f] for f in QUESTION_TYPE_FIELDS[template.question_type])
        extras_line = f"\n  {extras}" if extras else ""

        return f"""Create Step {template.step_number} question for this content:

{build_material_excerpt(source_material, self.excerpt_chars)}

PREVIOUS STEPS CONTEXT:
{previous}

OUTPUT FORMAT (return ONLY this JSON):
{{
  "step_number": {template.step_number},
  "step_type": "{template.step_type.value}",
  "question_type": "{template.question_type.value}",
  "question_text": "Clear question",
  "correct_answer": "{template.answer_format}",{extras_line}
  "exam_tag": "Relevant exam",
  "exam_context": "Exam relevance context",
  "hint": "Optional hint",
  "explanation": "Why the answer is correct"
}}"""

    async def synthesize(
        self,
        step_number: int,
        session_history: Sequence[Any],
        source_material: SourceMaterial,
    ) -> GeneratedStep:
        template = get_template(step_number)
        logger.info(f"🎯 Generating step {step_number} ({template.step_type.value}, {template.question_type.value})")

        response = await self.model_client.call(
            self.build_system_prompt(template),
            self.build_user_prompt(template, session_history, source_material),
            CallOptions(
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
                json_schema=build_step_schema(template.question_type),
            ),
        )

        required: List[str] = STEP_REQUIRED_FIELDS + QUESTION_TYPE_FIELDS[template.question_type]
        payload = parse_json(response.content, required)

        # The template, not the model, decides what kind of step this is
        payload.update({
            "step_number": template.step_number,
            "step_type": template.step_type.value,
            "question_type": template.question_type.value,
        })
        for answered_field in ("user_answer", "validation_result", "answered_at"):
            payload.pop(answered_field, None)

        try:
            step = validate_generated_step(payload)
        except MalformedModelOutputError:
            logger.error(f"❌ Invalid step structure for step {step_number}: {str(payload)[:300]}")
            raise

        logger.info(f"✅ Step {step_number} generated")
        return GeneratedStep(step=step, model_used=response.model_used)


def validate_generated_step(payload: Dict[str, Any]):
    """Validate a decoded step payload against its Step variant."""
    try:
        return STEP_ADAPTER.validate_python(payload)
    except ValidationError as e:
        raise MalformedModelOutputError(
            f"Generated step does not match its template: {e.errors()[0]['loc']} {e.errors()[0]['msg']}"
        ) from e
