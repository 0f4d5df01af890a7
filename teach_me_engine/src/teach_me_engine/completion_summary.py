"""
Completion Summary Generator

Analyzes a completed teach-me session and produces an exam risk analysis
and a 3-minute revision plan.
"""

import logging
from dataclasses import asdict, dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from teach_me_engine.model_client import CallOptions, ModelClient
from teach_me_engine.models import FeedbackType, SourceMaterial, TeachMeSession, _normalize_label
from teach_me_engine.response_parser import parse_json

logger = logging.getLogger(__name__)


class ExamRiskArea(BaseModel):
    model_config = ConfigDict(extra="ignore")

    risk_level: Literal["HIGH", "MEDIUM", "LOW"]
    area: str
    issue_type: FeedbackType
    quick_fix: str
    exam_impact: str

    @field_validator("risk_level", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("issue_type", mode="before")
    @classmethod
    def _normalize_issue(cls, value):
        return _normalize_label(value)


class RevisionPlan(BaseModel):
    step_1: str
    step_2: str
    step_3: str
    key_formula_or_fact: str


class PerformanceBreakdown(BaseModel):
    concept_understanding: float = Field(ge=0, le=100)
    writing_quality: float = Field(ge=0, le=100)
    exam_readiness: float = Field(ge=0, le=100)
    overall_score: float = Field(ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    priority_improvements: List[str] = Field(default_factory=list)


class CompletionSummary(BaseModel):
    exam_risk_areas: List[ExamRiskArea]
    revision_plan_3min: RevisionPlan
    performance_breakdown: PerformanceBreakdown
    motivational_message: str


SUMMARY_REQUIRED_FIELDS = [
    "exam_risk_areas",
    "revision_plan_3min",
    "performance_breakdown",
    "motivational_message",
]

_STRING = {"type": "string"}
_SCORE = {"type": "number"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

SUMMARY_JSON_SCHEMA = {
    "name": "teach_me_completion",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "exam_risk_areas": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "risk_level": {"type": "string", "enum": ["HIGH", "MEDIUM", "LOW"]},
                        "area": _STRING,
                        "issue_type": {"type": "string", "enum": ["concept-issue", "writing-issue", "exam-mistake"]},
                        "quick_fix": _STRING,
                        "exam_impact": _STRING,
                    },
                    "required": ["risk_level", "area", "issue_type", "quick_fix", "exam_impact"],
                    "additionalProperties": False,
                },
            },
            "revision_plan_3min": {
                "type": "object",
                "properties": {
                    "step_1": _STRING,
                    "step_2": _STRING,
                    "step_3": _STRING,
                    "key_formula_or_fact": _STRING,
                },
                "required": ["step_1", "step_2", "step_3", "key_formula_or_fact"],
                "additionalProperties": False,
            },
            "performance_breakdown": {
                "type": "object",
                "properties": {
                    "concept_understanding": _SCORE,
                    "writing_quality": _SCORE,
                    "exam_readiness": _SCORE,
                    "overall_score": _SCORE,
                    "strengths": _STRING_LIST,
                    "priority_improvements": _STRING_LIST,
                },
                "required": [
                    "concept_understanding", "writing_quality", "exam_readiness",
                    "overall_score", "strengths", "priority_improvements",
                ],
                "additionalProperties": False,
            },
            "motivational_message": _STRING,
        },
        "required": SUMMARY_REQUIRED_FIELDS,
        "additionalProperties": False,
    },
}

SUMMARY_SYSTEM_PROMPT = """You are an expert exam coach for Indian competitive exams. Analyze student performance and create actionable revision plans.

FOCUS ON:
1. Exam Risk Areas: Identify HIGH/MEDIUM/LOW risk areas with quick fixes
2. 3-Minute Revision Plan: Ultra-focused actionable steps
3. Performance Breakdown: Clear metrics for concept/writing/exam readiness

Return ONLY valid JSON without markdown."""


@dataclass
class SessionStats:
    """Deterministic performance counts for a completed session."""
    total_steps: int
    correct_answers: int
    accuracy_percentage: int
    concept_issues: int
    writing_issues: int
    exam_mistakes: int

    @classmethod
    def from_session(cls, session: TeachMeSession) -> "SessionStats":
        results = [s.validation_result for s in session.steps if s.validation_result is not None]
        total = len(session.steps)
        correct = sum(1 for r in results if r.is_correct)

        def count(feedback: FeedbackType) -> int:
            return sum(1 for r in results if r.feedback_type == feedback)

        return cls(
            total_steps=total,
            correct_answers=correct,
            accuracy_percentage=round(correct / total * 100) if total else 0,
            concept_issues=count(FeedbackType.CONCEPT_ISSUE),
            writing_issues=count(FeedbackType.WRITING_ISSUE),
            exam_mistakes=count(FeedbackType.EXAM_MISTAKE),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class SummaryOutcome:
    summary: CompletionSummary
    stats: SessionStats
    model_used: str


class CompletionSummarizer:
    """Builds the post-session exam risk analysis with a model."""

    def __init__(self, model_client: ModelClient, temperature: float = 0.5, max_tokens: int = 2000):
        self.model_client = model_client
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_performance_context(
        self,
        session: TeachMeSession,
        stats: SessionStats,
        material: Optional[SourceMaterial],
    ) -> str:
        step_lines = []
        for s in session.steps:
            result = s.validation_result
            step_lines.append(
                f"Step {s.step_number} ({s.question_type}):\n"
                f"Q: {s.question_text[:100]}...\n"
                f"User Answer: {s.user_answer or 'N/A'}\n"
                f"Result: {'Correct' if result and result.is_correct else 'Incorrect'}\n"
                f"Feedback: {result.feedback_type.value if result else 'N/A'}"
            )

        return f"""Session Performance:
- Topic: {material.title if material else 'Unknown'}
- Total Steps: {stats.total_steps}
- Correct Answers: {stats.correct_answers}
- Accuracy: {stats.accuracy_percentage}%

Issue Breakdown:
- Concept Issues: {stats.concept_issues} ({len(session.concept_weak_areas)} unique areas)
- Writing Issues: {stats.writing_issues} ({len(session.writing_weak_areas)} unique areas)
- Exam Mistakes: {stats.exam_mistakes} ({len(session.exam_mistake_areas)} unique areas)

Weak Areas:
Concept: {'; '.join(session.concept_weak_areas[:3]) or 'None'}
Writing: {'; '.join(session.writing_weak_areas[:3]) or 'None'}
Exam: {'; '.join(session.exam_mistake_areas[:3]) or 'None'}

Exam Tags: {', '.join(session.exam_tags) or 'None'}

Step-by-Step Performance:
""" + "\n\n".join(step_lines)

    async def summarize(self, session: TeachMeSession, material: Optional[SourceMaterial] = None) -> SummaryOutcome:
        stats = SessionStats.from_session(session)
        logger.info(f"📊 Performance: {stats.correct_answers}/{stats.total_steps} correct")

        user_prompt = f"""Analyze this Teach Me session and create a completion summary:

{self.build_performance_context(session, stats, material)}

OUTPUT FORMAT (return ONLY this JSON):
{{
  "exam_risk_areas": [
    {{
      "risk_level": "HIGH" | "MEDIUM" | "LOW",
      "area": "Specific weak area",
      "issue_type": "concept-issue" | "writing-issue" | "exam-mistake",
      "quick_fix": "Actionable 1-sentence fix",
      "exam_impact": "How this affects exam scoring"
    }}
  ],
  "revision_plan_3min": {{
    "step_1": "First thing to revise (30 sec)",
    "step_2": "Second thing to revise (60 sec)",
    "step_3": "Third thing to revise (90 sec)",
    "key_formula_or_fact": "One critical thing to memorize"
  }},
  "performance_breakdown": {{
    "concept_understanding": 0-100,
    "writing_quality": 0-100,
    "exam_readiness": 0-100,
    "overall_score": 0-100,
    "strengths": ["Strength 1", "Strength 2"],
    "priority_improvements": ["Improvement 1", "Improvement 2"]
  }},
  "motivational_message": "Encouraging 1-2 sentence message"
}}

IMPORTANT:
- Prioritize HIGH risk areas (those that will cost the most marks)
- Make revision plan ultra-specific and time-bound
- Be honest but encouraging"""

        response = await self.model_client.call(
            SUMMARY_SYSTEM_PROMPT,
            user_prompt,
            CallOptions(
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
                json_schema=SUMMARY_JSON_SCHEMA,
            ),
        )
        summary = parse_json(response.content, SUMMARY_REQUIRED_FIELDS, schema=CompletionSummary)
        logger.info("✅ Completion summary generated")

        return SummaryOutcome(summary=summary, stats=stats, model_used=response.model_used)
