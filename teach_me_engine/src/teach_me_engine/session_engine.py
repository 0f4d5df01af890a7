"""
Teach-Me Session Engine

Drives one learner through the six-step assessment:

    in_progress(1) -> in_progress(2) -> ... -> in_progress(6) -> completed

Each submission is graded, the answered step is annotated, and the next step
is generated from the source material. The whole transition is written back
with one conditional update, so a duplicate or concurrent submission of the
same step can never append a second verdict or skip a step.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from teach_me_engine.answer_validator import DETERMINISTIC_MODEL, AnswerValidator, weak_area_feedback
from teach_me_engine.completion_summary import CompletionSummarizer, SummaryOutcome
from teach_me_engine.config import EngineConfig, GradingPolicy
from teach_me_engine.errors import (
    SessionCompletedError,
    SessionIntegrityError,
    SessionNotCompletedError,
    SessionNotFoundError,
    SourceMaterialNotFoundError,
    StepMismatchError,
)
from teach_me_engine.model_client import ModelClient, build_model_client
from teach_me_engine.models import FeedbackType, TeachMeSession, ValidationResult, dump_step, utcnow
from teach_me_engine.session_store import SessionStore, session_to_record
from teach_me_engine.step_generator import StepGenerator

logger = logging.getLogger(__name__)

# Which weak-area list a feedback type is recorded in
WEAK_AREA_FIELDS = {
    FeedbackType.CONCEPT_ISSUE: "concept_weak_areas",
    FeedbackType.WRITING_ISSUE: "writing_weak_areas",
    FeedbackType.EXAM_MISTAKE: "exam_mistake_areas",
}


@dataclass
class SubmissionResult:
    """Outcome of one accepted answer."""
    session: TeachMeSession
    validation: ValidationResult
    next_step: Optional[Any]
    model_used: str

    @property
    def is_completed(self) -> bool:
        return self.session.is_completed

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "session_id": self.session.session_id,
            "validation": self.validation.model_dump(mode="json"),
            "is_correct": self.validation.is_correct,
            "is_completed": self.session.is_completed,
            "next_step": dump_step(self.next_step) if self.next_step is not None else None,
            "current_step": self.session.current_step,
            "total_steps": self.session.total_steps,
            "model_used": self.model_used,
        }


class TeachMeSessionEngine:
    """
    Session state machine for teach-me assessments.

    The engine holds no per-session state; everything it needs is read from
    the store on each call.
    """

    def __init__(
        self,
        store: SessionStore,
        validator: AnswerValidator,
        generator: StepGenerator,
        summarizer: Optional[CompletionSummarizer] = None,
        grading_policy: GradingPolicy = GradingPolicy.TRUST_MODEL,
        clock: Callable[[], datetime] = utcnow,
        weak_area_topic_chars: int = 100,
    ):
        """
        Initialize TeachMeSessionEngine.

        Args:
            store: Session persistence
            validator: Grades answers
            generator: Produces the next step
            summarizer: Builds the post-session summary (optional)
            grading_policy: How partially correct verdicts feed weak areas
            clock: Source of answered_at / completed_at timestamps
            weak_area_topic_chars: Prefix of the question text recorded as a weak area
        """
        self.store = store
        self.validator = validator
        self.generator = generator
        self.summarizer = summarizer
        self.grading_policy = grading_policy
        self.clock = clock
        self.weak_area_topic_chars = weak_area_topic_chars

    async def get_session(self, session_id: str, user_id: str) -> TeachMeSession:
        session = await self.store.get_session(session_id, user_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def submit_answer(
        self,
        session_id: str,
        step_number: int,
        user_answer: str,
        user_id: str,
    ) -> SubmissionResult:
        """
        Grade the answer to the current step and advance the session.

        Args:
            session_id: Session ID
            step_number: Step the learner is answering
            user_answer: Learner's answer text
            user_id: Owner of the session

        Returns:
            SubmissionResult with the verdict, the next step (None once the
            session completes) and the updated session

        Raises:
            SessionNotFoundError: no session with this ID for this user
            StepMismatchError: step_number is not the current step, the
                session is completed, or another request won the race
        """
        session = await self.get_session(session_id, user_id)
        logger.info(f"📚 Session {session_id} fetched, current step: {session.current_step}")

        if session.is_completed:
            raise SessionCompletedError(session_id, step_number, session.total_steps)
        if session.current_step != step_number:
            raise StepMismatchError(expected=session.current_step, got=step_number)

        problem = session.check_invariants()
        if problem:
            raise SessionIntegrityError(f"Session {session_id} is inconsistent: {problem}")

        step = session.get_step(step_number)
        if step is None:
            raise SessionIntegrityError(f"Step {step_number} missing from session {session_id}")
        if step.is_answered:
            raise SessionIntegrityError(f"Step {step_number} of session {session_id} already has a verdict")

        graded = await self.validator.grade(step, user_answer)
        result = graded.result

        answered_step = step.with_answer(user_answer, result, self.clock())
        steps = [answered_step if s.step_number == step_number else s for s in session.steps]
        weak_areas = self._updated_weak_areas(session, step.question_text, result)

        if session.is_final_step(step_number):
            updated = dataclasses.replace(
                session,
                steps=steps,
                is_completed=True,
                completed_at=self.clock(),
                **weak_areas,
            )
            next_step = None
            model_used = graded.model_used
        else:
            material = await self.store.get_source_material(session.material_id)
            # Nothing to ground the next question on
            if material is None or not material.has_content:
                raise SourceMaterialNotFoundError(session.material_id)

            generated = await self.generator.synthesize(step_number + 1, steps, material)
            next_step = generated.step
            exam_tags = list(session.exam_tags)
            if next_step.exam_tag and next_step.exam_tag not in exam_tags:
                exam_tags.append(next_step.exam_tag)

            updated = dataclasses.replace(
                session,
                steps=steps + [next_step],
                current_step=step_number + 1,
                exam_tags=exam_tags,
                **weak_areas,
            )
            model_used = generated.model_used

        await self.store.commit_transition(updated, expected_step=step_number)

        if updated.is_completed:
            logger.info(f"🎉 Session {session_id} completed")
        else:
            logger.info(f"➡️  Session {session_id} advanced to step {updated.current_step}")

        return SubmissionResult(
            session=updated,
            validation=result,
            next_step=next_step,
            model_used=model_used or DETERMINISTIC_MODEL,
        )

    def _updated_weak_areas(
        self,
        session: TeachMeSession,
        question_text: str,
        result: ValidationResult,
    ) -> Dict[str, List[str]]:
        areas = {
            name: list(getattr(session, name))
            for name in WEAK_AREA_FIELDS.values()
        }
        feedback = weak_area_feedback(result, self.grading_policy)
        if feedback is not None:
            areas[WEAK_AREA_FIELDS[feedback]].append(question_text[:self.weak_area_topic_chars])
        return areas

    async def summarize_completion(self, session_id: str, user_id: str) -> SummaryOutcome:
        """
        Generate and store the exam risk analysis for a completed session.

        Raises:
            SessionNotFoundError: no session with this ID for this user
            SessionNotCompletedError: the session still has unanswered steps
        """
        if self.summarizer is None:
            raise RuntimeError("No completion summarizer configured")

        session = await self.get_session(session_id, user_id)
        if not session.is_completed:
            raise SessionNotCompletedError(session_id)

        material = await self.store.get_source_material(session.material_id)
        outcome = await self.summarizer.summarize(session, material)
        await self.store.save_completion_summary(session_id, outcome.summary.model_dump(mode="json"))

        logger.info(f"💾 Completion summary stored for session {session_id}")
        return outcome


def session_to_response(session: TeachMeSession) -> Dict[str, Any]:
    """Public view of a stored session."""
    record = session_to_record(session)
    record["session_id"] = record.pop("id")
    return record


def build_engine(config: EngineConfig, store: SessionStore, model_client: Optional[ModelClient] = None) -> TeachMeSessionEngine:
    """Wire validator, generator and summarizer onto one model client."""
    client = model_client or build_model_client(config)
    return TeachMeSessionEngine(
        store=store,
        validator=AnswerValidator(
            client,
            grading_policy=config.grading_policy,
            temperature=config.grading_temperature,
            max_tokens=config.grading_max_tokens,
        ),
        generator=StepGenerator(
            client,
            excerpt_chars=config.source_excerpt_chars,
            temperature=config.generation_temperature,
            max_tokens=config.generation_max_tokens,
        ),
        summarizer=CompletionSummarizer(
            client,
            temperature=config.summary_temperature,
            max_tokens=config.summary_max_tokens,
        ),
        grading_policy=config.grading_policy,
        weak_area_topic_chars=config.weak_area_topic_chars,
    )
