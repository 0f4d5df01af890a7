"""
Test doubles and builders shared by the unit and e2e suites.
"""

import asyncio
import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "teach_me_engine", "src"))

from teach_me_engine.errors import PersistenceError
from teach_me_engine.model_client import CallOptions, ModelResponse
from teach_me_engine.models import SourceMaterial, TeachMeSession, ValidationResult, parse_step
from teach_me_engine.session_store import InMemorySessionStore
from teach_me_engine.step_templates import get_template

SESSION_ID = "session-1"
USER_ID = "user-1"
MATERIAL_ID = "note-1"

CORRECT_ANSWERS = {
    1: "TRUE",
    2: "Chlorophyll absorbs light energy, which drives the synthesis of glucose from CO2 and water.",
    3: "The light reactions produce ATP and NADPH, which the Calvin cycle consumes to fix carbon.",
    4: "Without stomata closing, plants in arid climates would lose water faster than they fix carbon.",
    5: "B",
    6: "B,A,D,C",
}


@dataclass
class RecordedCall:
    system_prompt: str
    user_prompt: str
    options: Optional[CallOptions]


class ScriptedModelClient:
    """
    Model client that replays queued responses in order.

    Dicts and lists are sent as JSON text, strings verbatim, and exceptions
    are raised.
    """

    def __init__(self, responses: Optional[List[Any]] = None, name: str = "fake:model", yield_control: bool = False):
        self.name = name
        self.responses = list(responses or [])
        self.calls: List[RecordedCall] = []
        self.yield_control = yield_control

    async def call(self, system_prompt: str, user_prompt: str, options: Optional[CallOptions] = None) -> ModelResponse:
        self.calls.append(RecordedCall(system_prompt, user_prompt, options))
        if self.yield_control:
            await asyncio.sleep(0)
        if not self.responses:
            raise AssertionError("ScriptedModelClient ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, (dict, list)):
            item = json.dumps(item)
        return ModelResponse(content=item, model_used=self.name)


class FailingCommitStore(InMemorySessionStore):
    """In-memory store whose next ``failures`` commits raise PersistenceError."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.commit_attempts = 0

    async def commit_transition(self, session, expected_step):
        self.commit_attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError(f"Injected write failure for {session.session_id}")
        await super().commit_transition(session, expected_step)


def step_payload(step_number: int, **overrides) -> Dict[str, Any]:
    """Raw step dict as a model would return it for ``step_number``."""
    template = get_template(step_number)
    payload: Dict[str, Any] = {
        "step_number": step_number,
        "step_type": template.step_type.value,
        "question_type": template.question_type.value,
        "question_text": f"Step {step_number} question about photosynthesis",
        "correct_answer": CORRECT_ANSWERS[step_number],
        "exam_tag": "NEET Biology",
        "exam_context": "Frequently asked in plant physiology",
        "hint": "Think about where the energy comes from",
        "explanation": "Light energy is converted into chemical energy.",
    }
    if step_number == 5:
        payload["options"] = ["A. Mitochondria", "B. Chloroplast", "C. Ribosome", "D. Nucleus"]
    if step_number == 6:
        payload["items_to_sequence"] = [
            "A. Water splitting",
            "B. Light absorption",
            "C. Glucose formation",
            "D. Carbon fixation",
        ]
    payload.update(overrides)
    return payload


def make_step(step_number: int, **overrides):
    return parse_step(step_payload(step_number, **overrides))


def grading_payload(
    is_correct: bool = True,
    feedback_type: str = "perfect",
    score_percentage: Any = 100,
    **overrides,
) -> Dict[str, Any]:
    payload = {
        "is_correct": is_correct,
        "feedback_type": feedback_type,
        "feedback_message": "Clear and complete answer." if is_correct else "The key mechanism is missing.",
        "score_percentage": score_percentage,
        "improvement_tip": None if feedback_type == "perfect" else "Name the mechanism explicitly.",
        "exam_relevance": "Worth 3 marks in the board exam",
    }
    payload.update(overrides)
    return payload


def make_material(**overrides) -> SourceMaterial:
    fields = {
        "material_id": MATERIAL_ID,
        "title": "Photosynthesis",
        "summary": "How plants convert light into chemical energy.",
        "key_points": ["Light reactions occur in thylakoids", "Calvin cycle fixes CO2"],
        "detailed_content": "Photosynthesis has two stages. " * 20,
    }
    fields.update(overrides)
    return SourceMaterial(**fields)


def make_session(current_step: int = 1, is_completed: bool = False, **overrides) -> TeachMeSession:
    """
    Session at ``current_step`` with every earlier step answered correctly.

    A completed session has all six steps answered.
    """
    answered_through = 6 if is_completed else current_step - 1
    steps = []
    for n in range(1, (6 if is_completed else current_step) + 1):
        step = make_step(n)
        if n <= answered_through:
            step = step.with_answer(
                CORRECT_ANSWERS[n],
                ValidationResult(
                    is_correct=True,
                    feedback_type="perfect",
                    feedback_message="Correct! Well done.",
                    score_percentage=100,
                ),
                answered_at=None,
            )
        steps.append(step)

    fields = {
        "session_id": SESSION_ID,
        "user_id": USER_ID,
        "material_id": MATERIAL_ID,
        "current_step": 6 if is_completed else current_step,
        "steps": steps,
        "is_completed": is_completed,
        "exam_tags": ["NEET Biology"],
    }
    fields.update(overrides)
    return TeachMeSession(**fields)


def seeded_store(session: Optional[TeachMeSession] = None, store: Optional[InMemorySessionStore] = None):
    store = store or InMemorySessionStore()
    store.add_session(session or make_session())
    store.add_material(make_material())
    return store
