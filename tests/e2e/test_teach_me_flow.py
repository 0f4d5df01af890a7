"""
End-to-End Tests for the Teach-Me API

Drives the FastAPI app through a full six-step session and checks the HTTP
error mapping:
- 400 missing fields
- 404 unknown session
- 409 stale / completed step
- 500 malformed model output
- 502 provider failure
"""

import pytest
import sys
import os

from fastapi.testclient import TestClient

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "teach_me_engine", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))
sys.path.insert(0, os.path.join(project_root, "tests"))

from main import app, get_engine

from teach_me_engine.answer_validator import AnswerValidator
from teach_me_engine.completion_summary import CompletionSummarizer
from teach_me_engine.errors import PermanentProviderError
from teach_me_engine.session_engine import TeachMeSessionEngine
from teach_me_engine.step_generator import StepGenerator

from fakes import (
    CORRECT_ANSWERS,
    SESSION_ID,
    USER_ID,
    ScriptedModelClient,
    grading_payload,
    make_session,
    seeded_store,
    step_payload,
)

VALIDATE_URL = "/api/teach-me/validate-answer"


def submission(step_number, user_answer=None, **overrides):
    body = {
        "session_id": SESSION_ID,
        "step_number": step_number,
        "user_answer": user_answer if user_answer is not None else CORRECT_ANSWERS[step_number],
        "user_id": USER_ID,
    }
    body.update(overrides)
    return body


class TestTeachMeApi:
    """Test the teach-me HTTP surface with an in-memory store."""

    @pytest.fixture
    def model_client(self):
        return ScriptedModelClient()

    @pytest.fixture
    def store(self):
        return seeded_store()

    @pytest.fixture
    def client(self, store, model_client):
        engine = TeachMeSessionEngine(
            store=store,
            validator=AnswerValidator(model_client),
            generator=StepGenerator(model_client),
            summarizer=CompletionSummarizer(model_client),
        )
        app.dependency_overrides[get_engine] = lambda: engine
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_health(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_full_session_flow(self, client, store, model_client):
        """
        Walk all six steps, then request the completion summary.

        Expected:
        1. Each answer returns the next step until step 6
        2. The final answer completes the session with next_step = null
        3. Resubmitting the final step is rejected with 409
        """
        model_client.responses = [
            step_payload(2),
            grading_payload(), step_payload(3),
            grading_payload(is_correct=False, feedback_type="exam-mistake", score_percentage=50), step_payload(4),
            grading_payload(), step_payload(5),
            step_payload(6),
        ]

        for step_number in range(1, 7):
            answer = "Partial answer" if step_number == 3 else None
            response = client.post(VALIDATE_URL, json=submission(step_number, answer))

            assert response.status_code == 200, response.text
            data = response.json()
            assert data["success"] == True
            assert data["session_id"] == SESSION_ID
            assert data["total_steps"] == 6

            if step_number < 6:
                assert data["is_completed"] == False
                assert data["next_step"]["step_number"] == step_number + 1
                assert data["current_step"] == step_number + 1
            else:
                assert data["is_completed"] == True
                assert data["next_step"] is None
                assert data["current_step"] == 6

        step_5 = store.peek(SESSION_ID).steps[4]
        assert len(step_5.options) == 4

        session = client.get(f"/api/teach-me/sessions/{SESSION_ID}", params={"user_id": USER_ID}).json()
        assert session["is_completed"] == True
        assert len(session["steps"]) == 6
        assert len(session["exam_mistake_areas"]) == 1

        response = client.post(VALIDATE_URL, json=submission(6))
        assert response.status_code == 409
        assert "completed" in response.json()["error"]

    def test_deterministic_answer_reports_model(self, client, model_client):
        model_client.responses = [step_payload(2)]

        data = client.post(VALIDATE_URL, json=submission(1, "false")).json()

        assert data["is_correct"] == False
        assert data["validation"]["feedback_type"] == "concept-issue"
        assert data["validation"]["feedback_message"] == "Incorrect. The correct answer is: TRUE"
        assert data["model_used"] == "fake:model"

    def test_missing_field_is_400(self, client):
        body = submission(1)
        del body["user_answer"]

        response = client.post(VALIDATE_URL, json=body)

        assert response.status_code == 400
        assert "user_answer" in response.json()["error"]

    def test_empty_answer_is_400(self, client):
        response = client.post(VALIDATE_URL, json=submission(1, ""))

        assert response.status_code == 400

    def test_unknown_session_is_404(self, client):
        response = client.post(VALIDATE_URL, json=submission(1, session_id="missing"))

        assert response.status_code == 404
        assert "error" in response.json()

    def test_stale_step_is_409(self, client, store, model_client):
        model_client.responses = [step_payload(2)]
        assert client.post(VALIDATE_URL, json=submission(1)).status_code == 200

        response = client.post(VALIDATE_URL, json=submission(1))

        assert response.status_code == 409
        assert response.json() == {"error": "Expected step 2, got 1"}
        assert store.peek(SESSION_ID).current_step == 2

    def test_malformed_output_is_500(self, client, store, model_client):
        model_client.responses = ["Sorry, I cannot help with that."]

        response = client.post(VALIDATE_URL, json=submission(1))

        assert response.status_code == 500
        assert "error" in response.json()
        assert store.peek(SESSION_ID).current_step == 1

    def test_provider_failure_is_502(self, client, store, model_client):
        model_client.responses = [PermanentProviderError("openai:gpt-4-turbo authentication failed (401)", status=401)]

        response = client.post(VALIDATE_URL, json=submission(1))

        assert response.status_code == 502
        assert "authentication" in response.json()["error"]
        assert store.peek(SESSION_ID).current_step == 1

    def test_get_session_requires_user(self, client):
        assert client.get(f"/api/teach-me/sessions/{SESSION_ID}").status_code == 400
        assert client.get(f"/api/teach-me/sessions/{SESSION_ID}", params={"user_id": "other"}).status_code == 404

    def test_completion_for_unfinished_session_is_400(self, client):
        response = client.post("/api/teach-me/completion", json={"session_id": SESSION_ID, "user_id": USER_ID})

        assert response.status_code == 400


class TestCompletionApi:
    """Completion summary endpoint."""

    def test_completion_summary(self):
        store = seeded_store(make_session(is_completed=True))
        model_client = ScriptedModelClient([{
            "exam_risk_areas": [{
                "risk_level": "MEDIUM",
                "area": "Light reactions",
                "issue_type": "writing-issue",
                "quick_fix": "Use the standard diagram labels",
                "exam_impact": "1-2 marks",
            }],
            "revision_plan_3min": {
                "step_1": "Thylakoid reactions",
                "step_2": "Calvin cycle inputs",
                "step_3": "Limiting factors",
                "key_formula_or_fact": "ATP and NADPH drive carbon fixation",
            },
            "performance_breakdown": {
                "concept_understanding": 90,
                "writing_quality": 80,
                "exam_readiness": 85,
                "overall_score": 86,
                "strengths": ["Concepts"],
                "priority_improvements": ["Diagrams"],
            },
            "motivational_message": "Great job!",
        }])
        engine = TeachMeSessionEngine(
            store=store,
            validator=AnswerValidator(model_client),
            generator=StepGenerator(model_client),
            summarizer=CompletionSummarizer(model_client),
        )
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            response = TestClient(app).post(
                "/api/teach-me/completion",
                json={"session_id": SESSION_ID, "user_id": USER_ID},
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        data = response.json()
        assert data["success"] == True
        assert data["stats"]["accuracy_percentage"] == 100
        assert data["completion_summary"]["exam_risk_areas"][0]["risk_level"] == "MEDIUM"
        assert data["model_used"] == "fake:model"
        assert store.peek(SESSION_ID).recommended_revision["step_3"] == "Limiting factors"
