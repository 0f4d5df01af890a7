"""
Unit Tests for Session Store

Tests row (de)serialization and the conditional write against a fake
Supabase query builder.
"""

import json
import pytest
import sys
import os
from types import SimpleNamespace

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "teach_me_engine", "src"))
sys.path.insert(0, os.path.join(project_root, "tests"))

from teach_me_engine.errors import ConcurrentUpdateError, PersistenceError, SessionIntegrityError
from teach_me_engine.models import OpenAnswerStep, MultipleChoiceStep
from teach_me_engine.session_store import (
    TRANSITION_COLUMNS,
    InMemorySessionStore,
    SupabaseSessionStore,
    record_to_material,
    record_to_session,
    session_to_record,
)

from fakes import SESSION_ID, USER_ID, make_session, step_payload


class FakeQuery:
    """Records the builder chain and returns canned rows on execute()."""

    def __init__(self, table, rows, error=None):
        self.table = table
        self.rows = rows
        self.error = error
        self.operations = []

    def select(self, columns):
        self.operations.append(("select", columns))
        return self

    def update(self, data):
        self.operations.append(("update", data))
        return self

    def eq(self, column, value):
        self.operations.append(("eq", column, value))
        return self

    def execute(self):
        if self.error:
            raise self.error
        return SimpleNamespace(data=self.rows)


class FakeSupabase:
    def __init__(self, rows=None, error=None):
        self.rows = rows if rows is not None else []
        self.error = error
        self.queries = []

    def table(self, name):
        query = FakeQuery(name, self.rows, self.error)
        self.queries.append(query)
        return query


class TestRecordConversion:
    """Test suite for row <-> session conversion."""

    def test_round_trip_preserves_session(self):
        session = make_session(current_step=3)

        assert record_to_session(session_to_record(session)) == session

    def test_legacy_labels_accepted(self):
        legacy_open = step_payload(2, question_type="ANSWER_WRITING", step_type="CORE_THINKING")
        legacy_mcq = step_payload(5, question_type="MCQ")
        record = session_to_record(make_session(current_step=2))
        record["steps"] = [step_payload(1), legacy_open, legacy_mcq]

        session = record_to_session(record)

        assert isinstance(session.steps[1], OpenAnswerStep)
        assert isinstance(session.steps[2], MultipleChoiceStep)

    def test_json_string_columns(self):
        record = session_to_record(make_session())
        record["steps"] = json.dumps(record["steps"])
        record["concept_weak_areas"] = '["Photosynthesis basics"]'

        session = record_to_session(record)

        assert len(session.steps) == 1
        assert session.concept_weak_areas == ["Photosynthesis basics"]

    def test_invalid_steps_raise_integrity_error(self):
        record = session_to_record(make_session())
        record["steps"] = [{"step_number": 1, "question_type": "essay"}]

        with pytest.raises(SessionIntegrityError):
            record_to_session(record)

    def test_material_key_points_as_json_string(self):
        material = record_to_material({
            "id": "note-1",
            "title": "Photosynthesis",
            "summary": None,
            "key_points": '["Light reactions", "Calvin cycle"]',
            "detailed_content": "Text",
        })

        assert material.key_points == ["Light reactions", "Calvin cycle"]
        assert material.has_content == True


class TestSupabaseSessionStore:
    """Test suite for SupabaseSessionStore."""

    @pytest.mark.asyncio
    async def test_get_session_filters_by_owner(self):
        supabase = FakeSupabase(rows=[session_to_record(make_session())])
        store = SupabaseSessionStore(supabase)

        session = await store.get_session(SESSION_ID, USER_ID)

        assert session.session_id == SESSION_ID
        query = supabase.queries[0]
        assert query.table == "teach_me_sessions"
        assert ("eq", "id", SESSION_ID) in query.operations
        assert ("eq", "user_id", USER_ID) in query.operations

    @pytest.mark.asyncio
    async def test_get_session_missing(self):
        store = SupabaseSessionStore(FakeSupabase(rows=[]))

        assert await store.get_session("nope", USER_ID) is None

    @pytest.mark.asyncio
    async def test_commit_is_conditional(self):
        supabase = FakeSupabase(rows=[{"id": SESSION_ID}])
        store = SupabaseSessionStore(supabase)
        session = make_session(current_step=3)

        await store.commit_transition(session, expected_step=2)

        operations = supabase.queries[0].operations
        update = operations[0]
        assert update[0] == "update"
        assert sorted(update[1]) == sorted(TRANSITION_COLUMNS)
        assert ("eq", "id", SESSION_ID) in operations
        assert ("eq", "current_step", 2) in operations
        assert ("eq", "is_completed", False) in operations

    @pytest.mark.asyncio
    async def test_commit_matching_no_rows_is_concurrent_update(self):
        store = SupabaseSessionStore(FakeSupabase(rows=[]))

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await store.commit_transition(make_session(current_step=3), expected_step=2)

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_write_failure_is_persistence_error(self):
        store = SupabaseSessionStore(FakeSupabase(error=RuntimeError("connection reset")))

        with pytest.raises(PersistenceError) as exc_info:
            await store.commit_transition(make_session(current_step=2), expected_step=1)

        assert exc_info.value.retryable == True

    @pytest.mark.asyncio
    async def test_completion_summary_columns(self):
        supabase = FakeSupabase(rows=[{"id": SESSION_ID}])
        store = SupabaseSessionStore(supabase)

        await store.save_completion_summary(SESSION_ID, {
            "exam_risk_areas": [],
            "revision_plan_3min": {"step_1": "a"},
            "performance_breakdown": {"overall_score": 50},
            "motivational_message": "Keep going",
        })

        update = supabase.queries[0].operations[0][1]
        assert update == {
            "exam_risk_areas": [],
            "recommended_revision": {"step_1": "a"},
            "performance_breakdown": {"overall_score": 50},
        }


class TestInMemorySessionStore:
    """Test suite for InMemorySessionStore."""

    @pytest.mark.asyncio
    async def test_returned_sessions_are_copies(self):
        store = InMemorySessionStore()
        store.add_session(make_session())

        session = await store.get_session(SESSION_ID, USER_ID)
        session.concept_weak_areas.append("leak")

        assert store.peek(SESSION_ID).concept_weak_areas == []

    @pytest.mark.asyncio
    async def test_stale_commit_rejected(self):
        store = InMemorySessionStore()
        store.add_session(make_session(current_step=2))

        with pytest.raises(ConcurrentUpdateError):
            await store.commit_transition(make_session(current_step=2), expected_step=1)
