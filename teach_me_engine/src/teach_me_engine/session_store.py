"""
Session Store for Teach-Me Sessions

Persistence contract consumed by the session engine, with a Supabase-backed
implementation and an in-memory one for local runs and tests.

Every state transition is written with a single conditional update: the row
is only changed if it still points at the step that was answered. A request
that loses that race changes nothing.
"""

import asyncio
import copy
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from teach_me_engine.errors import (
    ConcurrentUpdateError,
    PersistenceError,
    SessionIntegrityError,
)
from teach_me_engine.models import SourceMaterial, TeachMeSession, dump_step, parse_step

logger = logging.getLogger(__name__)

# Columns written by a state transition
TRANSITION_COLUMNS = [
    "steps",
    "current_step",
    "concept_weak_areas",
    "writing_weak_areas",
    "exam_mistake_areas",
    "is_completed",
    "completed_at",
    "exam_tags",
]


class SessionStore(Protocol):
    async def get_session(self, session_id: str, user_id: str) -> Optional[TeachMeSession]:
        ...

    async def get_source_material(self, material_id: str) -> Optional[SourceMaterial]:
        ...

    async def commit_transition(self, session: TeachMeSession, expected_step: int) -> None:
        ...

    async def save_completion_summary(self, session_id: str, summary: Dict[str, Any]) -> None:
        ...


def _json_list(value: Any) -> List[Any]:
    """Columns may come back as JSON strings or as native lists."""
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value or "[]")
    return list(value)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def session_to_record(session: TeachMeSession) -> Dict[str, Any]:
    """
    Convert a TeachMeSession to a row dictionary.

    Args:
        session: TeachMeSession object

    Returns:
        Dictionary keyed by column name
    """
    return {
        "id": session.session_id,
        "user_id": session.user_id,
        "note_id": session.material_id,
        "current_step": session.current_step,
        "total_steps": session.total_steps,
        "steps": [dump_step(step) for step in session.steps],
        "concept_weak_areas": list(session.concept_weak_areas),
        "writing_weak_areas": list(session.writing_weak_areas),
        "exam_mistake_areas": list(session.exam_mistake_areas),
        "is_completed": session.is_completed,
        "completed_at": session.completed_at.isoformat() if session.completed_at else None,
        "exam_tags": list(session.exam_tags),
        "created_at": session.created_at.isoformat() if session.created_at else None,
        "exam_risk_areas": session.exam_risk_areas,
        "recommended_revision": session.recommended_revision,
        "performance_breakdown": session.performance_breakdown,
    }


def record_to_session(data: Dict[str, Any]) -> TeachMeSession:
    """
    Convert a row dictionary to a TeachMeSession.

    Raises:
        SessionIntegrityError: if the stored steps cannot be parsed
    """
    session_id = str(data["id"])
    try:
        steps = [parse_step(raw) for raw in _json_list(data.get("steps"))]
    except (ValidationError, json.JSONDecodeError) as e:
        raise SessionIntegrityError(f"Stored steps for session {session_id} are invalid: {e}") from e

    return TeachMeSession(
        session_id=session_id,
        user_id=str(data["user_id"]),
        material_id=str(data.get("note_id") or ""),
        current_step=int(data.get("current_step") or 1),
        total_steps=int(data.get("total_steps") or 6),
        steps=sorted(steps, key=lambda s: s.step_number),
        concept_weak_areas=_json_list(data.get("concept_weak_areas")),
        writing_weak_areas=_json_list(data.get("writing_weak_areas")),
        exam_mistake_areas=_json_list(data.get("exam_mistake_areas")),
        is_completed=bool(data.get("is_completed")),
        completed_at=_parse_datetime(data.get("completed_at")),
        exam_tags=_json_list(data.get("exam_tags")),
        created_at=_parse_datetime(data.get("created_at")),
        exam_risk_areas=data.get("exam_risk_areas"),
        recommended_revision=data.get("recommended_revision"),
        performance_breakdown=data.get("performance_breakdown"),
    )


def record_to_material(data: Dict[str, Any]) -> SourceMaterial:
    key_points = data.get("key_points")
    if isinstance(key_points, str):
        try:
            key_points = json.loads(key_points)
        except json.JSONDecodeError:
            key_points = [key_points]
    return SourceMaterial(
        material_id=str(data["id"]),
        title=data.get("title") or "Untitled",
        summary=data.get("summary"),
        key_points=[str(p) for p in key_points] if isinstance(key_points, list) else [],
        detailed_content=data.get("detailed_content"),
    )


class SupabaseSessionStore:
    """
    Stores teach-me sessions in Supabase.

    Expects a ``teach_me_sessions`` table (see ``session_to_record`` for its
    columns) and a notes table holding the source material.
    """

    def __init__(
        self,
        supabase_client,
        sessions_table: str = "teach_me_sessions",
        materials_table: str = "generated_notes",
    ):
        """
        Initialize SupabaseSessionStore.

        Args:
            supabase_client: Supabase client instance
            sessions_table: Table holding session rows
            materials_table: Table holding source material rows
        """
        self.supabase = supabase_client
        self.sessions_table = sessions_table
        self.materials_table = materials_table

    async def get_session(self, session_id: str, user_id: str) -> Optional[TeachMeSession]:
        try:
            result = self.supabase.table(self.sessions_table) \
                .select('*') \
                .eq('id', session_id) \
                .eq('user_id', user_id) \
                .execute()
        except Exception as e:
            raise PersistenceError(f"Failed to load session {session_id}: {e}") from e

        if not result.data:
            return None
        return record_to_session(result.data[0])

    async def get_source_material(self, material_id: str) -> Optional[SourceMaterial]:
        try:
            result = self.supabase.table(self.materials_table) \
                .select('id, title, summary, key_points, detailed_content') \
                .eq('id', material_id) \
                .execute()
        except Exception as e:
            raise PersistenceError(f"Failed to load source material {material_id}: {e}") from e

        if not result.data:
            return None
        return record_to_material(result.data[0])

    async def commit_transition(self, session: TeachMeSession, expected_step: int) -> None:
        """
        Write one state transition atomically.

        The update only matches the row while it is still incomplete and at
        ``expected_step``.

        Raises:
            ConcurrentUpdateError: another request already advanced the session
            PersistenceError: the write itself failed
        """
        record = session_to_record(session)
        update_data = {column: record[column] for column in TRANSITION_COLUMNS}

        try:
            result = self.supabase.table(self.sessions_table) \
                .update(update_data) \
                .eq('id', session.session_id) \
                .eq('current_step', expected_step) \
                .eq('is_completed', False) \
                .execute()
        except Exception as e:
            raise PersistenceError(f"Failed to update session {session.session_id}: {e}") from e

        if not result.data:
            raise ConcurrentUpdateError(session.session_id, expected_step)

        logger.info(f"💾 Session {session.session_id} committed at step {session.current_step}")

    async def save_completion_summary(self, session_id: str, summary: Dict[str, Any]) -> None:
        update_data = {
            "exam_risk_areas": summary.get("exam_risk_areas"),
            "recommended_revision": summary.get("revision_plan_3min"),
            "performance_breakdown": summary.get("performance_breakdown"),
        }
        try:
            self.supabase.table(self.sessions_table) \
                .update(update_data) \
                .eq('id', session_id) \
                .eq('is_completed', True) \
                .execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save completion summary for {session_id}: {e}") from e


class InMemorySessionStore:
    """
    Process-local session store.

    Rows are kept as serialized records, so callers always work on copies
    and nothing they mutate is visible until ``commit_transition``.
    """

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._materials: Dict[str, SourceMaterial] = {}
        self._lock = asyncio.Lock()

    def add_session(self, session: TeachMeSession) -> None:
        self._sessions[session.session_id] = session_to_record(session)

    def add_material(self, material: SourceMaterial) -> None:
        self._materials[material.material_id] = material

    def peek(self, session_id: str) -> Optional[TeachMeSession]:
        """Current stored state, without the owner check."""
        record = self._sessions.get(session_id)
        return record_to_session(copy.deepcopy(record)) if record else None

    async def get_session(self, session_id: str, user_id: str) -> Optional[TeachMeSession]:
        record = self._sessions.get(session_id)
        if record is None or record["user_id"] != user_id:
            return None
        return record_to_session(copy.deepcopy(record))

    async def get_source_material(self, material_id: str) -> Optional[SourceMaterial]:
        material = self._materials.get(material_id)
        return copy.deepcopy(material) if material else None

    async def commit_transition(self, session: TeachMeSession, expected_step: int) -> None:
        async with self._lock:
            stored = self._sessions.get(session.session_id)
            if stored is None:
                raise PersistenceError(f"Session {session.session_id} disappeared before commit")
            if stored["current_step"] != expected_step or stored["is_completed"]:
                raise ConcurrentUpdateError(session.session_id, expected_step)

            record = session_to_record(session)
            for column in TRANSITION_COLUMNS:
                stored[column] = record[column]

    async def save_completion_summary(self, session_id: str, summary: Dict[str, Any]) -> None:
        stored = self._sessions.get(session_id)
        if stored is None:
            raise PersistenceError(f"Session {session_id} not found")
        stored["exam_risk_areas"] = summary.get("exam_risk_areas")
        stored["recommended_revision"] = summary.get("revision_plan_3min")
        stored["performance_breakdown"] = summary.get("performance_breakdown")
