"""
FastAPI Backend for the Teach-Me Session Engine

Provides REST API endpoints for:
- Answer validation and step progression
- Session resynchronization after a stale-step rejection
- Post-session completion summaries

Sessions are created elsewhere; this service only advances them.
"""

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import os
import sys
import time
import logging
import signal

from lib.logger import setup_logging, get_logger, mask_id

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the teach_me_engine package to Python path when running from a checkout
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'teach_me_engine', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client

from teach_me_engine.config import EngineConfig
from teach_me_engine.errors import TeachMeError
from teach_me_engine.session_engine import TeachMeSessionEngine, build_engine, session_to_response
from teach_me_engine.session_store import SupabaseSessionStore

# Singleton engine, built on first request
_engine_instance = None


def get_engine() -> TeachMeSessionEngine:
    """Get or create the singleton TeachMeSessionEngine."""
    global _engine_instance
    if _engine_instance is None:
        config = EngineConfig.from_env()
        store = SupabaseSessionStore(
            get_supabase_client(),
            sessions_table=config.sessions_table,
            materials_table=config.materials_table,
        )
        _engine_instance = build_engine(config, store)
        logger.success("Teach-me engine initialized", data={
            "providers": [p.name for p in config.providers],
            "grading_policy": config.grading_policy.value,
        })
    return _engine_instance


app = FastAPI(
    title="Teach-Me Session Engine API",
    description="Adaptive step-structured assessment sessions",
    version="1.0.0"
)

default_origins = "http://localhost:3000,http://localhost:3001,http://127.0.0.1:3000"
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", default_origins).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class ValidateAnswerRequest(BaseModel):
    session_id: str = Field(min_length=1)
    step_number: int = Field(ge=1)
    user_answer: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


class CompletionRequest(BaseModel):
    session_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


# ==================== Error Handlers ====================

@app.exception_handler(TeachMeError)
async def teach_me_error_handler(request: Request, exc: TeachMeError):
    if exc.status_code >= 500:
        logger.error(f"Request failed: {request.url.path}", error=exc, data={
            "status": exc.status_code,
            "retryable": exc.retryable,
        })
    else:
        logger.warning(f"⚠️ Rejected {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    message = f"Missing or invalid required fields: {', '.join(fields)}" if fields else "Invalid request"
    logger.warning(f"⚠️ Bad request to {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error in {request.url.path}", error=exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Teach-Me Session Engine API",
        "version": "1.0.0",
    }


@app.post("/api/teach-me/validate-answer")
async def validate_answer(body: ValidateAnswerRequest, engine: TeachMeSessionEngine = Depends(get_engine)):
    """
    Grade the answer to the session's current step and return the next step.

    Resubmitting an already answered step is rejected with 409 and changes
    nothing.
    """
    path = "/api/teach-me/validate-answer"
    start = time.time()
    logger.request("POST", path, user_id=body.user_id, data={
        "session_id": mask_id(body.session_id),
        "step_number": body.step_number,
    })

    result = await engine.submit_answer(
        session_id=body.session_id,
        step_number=body.step_number,
        user_answer=body.user_answer,
        user_id=body.user_id,
    )

    logger.response(200, path, duration=time.time() - start, data={
        "is_correct": result.validation.is_correct,
        "feedback_type": result.validation.feedback_type.value,
        "is_completed": result.is_completed,
        "current_step": result.session.current_step,
        "model_used": result.model_used,
    })
    return result.to_response()


@app.get("/api/teach-me/sessions/{session_id}")
async def get_session(
    session_id: str,
    user_id: str = Query(..., min_length=1),
    engine: TeachMeSessionEngine = Depends(get_engine),
):
    """Return the stored session so a client can resynchronize its step."""
    session = await engine.get_session(session_id, user_id)
    return session_to_response(session)


@app.post("/api/teach-me/completion")
async def generate_completion(body: CompletionRequest, engine: TeachMeSessionEngine = Depends(get_engine)):
    """Generate the exam risk analysis and revision plan for a completed session."""
    path = "/api/teach-me/completion"
    start = time.time()
    logger.request("POST", path, user_id=body.user_id, data={"session_id": mask_id(body.session_id)})
    logger.section("COMPLETION SUMMARY", {"session_id": mask_id(body.session_id)})

    outcome = await engine.summarize_completion(body.session_id, body.user_id)

    logger.response(200, path, duration=time.time() - start, data={
        "risk_areas": len(outcome.summary.exam_risk_areas),
        "accuracy": outcome.stats.accuracy_percentage,
        "model_used": outcome.model_used,
    })
    return {
        "success": True,
        "session_id": body.session_id,
        "completion_summary": outcome.summary.model_dump(mode="json"),
        "stats": outcome.stats.to_dict(),
        "model_used": outcome.model_used,
    }


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
