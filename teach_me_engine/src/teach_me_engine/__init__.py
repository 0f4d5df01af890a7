"""
Teach-Me Session Engine

Adaptive, step-structured assessment sessions: answer grading, per-step
question generation and completion summaries over pluggable model providers.
"""

from teach_me_engine.answer_validator import AnswerValidator, GradedAnswer
from teach_me_engine.completion_summary import CompletionSummarizer, CompletionSummary, SessionStats
from teach_me_engine.config import EngineConfig, GradingPolicy, ProviderConfig, ProviderKind, RetryConfig
from teach_me_engine.errors import (
    CallerError,
    ConcurrentUpdateError,
    MalformedModelOutputError,
    PermanentProviderError,
    PersistenceError,
    ProviderError,
    SessionCompletedError,
    SessionIntegrityError,
    SessionNotCompletedError,
    SessionNotFoundError,
    SourceMaterialNotFoundError,
    StepMismatchError,
    TeachMeError,
    TransientProviderError,
)
from teach_me_engine.model_client import (
    CallOptions,
    FallbackClient,
    ModelResponse,
    OpenAICompatibleProvider,
    RetryingClient,
    build_model_client,
)
from teach_me_engine.models import (
    FeedbackType,
    QuestionType,
    SourceMaterial,
    StepType,
    TeachMeSession,
    ValidationResult,
    parse_step,
)
from teach_me_engine.response_parser import parse_json
from teach_me_engine.session_engine import SubmissionResult, TeachMeSessionEngine, build_engine
from teach_me_engine.session_store import InMemorySessionStore, SupabaseSessionStore
from teach_me_engine.step_generator import StepGenerator

__all__ = [
    "AnswerValidator",
    "GradedAnswer",
    "CompletionSummarizer",
    "CompletionSummary",
    "SessionStats",
    "EngineConfig",
    "GradingPolicy",
    "ProviderConfig",
    "ProviderKind",
    "RetryConfig",
    "CallerError",
    "ConcurrentUpdateError",
    "MalformedModelOutputError",
    "PermanentProviderError",
    "PersistenceError",
    "ProviderError",
    "SessionCompletedError",
    "SessionIntegrityError",
    "SessionNotCompletedError",
    "SessionNotFoundError",
    "SourceMaterialNotFoundError",
    "StepMismatchError",
    "TeachMeError",
    "TransientProviderError",
    "CallOptions",
    "FallbackClient",
    "ModelResponse",
    "OpenAICompatibleProvider",
    "RetryingClient",
    "build_model_client",
    "FeedbackType",
    "QuestionType",
    "SourceMaterial",
    "StepType",
    "TeachMeSession",
    "ValidationResult",
    "parse_step",
    "parse_json",
    "SubmissionResult",
    "TeachMeSessionEngine",
    "build_engine",
    "InMemorySessionStore",
    "SupabaseSessionStore",
    "StepGenerator",
]
