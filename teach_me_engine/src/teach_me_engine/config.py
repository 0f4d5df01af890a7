"""
Engine Configuration

Explicit configuration objects injected into the model client and the engine.
Only ``EngineConfig.from_env`` reads the process environment; everything else
receives its settings through constructors so tests can supply their own.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv


class ProviderKind(str, Enum):
    """Supported OpenAI-compatible provider flavors."""
    PARALLEL = "parallel"                    # lite / low-latency
    PERPLEXITY = "perplexity"                # search-capable
    OPENAI = "openai"                        # general-purpose
    OPENAI_MULTIMODAL = "openai-multimodal"  # accepts file attachments


DEFAULT_BASE_URLS = {
    ProviderKind.PARALLEL: "https://api.parallel.ai",
    ProviderKind.PERPLEXITY: "https://api.perplexity.ai",
    ProviderKind.OPENAI: None,
    ProviderKind.OPENAI_MULTIMODAL: None,
}

DEFAULT_MODELS = {
    ProviderKind.PARALLEL: "lite",
    ProviderKind.PERPLEXITY: "sonar-pro",
    ProviderKind.OPENAI: "gpt-4-turbo",
    ProviderKind.OPENAI_MULTIMODAL: "gpt-4o",
}

# Environment variable holding the API key for each provider
API_KEY_ENV = {
    ProviderKind.PARALLEL: "PARALLEL_API_KEY",
    ProviderKind.PERPLEXITY: "PERPLEXITY_API_KEY",
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.OPENAI_MULTIMODAL: "OPENAI_API_KEY",
}


class GradingPolicy(str, Enum):
    """
    How a model-graded verdict with is_correct=true but a non-perfect
    feedback type is treated.

    - trust_model: keep the verdict; weak areas only for incorrect answers
    - track_partial: keep the verdict; also record weak areas for the
      correct-but-imperfect answer
    - strict: any non-perfect feedback makes the answer incorrect
    """
    TRUST_MODEL = "trust_model"
    TRACK_PARTIAL = "track_partial"
    STRICT = "strict"


@dataclass
class ProviderConfig:
    """Connection settings for one text-generation provider."""
    kind: ProviderKind
    api_key: str
    model: Optional[str] = None
    base_url: Optional[str] = None
    timeout_seconds: float = 60.0
    name: Optional[str] = None

    def __post_init__(self):
        self.kind = ProviderKind(self.kind)
        if self.model is None:
            self.model = DEFAULT_MODELS[self.kind]
        if self.base_url is None:
            self.base_url = DEFAULT_BASE_URLS[self.kind]
        if self.name is None:
            self.name = f"{self.kind.value}:{self.model}"


@dataclass
class RetryConfig:
    """Bounded exponential backoff for transient provider failures."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


@dataclass
class EngineConfig:
    """Top-level configuration for the teach-me engine."""
    providers: List[ProviderConfig] = field(default_factory=list)
    retry: RetryConfig = field(default_factory=RetryConfig)
    grading_policy: GradingPolicy = GradingPolicy.TRUST_MODEL

    # Generation budgets
    source_excerpt_chars: int = 8000
    weak_area_topic_chars: int = 100

    grading_temperature: float = 0.2
    grading_max_tokens: int = 800
    generation_temperature: float = 0.6
    generation_max_tokens: int = 1200
    summary_temperature: float = 0.5
    summary_max_tokens: int = 2000

    # Supabase tables
    sessions_table: str = "teach_me_sessions"
    materials_table: str = "generated_notes"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Build configuration from environment variables (and a .env file).

        Providers are listed in fallback order in ``TEACH_ME_PROVIDERS``
        (default: ``parallel,perplexity,openai``); providers without an API
        key are skipped.
        """
        load_dotenv()
        load_dotenv('../.env')  # Also try parent directory

        order = os.getenv("TEACH_ME_PROVIDERS", "parallel,perplexity,openai")
        providers = []
        for raw_kind in [k.strip() for k in order.split(",") if k.strip()]:
            kind = ProviderKind(raw_kind)
            api_key = os.getenv(API_KEY_ENV[kind])
            if not api_key:
                continue
            env_prefix = kind.value.upper().replace("-", "_")
            providers.append(ProviderConfig(
                kind=kind,
                api_key=api_key,
                model=os.getenv(f"{env_prefix}_MODEL") or None,
                base_url=os.getenv(f"{env_prefix}_BASE_URL") or None,
                timeout_seconds=float(os.getenv("TEACH_ME_PROVIDER_TIMEOUT", "60")),
            ))

        return cls(
            providers=providers,
            retry=RetryConfig(
                max_attempts=int(os.getenv("TEACH_ME_RETRY_ATTEMPTS", "3")),
                base_delay_seconds=float(os.getenv("TEACH_ME_RETRY_BASE_DELAY", "1.0")),
                max_delay_seconds=float(os.getenv("TEACH_ME_RETRY_MAX_DELAY", "8.0")),
            ),
            grading_policy=GradingPolicy(os.getenv("TEACH_ME_GRADING_POLICY", GradingPolicy.TRUST_MODEL.value)),
            sessions_table=os.getenv("TEACH_ME_SESSIONS_TABLE", "teach_me_sessions"),
            materials_table=os.getenv("TEACH_ME_MATERIALS_TABLE", "generated_notes"),
        )
