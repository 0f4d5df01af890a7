"""
Model Provider Client

One contract for every text-generation provider:

    call(system_prompt, user_prompt, options) -> ModelResponse

Providers are OpenAI-compatible chat-completion endpoints driven through the
``openai`` SDK; the differences between them (JSON mode support, how search
is switched on, file attachments) live in ``OpenAICompatibleProvider``.
Retry with exponential backoff and error classification are written once in
``RetryingClient``; ``FallbackClient`` walks an ordered list of providers.

The client never interprets the content it returns. JSON extraction is the
response parser's job.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import openai
from openai import AsyncOpenAI

from teach_me_engine.config import EngineConfig, ProviderConfig, ProviderKind, RetryConfig
from teach_me_engine.errors import PermanentProviderError, ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

SEARCH_INSTRUCTION = "IMPORTANT: Use web search to find the latest information from reliable sources."


@dataclass
class TokenUsage:
    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion


@dataclass
class FileAttachment:
    """Raw file sent alongside the prompt (multimodal providers only)."""
    data: bytes
    mime_type: str
    filename: str

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class CallOptions:
    temperature: float = 0.3
    max_tokens: int = 2000
    json_mode: bool = False
    json_schema: Optional[Dict[str, Any]] = None  # {"name": ..., "strict": ..., "schema": {...}}
    enable_web_search: bool = False
    attachment: Optional[FileAttachment] = None


@dataclass
class ModelResponse:
    content: str
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    model_used: str = ""
    web_search_used: bool = False


class ModelClient(Protocol):
    """Anything that can turn a prompt pair into generated text."""
    name: str

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[CallOptions] = None,
    ) -> ModelResponse:
        ...


def classify_error(error: Exception, provider: str) -> ProviderError:
    """
    Map an ``openai`` SDK exception to the engine's provider error taxonomy.

    Rate limits, timeouts, connection failures and 5xx are transient.
    Authentication, payment/quota and other client errors are permanent.
    """
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        code = getattr(error, "code", None)
        if status == 429 and code == "insufficient_quota":
            return PermanentProviderError(
                f"{provider} quota exhausted: {error}", provider=provider, status=status
            )
        if status == 429 or status == 408 or status >= 500:
            return TransientProviderError(
                f"{provider} temporarily unavailable ({status}): {error}", provider=provider, status=status
            )
        if status in (401, 403):
            return PermanentProviderError(
                f"{provider} authentication failed ({status}). Check the API key.", provider=provider, status=status
            )
        if status == 402:
            return PermanentProviderError(
                f"{provider} payment required ({status}): {error}", provider=provider, status=status
            )
        return PermanentProviderError(
            f"{provider} rejected the request ({status}): {error}", provider=provider, status=status
        )

    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientProviderError(f"{provider} unreachable: {error}", provider=provider)

    # Undecodable or unexpected response bodies
    return TransientProviderError(f"{provider} returned an invalid response: {error}", provider=provider)


class OpenAICompatibleProvider:
    """Adapter for one OpenAI-compatible chat-completion endpoint."""

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self.name = config.name
        # SDK retries are disabled; RetryingClient owns the retry policy
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    @property
    def supports_files(self) -> bool:
        return self.config.kind in (ProviderKind.OPENAI_MULTIMODAL, ProviderKind.PERPLEXITY)

    def _user_content(self, user_prompt: str, attachment: Optional[FileAttachment]):
        if attachment is None:
            return user_prompt
        if not self.supports_files:
            raise PermanentProviderError(
                f"{self.name} does not accept file attachments", provider=self.name
            )
        if self.config.kind == ProviderKind.PERPLEXITY:
            return [
                {"type": "text", "text": user_prompt},
                {"type": "file_url", "file_url": {"url": attachment.as_data_url()}},
            ]
        return [
            {"type": "text", "text": user_prompt},
            {"type": "file", "file": {"filename": attachment.filename, "file_data": attachment.as_data_url()}},
        ]

    def build_request(self, system_prompt: str, user_prompt: str, options: CallOptions) -> Dict[str, Any]:
        """Build chat.completions.create kwargs for this provider flavor."""
        kind = self.config.kind

        if options.enable_web_search and kind == ProviderKind.PARALLEL:
            # Parallel switches search on through the system prompt
            system_prompt = f"{system_prompt}\n\n{SEARCH_INSTRUCTION}"

        request: Dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": self._user_content(user_prompt, options.attachment)},
            ],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }

        if options.json_mode:
            if kind == ProviderKind.PARALLEL and options.json_schema:
                request["response_format"] = {"type": "json_schema", "json_schema": options.json_schema}
            elif kind != ProviderKind.PERPLEXITY:
                # Sonar has no response_format; the prompt asks for JSON instead
                request["response_format"] = {"type": "json_object"}

        if options.enable_web_search and kind == ProviderKind.PERPLEXITY:
            request["extra_body"] = {"search_recency_filter": "month"}

        return request

    def uses_search(self, options: CallOptions) -> bool:
        return options.enable_web_search and self.config.kind in (ProviderKind.PARALLEL, ProviderKind.PERPLEXITY)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[CallOptions] = None,
    ) -> ModelResponse:
        options = options or CallOptions()
        request = self.build_request(system_prompt, user_prompt, options)

        logger.debug(f"📞 [{self.name}] Calling provider (max_tokens={options.max_tokens}, "
                     f"json={options.json_mode}, search={options.enable_web_search})")
        try:
            completion = await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            raise classify_error(e, self.name) from e

        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""

        usage = completion.usage
        tokens = TokenUsage(
            prompt=getattr(usage, "prompt_tokens", 0) or 0,
            completion=getattr(usage, "completion_tokens", 0) or 0,
        )
        logger.info(f"✅ [{self.name}] Response received ({tokens.total} tokens)")

        return ModelResponse(
            content=content,
            tokens_used=tokens,
            model_used=self.config.model,
            web_search_used=self.uses_search(options),
        )


class RetryingClient:
    """Retries transient failures of one provider with exponential backoff."""

    def __init__(
        self,
        provider: ModelClient,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.retry = retry or RetryConfig()
        self.name = provider.name
        self._sleep = sleep

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[CallOptions] = None,
    ) -> ModelResponse:
        last_error: Optional[TransientProviderError] = None

        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return await self.provider.call(system_prompt, user_prompt, options)
            except TransientProviderError as e:
                last_error = e
                if attempt == self.retry.max_attempts:
                    break
                delay = self.retry.delay_for(attempt)
                logger.warning(f"⚠️ [{self.name}] Attempt {attempt}/{self.retry.max_attempts} failed: "
                               f"{e.message}. Retrying in {delay:.1f}s")
                await self._sleep(delay)

        raise TransientProviderError(
            f"{self.name} failed after {self.retry.max_attempts} attempts: {last_error.message}",
            provider=self.name,
            status=last_error.status,
        ) from last_error


class FallbackClient:
    """Tries providers in order until one answers."""

    def __init__(self, clients: List[ModelClient]):
        if not clients:
            raise ValueError("FallbackClient needs at least one provider")
        self.clients = clients
        self.name = " -> ".join(c.name for c in clients)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[CallOptions] = None,
    ) -> ModelResponse:
        failures: List[ProviderError] = []

        for client in self.clients:
            try:
                return await client.call(system_prompt, user_prompt, options)
            except ProviderError as e:
                failures.append(e)
                logger.warning(f"⚠️ [{client.name}] failed, falling back: {e.message}")

        summary = "; ".join(f.message for f in failures)
        if any(f.retryable for f in failures):
            raise TransientProviderError(f"All model providers failed. {summary}") from failures[-1]
        raise PermanentProviderError(f"All model providers failed. {summary}") from failures[-1]


def build_model_client(config: EngineConfig) -> ModelClient:
    """Wire the configured providers into one retrying, falling-back client."""
    if not config.providers:
        raise ValueError("No model providers configured. Set at least one provider API key.")

    clients = [
        RetryingClient(OpenAICompatibleProvider(provider), retry=config.retry)
        for provider in config.providers
    ]
    if len(clients) == 1:
        return clients[0]
    return FallbackClient(clients)
