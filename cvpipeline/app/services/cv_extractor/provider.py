"""
Provider resilience - retry with exponential backoff plus forward-only model fallback.

Every model call in the pipeline goes through ResilientLLMClient.call_with_resilience:
  - retryable errors (overload, rate limit, network, timeout) are retried on the same
    model with delay base * 2^(attempt-1), up to llm_max_retries attempts
  - capability errors (model not found / not supported) advance the model chain and
    re-issue the same prompt on the next model
  - anything else propagates immediately as ProviderError
"""
from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Sequence

import openai
from langchain_openai import ChatOpenAI

from cvpipeline.app.core.config import settings
from cvpipeline.app.core.errors import (
    CapabilityError,
    CVPipelineError,
    ProviderError,
    ProviderUnavailableError,
)
from cvpipeline.app.core.logging_config import get_logger

logger = get_logger("services.cv_extractor.provider")

_RETRYABLE_MARKERS = (
    "503", "429", "529", "overloaded", "unavailable", "rate limit", "network",
    "timeout", "timed out", "fetch failed", "enotfound", "econnrefused", "econnreset",
    "connection error", "temporarily",
)
_CAPABILITY_MARKERS = ("not found", "not supported", "does not exist", "unsupported", "404")
_QUOTA_MARKERS = ("insufficient_quota", "quota", "api_key_invalid", "invalid api key")


class ErrorKind(str, Enum):
    RETRYABLE = "retryable"
    CAPABILITY = "capability"
    FATAL = "fatal"


def classify_error(exc: BaseException) -> ErrorKind:
    """Sort a provider exception into retryable / capability / fatal."""
    message = str(exc).lower()

    if any(m in message for m in _QUOTA_MARKERS) or isinstance(
        exc, (openai.AuthenticationError, openai.PermissionDeniedError)
    ):
        return ErrorKind.FATAL
    if isinstance(exc, openai.NotFoundError):
        return ErrorKind.CAPABILITY
    if isinstance(exc, (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)):
        # APITimeoutError is an APIConnectionError
        return ErrorKind.RETRYABLE
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code in (429, 503, 529) or exc.status_code >= 500:
            return ErrorKind.RETRYABLE
        if exc.status_code == 404 or ("model" in message and any(m in message for m in _CAPABILITY_MARKERS)):
            return ErrorKind.CAPABILITY
        return ErrorKind.FATAL
    if isinstance(exc, (ConnectionError, TimeoutError, socket.gaierror)):
        return ErrorKind.RETRYABLE
    if "model" in message and any(m in message for m in _CAPABILITY_MARKERS):
        return ErrorKind.CAPABILITY
    if any(m in message for m in _RETRYABLE_MARKERS):
        return ErrorKind.RETRYABLE
    return ErrorKind.FATAL


@dataclass
class ModelFallbackState:
    """Ordered model chain plus a cursor. The cursor only moves forward."""
    model_chain: list[str] = field(default_factory=list)
    current_index: int = 0

    def __post_init__(self) -> None:
        if not self.model_chain:
            raise ValueError("model_chain must contain at least one model")

    @property
    def current_model(self) -> str:
        return self.model_chain[self.current_index]

    def can_advance(self) -> bool:
        return self.current_index + 1 < len(self.model_chain)

    def advance(self) -> str:
        if not self.can_advance():
            raise CapabilityError(f"Model chain exhausted at {self.current_model}")
        self.current_index += 1
        return self.current_model


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content or "")


class ResilientLLMClient:
    """Chat-model client wrapped in retry/backoff and model fallback."""

    def __init__(
        self,
        model_chain: Sequence[str] | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        api_key: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fallback = ModelFallbackState(list(model_chain or settings.get_model_chain()))
        self.max_retries = max(1, max_retries if max_retries is not None else settings.llm_max_retries)
        self.base_delay = base_delay if base_delay is not None else settings.llm_retry_base_delay
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self._sleep = sleep
        self._lock = threading.Lock()
        self._chat_models: dict[str, ChatOpenAI] = {}

    @property
    def current_model(self) -> str:
        return self.fallback.current_model

    def _advance_past(self, model: str, exc: BaseException) -> str:
        with self._lock:
            # Another caller may already have moved past this model
            if self.fallback.current_model != model:
                return self.fallback.current_model
            if not self.fallback.can_advance():
                raise CapabilityError(f"No fallback model left after {model}: {exc}") from exc
            new_model = self.fallback.advance()
        logger.warning("Model %s unsupported (%s); falling back to %s", model, exc, new_model)
        return new_model

    def call_with_resilience(self, prompt_fn: Callable[[str], str], description: str = "model call") -> str:
        """
        Run prompt_fn(model_name) with retry on transient errors and fallback on capability errors.
        Returns the raw text reply.
        """
        model = self.current_model
        attempt = 0
        while True:
            attempt += 1
            try:
                return prompt_fn(model)
            except CVPipelineError:
                raise
            except Exception as e:
                kind = classify_error(e)
                if kind is ErrorKind.CAPABILITY:
                    model = self._advance_past(model, e)
                    attempt = 0
                    continue
                if kind is ErrorKind.FATAL:
                    logger.error("%s failed with non-retryable error on %s: %s", description, model, e)
                    raise ProviderError(str(e)) from e
                if attempt >= self.max_retries:
                    logger.error("%s failed after %d attempts on %s: %s", description, attempt, model, e)
                    raise ProviderUnavailableError(
                        f"Provider unavailable after {attempt} attempts ({model}): {e}"
                    ) from e
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "%s attempt %d/%d on %s failed (%s); retrying in %.1fs",
                    description, attempt, self.max_retries, model, e, delay,
                )
                self._sleep(delay)

    def _chat_model(self, model: str) -> ChatOpenAI:
        if model not in self._chat_models:
            self._chat_models[model] = ChatOpenAI(
                model=model,
                api_key=self.api_key,
                base_url=settings.openai_base_url or None,
                temperature=settings.llm_temperature,
                timeout=settings.llm_timeout_seconds,
                max_retries=0,
            )
        return self._chat_models[model]

    def complete(self, messages: list, description: str = "model call") -> str:
        """Send chat messages (LangChain message list or prompt value) and return the reply text."""
        if not self.api_key:
            raise ProviderUnavailableError("No OpenAI API key configured")

        def _invoke(model: str) -> str:
            reply = self._chat_model(model).invoke(messages)
            return _content_text(reply.content)

        return self.call_with_resilience(_invoke, description)

    def test_connection(self) -> bool:
        """Issue a trivial prompt. True when the provider answers."""
        try:
            text = self.complete([("human", "Reply with the single word OK.")], "connection test")
        except CVPipelineError as e:
            logger.warning("LLM connection test failed: %s", e)
            return False
        return bool(text.strip())


@lru_cache
def get_llm_client() -> ResilientLLMClient:
    """Process-wide client so the fallback cursor is shared across calls."""
    return ResilientLLMClient()
