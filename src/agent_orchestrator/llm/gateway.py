"""Model gateway: one entry point over the primary and fallback providers."""

from __future__ import annotations

import asyncio
import json
import math
from typing import TYPE_CHECKING, Any, AsyncIterator

from agent_orchestrator.config import LLMConfig
from agent_orchestrator.core.collaborators import FlagEvaluator
from agent_orchestrator.core.errors import ProviderUnavailableError, StreamingUnavailableError
from agent_orchestrator.llm.providers import AnthropicProvider, LLMProvider, OpenAIProvider
from agent_orchestrator.llm.types import CompletionRequest, CompletionResponse, StreamEvent
from agent_orchestrator.log import get_logger

if TYPE_CHECKING:
    from agent_orchestrator.tools.base import Tool

logger = get_logger(__name__)

LLM_ENABLED_FLAG = "LLM_CLAUDE_ENABLED"
STREAMING_FLAG = "LLM_STREAMING_ENABLED"


class ModelGateway:
    """Routes completions to the primary provider with a single fallback attempt."""

    def __init__(
        self,
        config: LLMConfig,
        flags: FlagEvaluator,
        primary: LLMProvider | None = None,
        fallback: LLMProvider | None = None,
    ):
        self._config = config
        self._flags = flags
        self._primary = primary
        self._fallback = fallback

    async def initialize(self) -> None:
        """Build providers from configuration. Missing credentials leave the gateway unhealthy."""
        if not await self._flags.is_enabled(LLM_ENABLED_FLAG):
            self._primary = None
            self._fallback = None
            logger.warning("llm_disabled_by_flag", flag=LLM_ENABLED_FLAG)
            return

        if self._primary is None:
            if self._config.anthropic.api_key:
                self._primary = AnthropicProvider(self._config.anthropic)
            else:
                logger.warning("llm_primary_not_configured", reason="ANTHROPIC_API_KEY not set")

        if self._config.fallback_enabled and self._fallback is None:
            if self._config.openai.api_key:
                self._fallback = OpenAIProvider(self._config.openai)
            else:
                logger.warning("llm_fallback_not_configured", reason="OPENAI_API_KEY not set")

        logger.info(
            "llm_gateway_initialized",
            primary=self._primary.name if self._primary else None,
            fallback=self._fallback.name if self._usable_fallback() else None,
        )

    def _usable_fallback(self) -> LLMProvider | None:
        if self._config.fallback_enabled and self._fallback and self._fallback.is_available:
            return self._fallback
        return None

    def _select(self) -> LLMProvider | None:
        if self._primary and self._primary.is_available:
            return self._primary
        return self._usable_fallback()

    def is_healthy(self) -> bool:
        return self._select() is not None

    @property
    def current_provider(self) -> str | None:
        provider = self._select()
        return provider.name if provider else None

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Complete with the primary provider; on failure try the fallback once.

        Raises:
            ProviderUnavailableError: no provider is configured.
            Exception: the primary provider's error when the fallback also fails.
        """
        provider = self._select()
        if provider is None:
            raise ProviderUnavailableError("No LLM provider available")

        try:
            return await self._call(provider, request)
        except Exception as e:
            fallback = self._usable_fallback()
            if provider is fallback or fallback is None:
                raise
            logger.warning("llm_primary_failed", provider=provider.name, fallback=fallback.name, error=str(e))
            try:
                return await self._call(fallback, request)
            except Exception as fallback_error:
                logger.error("llm_fallback_failed", provider=fallback.name, error=str(fallback_error))
                raise e

    async def _call(self, provider: LLMProvider, request: CompletionRequest) -> CompletionResponse:
        response = await asyncio.wait_for(
            provider.complete(request), timeout=self._config.timeout_seconds
        )
        logger.info(
            "llm_completion",
            provider=response.provider,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=str(response.stop_reason),
            latency_ms=response.latency_ms,
            session_id=request.metadata.get("session_id"),
        )
        return response

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Stream events from the selected provider.

        Raises:
            StreamingUnavailableError: streaming is disabled or no provider exists.
        """
        if not self._config.streaming_enabled or not await self._flags.is_enabled(STREAMING_FLAG):
            raise StreamingUnavailableError("Streaming is not enabled")
        provider = self._select()
        if provider is None:
            raise StreamingUnavailableError("No LLM provider available for streaming")

        async for event in provider.stream(request):
            yield event

    @staticmethod
    def estimate_tokens(messages: list[dict[str, Any]]) -> int:
        """Rough token count: characters / 4, rounded up."""
        chars = 0
        for message in messages:
            content = message.get("content")
            if isinstance(content, str):
                chars += len(content)
                continue
            for block in content or []:
                match block.get("type"):
                    case "text":
                        chars += len(block.get("text", ""))
                    case "tool_use":
                        chars += len(json.dumps(block.get("input") or {}))
                    case "tool_result":
                        result = block.get("content", "")
                        chars += len(result if isinstance(result, str) else json.dumps(result))
        return math.ceil(chars / 4)

    @staticmethod
    def format_tools(tools: list[Tool]) -> list[dict[str, Any]]:
        return [t.to_api_dict() for t in tools]
