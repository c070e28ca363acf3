"""LLM provider backends: Anthropic (primary) and OpenAI (fallback)."""

from __future__ import annotations

import copy
import json
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from agent_orchestrator.config import ProviderConfig
from agent_orchestrator.llm.types import (
    CompletionRequest,
    CompletionResponse,
    StopReason,
    StreamEvent,
    TokenUsage,
    ToolCall,
    to_wire_name,
    wire_name_map,
)
from agent_orchestrator.log import get_logger

logger = get_logger(__name__)


class LLMProvider(ABC):
    """Abstract base class for model backends."""

    name: str = ""

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        ...

    @abstractmethod
    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Yield stream events. Failures surface as a final ``error`` event."""
        ...


def _encode_tool_use_names(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    encoded = copy.deepcopy(messages)
    for message in encoded:
        content = message.get("content")
        if isinstance(content, list):
            for block in content:
                if block.get("type") == "tool_use":
                    block["name"] = to_wire_name(block["name"])
    return encoded


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API backend using the official SDK."""

    name = "anthropic"

    _STOP_REASONS = {
        "end_turn": StopReason.END_TURN,
        "max_tokens": StopReason.MAX_TOKENS,
        "stop_sequence": StopReason.STOP_SEQUENCE,
        "tool_use": StopReason.TOOL_USE,
    }

    def __init__(self, config: ProviderConfig, client: Any = None):
        self._config = config
        if client is None:
            import anthropic

            client = anthropic.AsyncAnthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model or self._config.model,
            "max_tokens": request.max_tokens or self._config.max_tokens,
            "messages": _encode_tool_use_names(request.messages),
            "temperature": (
                request.temperature if request.temperature is not None else self._config.temperature
            ),
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt
        if request.tools:
            kwargs["tools"] = [
                {
                    "name": to_wire_name(t["name"]),
                    "description": t.get("description", ""),
                    "input_schema": t.get("input_schema") or {"type": "object", "properties": {}},
                }
                for t in request.tools
            ]
        if request.stop_sequences:
            kwargs["stop_sequences"] = request.stop_sequences
        return kwargs

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        kwargs = self._build_kwargs(request)
        names = wire_name_map(request.tools)

        logger.debug("api_request", provider=self.name, model=kwargs["model"], message_count=len(kwargs["messages"]))
        started = time.monotonic()
        response = await self._client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - started) * 1000)

        texts: list[str] = []
        blocks: list[dict[str, Any]] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
                blocks.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                name = names.get(block.name, block.name)
                arguments = dict(block.input or {})
                tool_calls.append(ToolCall(id=block.id, name=name, arguments=arguments))
                blocks.append({"type": "tool_use", "id": block.id, "name": name, "input": arguments})

        usage = response.usage
        return CompletionResponse(
            id=response.id,
            model=response.model,
            content="".join(texts),
            provider=self.name,
            stop_reason=self._STOP_REASONS.get(response.stop_reason, StopReason.END_TURN),
            tool_calls=tool_calls,
            content_blocks=blocks,
            usage=TokenUsage(
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cache_read_tokens=getattr(usage, "cache_read_input_tokens", None) or 0,
                cache_creation_tokens=getattr(usage, "cache_creation_input_tokens", None) or 0,
            ),
            latency_ms=latency_ms,
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        kwargs = self._build_kwargs(request)
        try:
            events = await self._client.messages.create(**kwargs, stream=True)
            async for event in events:
                yield self._convert_event(event)
        except Exception as e:
            logger.error("stream_error", provider=self.name, error=str(e))
            yield StreamEvent(type="error", error=str(e))

    @staticmethod
    def _convert_event(event: Any) -> StreamEvent:
        index = getattr(event, "index", None)
        if event.type == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return StreamEvent(type="text_delta", index=index, delta={"text": delta.text})
            if delta.type == "input_json_delta":
                return StreamEvent(
                    type="input_json_delta", index=index, delta={"partial_json": delta.partial_json}
                )
            return StreamEvent(type=delta.type, index=index)
        return StreamEvent(type=event.type, index=index)


class OpenAIProvider(LLMProvider):
    """OpenAI Chat Completions backend, used as the fallback."""

    name = "openai"

    _FINISH_REASONS = {
        "stop": StopReason.END_TURN,
        "length": StopReason.MAX_TOKENS,
        "tool_calls": StopReason.TOOL_USE,
        "function_call": StopReason.TOOL_USE,
    }

    def __init__(self, config: ProviderConfig, client: Any = None):
        self._config = config
        if client is None:
            import openai

            client = openai.AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client

    @staticmethod
    def _to_openai_messages(system: str | None, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Translate Anthropic-shaped messages into chat completion messages."""
        converted: list[dict[str, Any]] = []
        if system:
            converted.append({"role": "system", "content": system})

        for message in messages:
            role = message["role"]
            content = message.get("content")
            if isinstance(content, str):
                converted.append({"role": role, "content": content})
                continue

            texts = [b["text"] for b in content if b.get("type") == "text"]
            if role == "assistant":
                msg: dict[str, Any] = {"role": "assistant", "content": "\n".join(texts) or None}
                tool_uses = [b for b in content if b.get("type") == "tool_use"]
                if tool_uses:
                    msg["tool_calls"] = [
                        {
                            "id": b["id"],
                            "type": "function",
                            "function": {
                                "name": to_wire_name(b["name"]),
                                "arguments": json.dumps(b.get("input") or {}),
                            },
                        }
                        for b in tool_uses
                    ]
                converted.append(msg)
            else:
                for block in content:
                    if block.get("type") == "tool_result":
                        result = block.get("content", "")
                        converted.append(
                            {
                                "role": "tool",
                                "tool_call_id": block["tool_use_id"],
                                "content": result if isinstance(result, str) else json.dumps(result),
                            }
                        )
                if texts:
                    converted.append({"role": "user", "content": "\n".join(texts)})
        return converted

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        # Agent-level model overrides name primary-provider models
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": request.max_tokens or self._config.max_tokens,
            "messages": self._to_openai_messages(request.system_prompt, request.messages),
            "temperature": (
                request.temperature if request.temperature is not None else self._config.temperature
            ),
        }
        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": to_wire_name(t["name"]),
                        "description": t.get("description", ""),
                        "parameters": t.get("input_schema") or {"type": "object", "properties": {}},
                    },
                }
                for t in request.tools
            ]
        if request.stop_sequences:
            kwargs["stop"] = request.stop_sequences
        return kwargs

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        kwargs = self._build_kwargs(request)
        names = wire_name_map(request.tools)

        logger.debug("api_request", provider=self.name, model=kwargs["model"], message_count=len(kwargs["messages"]))
        started = time.monotonic()
        response = await self._client.chat.completions.create(**kwargs)
        latency_ms = int((time.monotonic() - started) * 1000)

        choice = response.choices[0]
        message = choice.message
        text = message.content or ""
        blocks: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
        tool_calls: list[ToolCall] = []
        for tc in message.tool_calls or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("tool_arguments_invalid_json", provider=self.name, tool=tc.function.name)
                arguments = {}
            name = names.get(tc.function.name, tc.function.name)
            tool_calls.append(ToolCall(id=tc.id, name=name, arguments=arguments))
            blocks.append({"type": "tool_use", "id": tc.id, "name": name, "input": arguments})

        usage = response.usage
        return CompletionResponse(
            id=response.id,
            model=response.model,
            content=text,
            provider=self.name,
            stop_reason=self._FINISH_REASONS.get(choice.finish_reason, StopReason.END_TURN),
            tool_calls=tool_calls,
            content_blocks=blocks,
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
            latency_ms=latency_ms,
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        kwargs = self._build_kwargs(request)
        try:
            chunks = await self._client.chat.completions.create(**kwargs, stream=True)
            yield StreamEvent(type="message_start")
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta.content:
                    yield StreamEvent(type="text_delta", index=0, delta={"text": delta.content})
                for tc in delta.tool_calls or []:
                    yield StreamEvent(
                        type="input_json_delta",
                        index=tc.index,
                        delta={"partial_json": (tc.function.arguments if tc.function else "") or ""},
                    )
                if choice.finish_reason:
                    stop = self._FINISH_REASONS.get(choice.finish_reason, StopReason.END_TURN)
                    yield StreamEvent(type="message_delta", delta={"stop_reason": str(stop)})
            yield StreamEvent(type="message_stop")
        except Exception as e:
            logger.error("stream_error", provider=self.name, error=str(e))
            yield StreamEvent(type="error", error=str(e))
