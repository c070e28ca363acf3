"""Tests for the model gateway and the provider translations."""

import asyncio
from types import SimpleNamespace

import pytest

from agent_orchestrator.config import ProviderConfig
from agent_orchestrator.core.errors import ProviderUnavailableError, StreamingUnavailableError
from agent_orchestrator.llm.gateway import ModelGateway
from agent_orchestrator.llm.providers import AnthropicProvider, OpenAIProvider
from agent_orchestrator.llm.types import CompletionRequest, StopReason, to_wire_name, wire_name_map
from tests.conftest import FakeProvider, llm_config, text_response

SLOTS_TOOL = {
    "name": "BookingTool.getSlots",
    "description": "Get available slots",
    "input_schema": {"type": "object", "properties": {"proProfileId": {"type": "string"}}},
}


class _Recorder:
    """Async callable standing in for an SDK ``create`` method."""

    def __init__(self, result):
        self.result = result
        self.kwargs = None

    async def __call__(self, **kwargs):
        self.kwargs = kwargs
        return self.result


class TestWireNames:
    def test_round_trip(self):
        assert to_wire_name("BookingTool.getSlots") == "BookingTool__getSlots"
        assert wire_name_map([SLOTS_TOOL]) == {"BookingTool__getSlots": "BookingTool.getSlots"}
        assert wire_name_map(None) == {}


class TestAnthropicProvider:
    def _client(self, response):
        create = _Recorder(response)
        return SimpleNamespace(messages=SimpleNamespace(create=create)), create

    async def test_complete_parses_text_and_tool_use(self):
        response = SimpleNamespace(
            id="msg_1",
            model="claude-test",
            stop_reason="tool_use",
            content=[
                SimpleNamespace(type="text", text="Checking slots."),
                SimpleNamespace(
                    type="tool_use", id="toolu_1", name="BookingTool__getSlots", input={"proProfileId": "p1"}
                ),
            ],
            usage=SimpleNamespace(
                input_tokens=12, output_tokens=7, cache_read_input_tokens=3, cache_creation_input_tokens=None
            ),
        )
        client, create = self._client(response)
        provider = AnthropicProvider(ProviderConfig(model="claude-test"), client=client)

        result = await provider.complete(
            CompletionRequest(
                messages=[{"role": "user", "content": "slots?"}],
                system_prompt="Be brief.",
                tools=[SLOTS_TOOL],
                model="claude-override",
            )
        )

        assert create.kwargs["model"] == "claude-override"
        assert create.kwargs["system"] == "Be brief."
        assert create.kwargs["tools"][0]["name"] == "BookingTool__getSlots"
        assert result.content == "Checking slots."
        assert result.stop_reason == StopReason.TOOL_USE
        assert result.tool_calls[0].name == "BookingTool.getSlots"
        assert result.tool_calls[0].arguments == {"proProfileId": "p1"}
        assert result.content_blocks[1]["name"] == "BookingTool.getSlots"
        assert result.usage.cache_read_tokens == 3
        assert result.usage.total_tokens == 19

    async def test_tool_use_names_are_encoded_in_history(self):
        response = SimpleNamespace(
            id="msg_2",
            model="claude-test",
            stop_reason="end_turn",
            content=[SimpleNamespace(type="text", text="Done")],
            usage=SimpleNamespace(input_tokens=1, output_tokens=1),
        )
        client, create = self._client(response)
        provider = AnthropicProvider(ProviderConfig(model="claude-test"), client=client)
        history = [
            {"role": "user", "content": "slots?"},
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "t1", "name": "BookingTool.getSlots", "input": {}}],
            },
            {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "[]"}]},
        ]

        await provider.complete(CompletionRequest(messages=history, tools=[SLOTS_TOOL]))

        assert create.kwargs["messages"][1]["content"][0]["name"] == "BookingTool__getSlots"
        assert history[1]["content"][0]["name"] == "BookingTool.getSlots"

    async def test_stream_failure_yields_error_event(self):
        async def _boom(**kwargs):
            raise RuntimeError("connection reset")

        client = SimpleNamespace(messages=SimpleNamespace(create=_boom))
        provider = AnthropicProvider(ProviderConfig(model="claude-test"), client=client)

        events = [e async for e in provider.stream(CompletionRequest(messages=[]))]

        assert events[-1].type == "error"
        assert "connection reset" in events[-1].error


class TestOpenAIProvider:
    async def test_complete_parses_tool_calls(self):
        response = SimpleNamespace(
            id="chatcmpl_1",
            model="gpt-test",
            choices=[
                SimpleNamespace(
                    finish_reason="tool_calls",
                    message=SimpleNamespace(
                        content=None,
                        tool_calls=[
                            SimpleNamespace(
                                id="call_1",
                                function=SimpleNamespace(
                                    name="BookingTool__getSlots", arguments='{"proProfileId": "p1"}'
                                ),
                            ),
                            SimpleNamespace(
                                id="call_2",
                                function=SimpleNamespace(name="BookingTool__getSlots", arguments="{not json"),
                            ),
                        ],
                    ),
                )
            ],
            usage=SimpleNamespace(prompt_tokens=20, completion_tokens=4),
        )
        create = _Recorder(response)
        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        provider = OpenAIProvider(ProviderConfig(model="gpt-test"), client=client)

        result = await provider.complete(
            CompletionRequest(
                messages=[{"role": "user", "content": "slots?"}],
                system_prompt="Be brief.",
                tools=[SLOTS_TOOL],
                model="claude-override",
            )
        )

        assert create.kwargs["model"] == "gpt-test"
        assert create.kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
        assert create.kwargs["tools"][0]["function"]["name"] == "BookingTool__getSlots"
        assert result.provider == "openai"
        assert result.stop_reason == StopReason.TOOL_USE
        assert [c.name for c in result.tool_calls] == ["BookingTool.getSlots", "BookingTool.getSlots"]
        assert result.tool_calls[0].arguments == {"proProfileId": "p1"}
        assert result.tool_calls[1].arguments == {}
        assert result.usage.input_tokens == 20

    def test_transcript_conversion(self):
        converted = OpenAIProvider._to_openai_messages(
            None,
            [
                {"role": "user", "content": "slots?"},
                {
                    "role": "assistant",
                    "content": [
                        {"type": "text", "text": "Looking."},
                        {"type": "tool_use", "id": "t1", "name": "BookingTool.getSlots", "input": {"a": 1}},
                    ],
                },
                {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "[]"}]},
            ],
        )

        assert converted[1]["content"] == "Looking."
        assert converted[1]["tool_calls"][0]["function"] == {
            "name": "BookingTool__getSlots",
            "arguments": '{"a": 1}',
        }
        assert converted[2] == {"role": "tool", "tool_call_id": "t1", "content": "[]"}


class TestModelGateway:
    async def test_no_provider(self, flags):
        gateway = ModelGateway(llm_config(), flags)
        await gateway.initialize()
        assert gateway.is_healthy() is False
        assert gateway.current_provider is None
        with pytest.raises(ProviderUnavailableError):
            await gateway.complete(CompletionRequest(messages=[]))

    async def test_flag_off_disables_providers(self, flags):
        flags.set("LLM_CLAUDE_ENABLED", False)
        gateway = ModelGateway(llm_config(), flags, primary=FakeProvider())
        await gateway.initialize()
        assert gateway.is_healthy() is False

    async def test_primary_preferred(self, flags):
        primary = FakeProvider([text_response("primary")])
        fallback = FakeProvider([text_response("fallback")], name="openai")
        gateway = ModelGateway(llm_config(fallback_enabled=True), flags, primary=primary, fallback=fallback)

        result = await gateway.complete(CompletionRequest(messages=[{"role": "user", "content": "hi"}]))

        assert result.content == "primary"
        assert gateway.current_provider == "fake"
        assert fallback.requests == []

    async def test_unavailable_primary_selects_fallback(self, flags):
        primary = FakeProvider(available=False)
        fallback = FakeProvider([text_response("fallback")], name="openai")
        gateway = ModelGateway(llm_config(fallback_enabled=True), flags, primary=primary, fallback=fallback)
        assert gateway.current_provider == "openai"
        result = await gateway.complete(CompletionRequest(messages=[]))
        assert result.content == "fallback"

    async def test_fallback_disabled_reraises(self, flags):
        primary = FakeProvider(error=RuntimeError("rate limited"))
        fallback = FakeProvider([text_response("fallback")], name="openai")
        gateway = ModelGateway(llm_config(fallback_enabled=False), flags, primary=primary, fallback=fallback)
        with pytest.raises(RuntimeError, match="rate limited"):
            await gateway.complete(CompletionRequest(messages=[]))

    async def test_both_fail_reraises_primary_error(self, flags):
        primary = FakeProvider(error=RuntimeError("primary down"))
        fallback = FakeProvider(error=ValueError("fallback down"), name="openai")
        gateway = ModelGateway(llm_config(fallback_enabled=True), flags, primary=primary, fallback=fallback)
        with pytest.raises(RuntimeError, match="primary down"):
            await gateway.complete(CompletionRequest(messages=[]))
        assert len(fallback.requests) == 1

    async def test_timeout_falls_back(self, flags):
        class SlowProvider(FakeProvider):
            async def complete(self, request):
                await asyncio.sleep(1)
                return text_response("too late")

        fallback = FakeProvider([text_response("fallback")], name="openai")
        gateway = ModelGateway(
            llm_config(fallback_enabled=True, timeout_seconds=0.05),
            flags,
            primary=SlowProvider(),
            fallback=fallback,
        )
        result = await gateway.complete(CompletionRequest(messages=[]))
        assert result.content == "fallback"

    async def test_stream(self, flags):
        gateway = ModelGateway(llm_config(), flags, primary=FakeProvider([text_response("streamed")]))
        events = [e async for e in gateway.stream(CompletionRequest(messages=[]))]
        assert [e.type for e in events] == ["message_start", "text_delta", "message_stop"]
        assert events[1].delta == {"text": "streamed"}

    async def test_stream_disabled(self, flags):
        flags.set("LLM_STREAMING_ENABLED", False)
        gateway = ModelGateway(llm_config(), flags, primary=FakeProvider())
        with pytest.raises(StreamingUnavailableError):
            async for _ in gateway.stream(CompletionRequest(messages=[])):
                pass

    def test_estimate_tokens(self):
        messages = [
            {"role": "user", "content": "a" * 8},
            {"role": "assistant", "content": [{"type": "text", "text": "b" * 4}]},
        ]
        assert ModelGateway.estimate_tokens(messages) == 3
