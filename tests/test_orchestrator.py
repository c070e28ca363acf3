"""Tests for the session orchestrator: lifecycle, model/stub paths, tools and handoff."""

from datetime import timedelta
from typing import Any

import pytest

from agent_orchestrator.agents.models import AgentDefinition
from agent_orchestrator.config import OrchestratorConfig
from agent_orchestrator.core.errors import InvalidStateError, NotEnabledError, NotFoundError
from agent_orchestrator.core.models import utcnow
from agent_orchestrator.core.types import (
    AgentCategory,
    MessageRole,
    SessionStatus,
    SessionType,
    ToolCallStatus,
)
from agent_orchestrator.orchestrator.service import CACHE_PREFIX, REDACTED, redact
from agent_orchestrator.orchestrator.tool_loop import EXHAUSTED_REPLY
from agent_orchestrator.tools.base import Tool, ToolContext
from tests.conftest import FakeProvider, text_response, tool_response


class StatusInquiryTool(Tool):
    @property
    def name(self) -> str:
        return "StatusInquiry"

    @property
    def description(self) -> str:
        return "Look up the status of a job"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"job_id": {"type": "string"}}}

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        return {"job_id": params.get("job_id"), "status": "EN_ROUTE"}


@pytest.fixture
def status_agent(catalog, registry):
    registry.register(StatusInquiryTool())
    catalog.register(
        AgentDefinition(
            id="STATUS_AGENT",
            name="Status Agent",
            category=AgentCategory.CUSTOMER_FACING,
            prompt_key="agent.job-status",
            allowed_tools=("StatusInquiry",),
            max_turns=10,
        )
    )
    return "STATUS_AGENT"


class TestSessionLifecycle:
    async def test_start_session_binds_agent(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session(
            "user_1", SessionType.BOOKING, {"agentId": "DISPATCH_CONCIERGE", "orgName": "Acme"}
        )
        assert session.status == SessionStatus.ACTIVE
        assert session.agent_id == "DISPATCH_CONCIERGE"
        assert "Acme" in session.agent_instance.system_prompt
        assert session.conversation_history[0].role == MessageRole.SYSTEM
        assert session.turn_count == 0

    async def test_unknown_agent_falls_back_to_no_agent(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "NOPE"})
        assert session.agent_id is None
        assert session.agent_instance is None

    async def test_disabled_agent_is_not_bound(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "DISPATCH_OPTIMIZER"})
        assert session.agent_id is None

    async def test_phone_session_requires_flag(self, make_orchestrator, flags):
        orch = make_orchestrator()
        with pytest.raises(NotEnabledError):
            await orch.start_session("user_1", SessionType.PHONE)
        flags.set("PHONE_AGENT_ENABLED", True)
        session = await orch.start_session("user_1", SessionType.PHONE)
        assert session.session_type == "PHONE"

    async def test_phone_flag_per_org(self, make_orchestrator, flags):
        orch = make_orchestrator()
        flags.set("PHONE_AGENT_ENABLED", True, org_id="org_acme")
        session = await orch.start_session("user_1", SessionType.PHONE, {"orgId": "org_acme"})
        assert session.org_id == "org_acme"

    async def test_end_session(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)
        ended = await orch.end_session(session.id)
        assert ended.status == SessionStatus.COMPLETED
        assert ended.ended_at is not None
        with pytest.raises(InvalidStateError):
            await orch.end_session(session.id)
        with pytest.raises(InvalidStateError):
            await orch.process_message(session.id, "hello")

    async def test_unknown_session(self, make_orchestrator):
        orch = make_orchestrator()
        assert await orch.get_session("session_missing") is None
        with pytest.raises(NotFoundError):
            await orch.process_message("session_missing", "hello")
        with pytest.raises(NotFoundError):
            await orch.end_session("session_missing")

    async def test_session_survives_cache_eviction(self, make_orchestrator, cache):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "JOB_STATUS"})
        await orch.process_message(session.id, "where is my plumber?")
        await cache.delete(CACHE_PREFIX + session.id)

        restored = await orch.get_session(session.id)
        assert restored is not None
        assert restored.turn_count == 1
        assert restored.agent_instance is not None
        assert [t.role for t in restored.conversation_history] == [
            MessageRole.SYSTEM,
            MessageRole.USER,
            MessageRole.AGENT,
        ]


class TestStubPath:
    async def test_booking_request_without_model(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.BOOKING)

        result = await orch.process_message(session.id, "I want to book something")

        assert result.session_active is True
        assert "book" in result.response.content.lower()
        assert "time slots" in result.response.content
        assert result.response.metadata["source"] == "stub"
        assert result.response.metadata["degraded"] is True
        assert "View available slots" in result.suggested_actions
        assert len(result.tool_calls) == 1
        assert result.tool_calls[0].tool_name == "BookingTool.getSlots"
        assert result.tool_calls[0].status == ToolCallStatus.SUCCESS

    async def test_free_form_channel_without_agent(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", "DISPATCH_CONCIERGE")

        assert session.session_type == "DISPATCH_CONCIERGE"
        assert session.agent_id is None

        result = await orch.process_message(session.id, "I want to book something")

        assert result.session_active is True
        assert "slots" in result.response.content
        assert result.response.metadata["source"] == "stub"
        assert [c.tool_name for c in result.tool_calls] == ["BookingTool.getSlots"]

    async def test_default_reply_echoes_message(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session(None, SessionType.SUPPORT)
        result = await orch.process_message(session.id, "what are your hours?")
        assert "what are your hours?" in result.response.content
        assert result.suggested_actions == ["Book an appointment", "Request dispatch", "Talk to human agent"]
        assert result.tool_calls == []

    async def test_agent_bound_but_no_provider_uses_stub(self, make_orchestrator):
        orch = make_orchestrator()
        assert orch.is_model_available() is False
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "DISPATCH_CONCIERGE"})
        result = await orch.process_message(session.id, "dispatch a pro please")
        assert result.response.metadata["source"] == "stub"
        assert "Start dispatch" in result.suggested_actions


class TestModelPath:
    async def test_plain_reply(self, make_orchestrator):
        provider = FakeProvider([text_response("Happy to help with that.")])
        orch = make_orchestrator(primary=provider)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "DISPATCH_CONCIERGE"})

        result = await orch.process_message(session.id, "Can someone fix my sink?")

        assert result.response.content == "Happy to help with that."
        assert result.response.metadata["source"] == "model"
        assert result.response.metadata["provider"] == "fake"
        assert result.response.metadata["tool_rounds"] == 0
        request = provider.requests[0]
        assert request.metadata["agent_type"] == "DISPATCH_CONCIERGE"
        assert request.max_tokens == 2048
        assert request.messages[-1] == {"role": "user", "content": "Can someone fix my sink?"}
        assert {t["name"] for t in request.tools} == {
            "BookingTool.createBooking",
            "BookingTool.getSlots",
            "CalendarTool.checkAvailability",
            "SmsTool.sendSms",
            "EmailTool.sendEmail",
        }

    async def test_tool_call_then_final_answer(self, make_orchestrator, status_agent):
        provider = FakeProvider(
            [
                tool_response(("StatusInquiry", {"job_id": "J1"}), text="Let me check."),
                text_response("Your pro is on the way."),
            ]
        )
        orch = make_orchestrator(primary=provider)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": status_agent})

        result = await orch.process_message(session.id, "Where is my pro?")

        assert len(result.tool_calls) >= 1
        assert result.tool_calls[0].tool_name == "StatusInquiry"
        assert result.tool_calls[0].status == ToolCallStatus.SUCCESS
        assert result.tool_calls[0].output == {"job_id": "J1", "status": "EN_ROUTE"}
        assert len(provider.requests) == 2
        assert result.response.content == "Your pro is on the way."
        assert result.response.metadata["tool_rounds"] == 1

        follow_up = provider.requests[1].messages
        assert follow_up[-2]["role"] == "assistant"
        tool_use = [b for b in follow_up[-2]["content"] if b["type"] == "tool_use"][0]
        result_block = follow_up[-1]["content"][0]
        assert result_block["type"] == "tool_result"
        assert result_block["tool_use_id"] == tool_use["id"]
        assert result_block["is_error"] is False

    async def test_tool_round_is_replayed_from_memory(self, make_orchestrator, status_agent):
        provider = FakeProvider(
            [
                tool_response(("StatusInquiry", {"job_id": "J1"})),
                text_response("On the way."),
                text_response("You're welcome."),
            ]
        )
        orch = make_orchestrator(primary=provider)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": status_agent})
        await orch.process_message(session.id, "Where is my pro?")
        await orch.process_message(session.id, "Thanks")

        messages = provider.requests[2].messages
        roles = [m["role"] for m in messages]
        assert roles == ["user", "assistant", "user", "assistant", "user"]
        assert messages[2]["content"][0]["type"] == "tool_result"
        assert messages[-1] == {"role": "user", "content": "Thanks"}

    async def test_tool_outside_allow_list_is_rejected(self, make_orchestrator):
        provider = FakeProvider(
            [
                tool_response(("DispatchTool.initiateDispatch", {"jobId": "J1"})),
                text_response("I can't do that here."),
            ]
        )
        orch = make_orchestrator(primary=provider)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "QUOTE_ASSISTANT"})

        result = await orch.process_message(session.id, "send a pro")

        assert result.tool_calls[0].status == ToolCallStatus.FAILED
        assert "not available" in result.tool_calls[0].error
        assert result.response.content == "I can't do that here."

    async def test_tool_loop_ceiling(self, make_orchestrator, status_agent):
        provider = FakeProvider([tool_response(("StatusInquiry", {"job_id": "J1"}))])
        orch = make_orchestrator(primary=provider)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": status_agent})

        result = await orch.process_message(session.id, "loop forever")

        assert len(provider.requests) == 11
        assert len(result.tool_calls) == 10
        assert result.response.content == EXHAUSTED_REPLY
        assert result.response.metadata["tool_rounds"] == 10
        assert result.session_active is True

    async def test_tool_loop_ceiling_is_configurable(self, make_orchestrator, status_agent):
        provider = FakeProvider([tool_response(("StatusInquiry", {}))])
        orch = make_orchestrator(primary=provider, config=OrchestratorConfig(max_tool_rounds=2))
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": status_agent})
        await orch.process_message(session.id, "loop")
        assert len(provider.requests) == 3

    async def test_fallback_provider_answers(self, make_orchestrator):
        primary = FakeProvider(error=RuntimeError("overloaded"))
        fallback = FakeProvider([text_response("From the fallback", provider="openai")], name="openai")
        orch = make_orchestrator(primary=primary, fallback=fallback)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "JOB_STATUS"})

        result = await orch.process_message(session.id, "status please")

        assert result.response.content == "From the fallback"
        assert result.response.metadata["provider"] == "openai"
        assert len(primary.requests) == 1
        assert len(fallback.requests) == 1

    async def test_all_providers_failing_degrades_to_stub(self, make_orchestrator):
        primary = FakeProvider(error=RuntimeError("down"))
        fallback = FakeProvider(error=RuntimeError("also down"), name="openai")
        orch = make_orchestrator(primary=primary, fallback=fallback)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "JOB_STATUS"})

        result = await orch.process_message(session.id, "status please")

        assert result.response.metadata["source"] == "stub"
        assert result.session_active is True
        stored = await orch.get_session(session.id)
        assert stored.conversation_history[-1].role == MessageRole.AGENT


class TestHandoff:
    async def test_max_turns_triggers_takeover(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "DISPATCH_CONCIERGE"})

        for i in range(30):
            result = await orch.process_message(session.id, f"question {i}")
            assert result.session_active is True

        result = await orch.process_message(session.id, "one more")

        assert result.session_active is False
        assert result.suggested_actions == ["Wait for human agent"]
        stored = await orch.get_session(session.id)
        assert stored.status == SessionStatus.HUMAN_TAKEOVER
        assert stored.turn_count == 30
        with pytest.raises(InvalidStateError):
            await orch.process_message(session.id, "hello?")

    async def test_explicit_takeover(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)

        result = await orch.request_human_takeover(session.id, reason="Customer asked", priority="high")

        assert result.status == SessionStatus.HUMAN_TAKEOVER
        assert 1 <= result.queue_position <= 5
        assert result.estimated_wait_seconds == result.queue_position * 60
        assert "human agent" in result.message
        stored = await orch.get_session(session.id)
        last = stored.conversation_history[-1]
        assert last.content == "Human takeover initiated. Reason: Customer asked"
        assert last.metadata["priority"] == "high"

    async def test_takeover_after_end_is_rejected(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)
        await orch.end_session(session.id)
        with pytest.raises(InvalidStateError):
            await orch.request_human_takeover(session.id)

    async def test_escalation_keyword_suggests_transfer(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "DISPATCH_CONCIERGE"})
        result = await orch.process_message(session.id, "Let me talk to your MANAGER")
        assert "Transfer to human agent" in result.suggested_actions
        assert result.session_active is True

    async def test_escalation_keyword_takeover_mode(self, make_orchestrator):
        orch = make_orchestrator(config=OrchestratorConfig(keyword_escalation="takeover"))
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "DISPATCH_CONCIERGE"})
        result = await orch.process_message(session.id, "I am so frustrated")
        assert result.session_active is False
        stored = await orch.get_session(session.id)
        assert stored.status == SessionStatus.HUMAN_TAKEOVER
        assert stored.conversation_history[-1].metadata["reason"] == "Escalation keyword: frustrated"


class TestDirectToolCalls:
    async def test_disabled_feature(self, make_orchestrator, flags):
        flags.set("DISPATCH_ENABLED", False)
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.DISPATCH)

        result = await orch.execute_tool_call(session.id, "DispatchTool.initiateDispatch", {"jobId": "J1"})

        assert result.success is False
        assert result.error == "Dispatch feature is not enabled"
        log = await orch.get_tool_call_log(session.id)
        assert log[-1].id == result.tool_call_id
        assert log[-1].status == ToolCallStatus.FAILED

    async def test_successful_call_is_logged(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.DISPATCH)

        result = await orch.execute_tool_call(session.id, "DispatchTool.checkStatus", {"dispatchId": "d1"})

        assert result.success is True
        assert result.result.data["status"] == "IN_PROGRESS"
        assert result.result.metadata["stub"] is True
        stored = await orch.get_session(session.id)
        assert stored.tool_call_log[0].status == ToolCallStatus.SUCCESS
        assert stored.conversation_history[-1].role == MessageRole.TOOL

    async def test_anonymous_user_is_forbidden(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session(None, SessionType.DISPATCH)
        result = await orch.execute_tool_call(session.id, "DispatchTool.initiateDispatch", {"jobId": "J1"})
        assert result.success is False
        assert result.result.metadata["forbidden"] is True

    async def test_unknown_tool(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)
        result = await orch.execute_tool_call(session.id, "Nope.nothing", {})
        assert result.success is False
        assert result.error == "Unknown tool: Nope.nothing"

    async def test_approval_gate(self, make_orchestrator, approvals):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.BOOKING, {"agentId": "DISPATCH_CONCIERGE"})
        params = {"jobId": "J1", "slotId": "slot_1", "proProfileId": "pro_1"}

        first = await orch.execute_tool_call(session.id, "BookingTool.createBooking", params)
        assert first.success is False
        assert first.result.metadata["approval_required"] is True

        approvals.approve(first.result.metadata["approval_id"], approved_by="ops_1")
        second = await orch.execute_tool_call(session.id, "BookingTool.createBooking", params)
        assert second.success is True
        assert second.result.data["status"] == "PENDING_CONFIRMATION"

    async def test_requires_active_session(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)
        await orch.request_human_takeover(session.id)
        with pytest.raises(InvalidStateError):
            await orch.execute_tool_call(session.id, "DispatchTool.checkStatus", {"dispatchId": "d1"})


class TestHistory:
    async def test_pagination(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)
        for i in range(4):
            await orch.process_message(session.id, f"message {i}")

        page = await orch.get_history(session.id, page=2, page_size=3)

        assert page.total == 9
        assert page.total_pages == 3
        assert len(page.messages) == 3
        assert page.messages[0].tool_calls is None

    async def test_tool_calls_are_redacted(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.DISPATCH)
        await orch.execute_tool_call(
            session.id, "DispatchTool.checkStatus", {"dispatchId": "d1", "apiKey": "sk-123"}
        )

        page = await orch.get_history(session.id, include_tool_calls=True)

        views = [v for m in page.messages for v in (m.tool_calls or [])]
        assert len(views) == 1
        assert views[0].input == {"dispatchId": "d1", "apiKey": REDACTED}

    def test_redact_nested(self):
        value = {"a": [{"Password": "x", "keep": 1}], "creditCard": "4111"}
        assert redact(value) == {"a": [{"Password": REDACTED, "keep": 1}], "creditCard": REDACTED}


class TestExpiry:
    async def test_idle_sessions_expire(self, make_orchestrator):
        orch = make_orchestrator()
        idle = await orch.start_session("user_1", SessionType.SUPPORT)
        ended = await orch.start_session("user_2", SessionType.SUPPORT)
        await orch.end_session(ended.id)

        count = await orch.expire_idle_sessions(600, now=utcnow() + timedelta(hours=1))

        assert count == 1
        stored = await orch.get_session(idle.id)
        assert stored.status == SessionStatus.EXPIRED
        assert (await orch.get_session(ended.id)).status == SessionStatus.COMPLETED
        with pytest.raises(InvalidStateError):
            await orch.process_message(idle.id, "hello")

    async def test_recent_sessions_are_kept(self, make_orchestrator):
        orch = make_orchestrator()
        session = await orch.start_session("user_1", SessionType.SUPPORT)
        assert await orch.expire_idle_sessions(600) == 0
        assert (await orch.get_session(session.id)).status == SessionStatus.ACTIVE


class TestSummarization:
    async def test_summary_is_used_in_system_prompt(self, make_orchestrator, memory):
        provider = FakeProvider([text_response("Hi there"), text_response("Customer needs a plumber.")])
        orch = make_orchestrator(primary=provider)
        session = await orch.start_session("user_1", SessionType.SUPPORT, {"agentId": "JOB_STATUS"})
        await orch.process_message(session.id, "My sink leaks")

        summary = await orch.summarize_session(session.id)

        assert summary == "Customer needs a plumber."
        context = await memory.get_context(session.id)
        assert "Customer needs a plumber." in memory.get_system_prompt(context)
