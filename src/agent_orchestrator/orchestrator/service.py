"""Session orchestrator: session lifecycle, message processing and human handoff."""

from __future__ import annotations

import math
import random
from datetime import datetime, timedelta
from typing import Any

import structlog

from agent_orchestrator.agents.catalog import AgentCatalog
from agent_orchestrator.agents.models import AgentInstance
from agent_orchestrator.config import OrchestratorConfig
from agent_orchestrator.core.collaborators import (
    Cache,
    FlagEvaluator,
    PermissionResolver,
    PolicyResolver,
    SessionStore,
)
from agent_orchestrator.core.errors import (
    InvalidStateError,
    NotEnabledError,
    NotFoundError,
    TemplateError,
    ToolExecutionFailedError,
)
from agent_orchestrator.core.models import (
    ConversationTurn,
    ExecuteToolResult,
    HistoryMessage,
    HistoryPage,
    HumanTakeoverResult,
    ProcessMessageResult,
    ResponseMessage,
    Session,
    ToolCallLogEntry,
    ToolCallView,
    ToolResult,
    utcnow,
)
from agent_orchestrator.core.types import (
    MemoryRole,
    MessageRole,
    SessionStatus,
    SessionType,
    ToolCallStatus,
)
from agent_orchestrator.llm.gateway import ModelGateway
from agent_orchestrator.llm.types import CompletionRequest, CompletionResponse, ToolCall
from agent_orchestrator.log import get_logger
from agent_orchestrator.memory.conversation import ConversationMemory
from agent_orchestrator.orchestrator.stub import stub_reply
from agent_orchestrator.orchestrator.tool_loop import run_tool_loop, tool_result_content
from agent_orchestrator.prompts.renderer import PromptRenderer
from agent_orchestrator.tools.base import ToolContext
from agent_orchestrator.tools.executor import ToolExecutor

logger = get_logger(__name__)

CACHE_PREFIX = "orchestrator:session:"

TRANSFER_SUGGESTION = "Transfer to human agent"
MAX_TURNS_REPLY = (
    "I apologize, but this conversation has become quite long. "
    "Let me connect you with a human agent who can better assist you."
)
REDACTED = "[REDACTED]"
SENSITIVE_KEYS = frozenset({"password", "token", "secret", "apikey", "creditcard"})


def redact(value: Any) -> Any:
    """Copy of ``value`` with sensitive keys masked at any depth."""
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


class SessionOrchestrator:
    """Owns sessions end to end.

    Every operation loads the session (cache first, then the durable store),
    mutates it and writes it back to both. Collaborators are injected.
    """

    def __init__(
        self,
        *,
        catalog: AgentCatalog,
        memory: ConversationMemory,
        gateway: ModelGateway,
        executor: ToolExecutor,
        renderer: PromptRenderer,
        cache: Cache,
        store: SessionStore,
        flags: FlagEvaluator,
        policies: PolicyResolver,
        permissions: PermissionResolver,
        config: OrchestratorConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._catalog = catalog
        self._memory = memory
        self._gateway = gateway
        self._executor = executor
        self._renderer = renderer
        self._cache = cache
        self._store = store
        self._flags = flags
        self._policies = policies
        self._permissions = permissions
        self._config = config or OrchestratorConfig()
        self._rng = rng or random.Random()

    # -- persistence -----------------------------------------------------

    async def _load(self, session_id: str) -> Session | None:
        try:
            cached = await self._cache.get(CACHE_PREFIX + session_id)
            if cached:
                return Session.from_dict(cached)
        except Exception as e:
            logger.warning("session_cache_read_failed", session_id=session_id, error=str(e))

        try:
            session = await self._store.get_session(session_id)
        except Exception as e:
            logger.error("session_store_read_failed", session_id=session_id, error=str(e))
            return None
        if session is not None:
            await self._cache_session(session)
        return session

    async def _require(self, session_id: str) -> Session:
        session = await self._load(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return session

    async def _cache_session(self, session: Session) -> None:
        try:
            await self._cache.set(
                CACHE_PREFIX + session.id, session.to_dict(), self._config.cache_ttl_seconds
            )
        except Exception as e:
            logger.warning("session_cache_write_failed", session_id=session.id, error=str(e))

    async def _save(self, session: Session) -> None:
        await self._cache_session(session)
        try:
            await self._store.save_session(session)
        except Exception as e:
            logger.error("session_store_write_failed", session_id=session.id, error=str(e))

    # -- lifecycle -------------------------------------------------------

    async def start_session(
        self,
        user_id: str | None,
        session_type: SessionType | str,
        context: dict[str, Any] | None = None,
    ) -> Session:
        """Create an ACTIVE session, binding an agent when ``context`` names one.

        Raises:
            NotEnabledError: a PHONE session while the phone agent is disabled.
        """
        context = dict(context or {})
        org_id = context.get("orgId") or context.get("org_id")

        if session_type == SessionType.PHONE:
            if not await self._flags.is_enabled("PHONE_AGENT_ENABLED", org_id):
                raise NotEnabledError("Phone agent is not enabled")
            mode = await self._policies.get_value("PHONE_AGENT_MODE", org_id)
            logger.info("phone_agent_mode", org_id=org_id, mode=mode)

        session = Session(
            session_type=str(session_type),
            user_id=user_id,
            org_id=org_id,
            context=context,
        )

        agent_id = context.get("agentId") or context.get("agent_id")
        if agent_id:
            try:
                instance = await self._catalog.create_instance(agent_id, session.id, context)
            except Exception as e:
                logger.warning(
                    "agent_instance_unavailable",
                    session_id=session.id,
                    agent_id=agent_id,
                    error=str(e),
                )
            else:
                session.agent_instance = instance
                session.agent_id = instance.agent_id
                await self._memory.initialize_context(
                    session.id,
                    instance.agent_id,
                    instance.system_prompt,
                    {"user_id": user_id, "org_id": org_id},
                )

        session.add_turn(
            ConversationTurn(
                role=MessageRole.SYSTEM,
                content=f"Session started: {session.session_type}",
                metadata={"session_start": True, "agent_id": session.agent_id},
            )
        )
        await self._save(session)

        logger.info(
            "session_started",
            session_id=session.id,
            session_type=session.session_type,
            user_id=user_id,
            agent_id=session.agent_id,
        )
        return session

    async def end_session(self, session_id: str) -> Session:
        session = await self._require(session_id)
        if session.status.is_terminal:
            raise InvalidStateError(f"Session {session_id} already {session.status}")

        session.status = SessionStatus.COMPLETED
        session.ended_at = utcnow()
        session.add_turn(
            ConversationTurn(role=MessageRole.SYSTEM, content="Session ended", metadata={"session_end": True})
        )
        await self._memory.clear_context(session.id)
        await self._save(session)
        logger.info("session_ended", session_id=session.id, turns=session.turn_count)
        return session

    async def get_session(self, session_id: str) -> Session | None:
        return await self._load(session_id)

    # -- messages --------------------------------------------------------

    async def process_message(
        self,
        session_id: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessMessageResult:
        """Handle one user message and produce the agent's reply.

        Uses the model when a provider is healthy and an agent is bound,
        otherwise the canned stub. A failed model turn degrades to the stub.

        Raises:
            NotFoundError: unknown session.
            InvalidStateError: the session is not ACTIVE.
        """
        with structlog.contextvars.bound_contextvars(session_id=session_id):
            session = await self._require(session_id)
            if not session.is_active:
                raise InvalidStateError(f"Session {session_id} is not active ({session.status})")

            limit = session.max_turns
            if limit is not None and session.turn_count >= limit:
                logger.warning("session_max_turns_reached", turn_count=session.turn_count, max_turns=limit)
                return await self._max_turns_handoff(session)

            session.add_turn(
                ConversationTurn(role=MessageRole.USER, content=text, metadata=dict(metadata or {}))
            )
            session.turn_count += 1
            await self._memory.add_turn(session.id, MemoryRole.USER, text, metadata)

            instance = session.agent_instance
            if instance is not None and self._gateway.is_healthy():
                try:
                    return await self._process_with_model(session, instance, text)
                except Exception as e:
                    logger.error("model_processing_failed", agent_id=session.agent_id, error=str(e))

            return await self._process_with_stub(session, text)

    async def _process_with_model(
        self, session: Session, instance: AgentInstance, text: str
    ) -> ProcessMessageResult:
        context = await self._memory.get_context(session.id)
        if context is not None and context.turns:
            messages = self._memory.format_for_model(context)
            system_prompt = self._memory.get_system_prompt(context) or instance.system_prompt
        else:
            messages = [{"role": "user", "content": text}]
            system_prompt = instance.system_prompt

        tools = self._executor.registry.get_tools_by_names(instance.available_tools)
        llm = instance.definition.llm
        request = CompletionRequest(
            messages=messages,
            system_prompt=system_prompt,
            tools=self._gateway.format_tools(tools) or None,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
            model=llm.model,
            metadata={
                "session_id": session.id,
                "user_id": session.user_id,
                "agent_type": session.agent_id,
            },
        )

        response = await self._gateway.complete(request)
        content = response.content
        usage = response.usage
        tool_calls: list[ToolCallLogEntry] = []
        rounds = 0

        if response.tool_calls:

            async def _dispatch(call: ToolCall) -> tuple[ToolCallLogEntry, ToolResult]:
                return await self._dispatch_tool(session, call.name, call.arguments)

            async def _record(
                asked: CompletionResponse, calls: list[ToolCall], results: list[ToolResult]
            ) -> None:
                await self._memory.add_turn(
                    session.id,
                    MemoryRole.ASSISTANT,
                    asked.content,
                    {"tool_calls": [{"id": c.id, "name": c.name, "input": c.arguments} for c in calls]},
                )
                for call, result in zip(calls, results):
                    await self._memory.add_turn(
                        session.id,
                        MemoryRole.TOOL,
                        tool_result_content(result),
                        {"tool_call_id": call.id, "tool_name": call.name, "is_error": not result.success},
                    )

            outcome = await run_tool_loop(
                self._gateway,
                request,
                response,
                dispatch=_dispatch,
                on_round=_record,
                max_rounds=self._config.max_tool_rounds,
            )
            response = outcome.response
            content = outcome.text
            usage = outcome.usage
            tool_calls = outcome.tool_calls
            rounds = outcome.rounds

        turn = session.add_turn(
            ConversationTurn(
                role=MessageRole.AGENT,
                content=content,
                metadata={
                    "source": "model",
                    "provider": response.provider,
                    "model": response.model,
                    "tool_rounds": rounds,
                    "usage": usage.to_dict(),
                },
                tool_call_ids=[e.id for e in tool_calls],
            )
        )
        await self._memory.add_turn(session.id, MemoryRole.ASSISTANT, content)
        await self._save(session)
        return await self._finish(session, text, turn, tool_calls, [])

    async def _process_with_stub(self, session: Session, text: str) -> ProcessMessageResult:
        reply = stub_reply(text)
        tool_calls: list[ToolCallLogEntry] = []
        if reply.simulated_tool:
            entry = ToolCallLogEntry(
                session_id=session.id, tool_name=reply.simulated_tool, input={"query": text}
            )
            entry.complete(ToolCallStatus.SUCCESS, output={"stub": True, "message": "Tool call simulated"})
            session.tool_call_log.append(entry)
            tool_calls.append(entry)

        turn = session.add_turn(
            ConversationTurn(
                role=MessageRole.AGENT,
                content=reply.content,
                metadata={"source": "stub", "degraded": True},
                tool_call_ids=[e.id for e in tool_calls],
            )
        )
        logger.info("stub_response", agent_id=session.agent_id, simulated_tool=reply.simulated_tool)
        await self._save(session)
        return await self._finish(session, text, turn, tool_calls, list(reply.suggested_actions))

    async def _finish(
        self,
        session: Session,
        text: str,
        turn: ConversationTurn,
        tool_calls: list[ToolCallLogEntry],
        suggestions: list[str],
    ) -> ProcessMessageResult:
        active = True
        keyword = self._escalation_keyword(session, text)
        if keyword:
            logger.info("escalation_keyword_detected", keyword=keyword)
            if TRANSFER_SUGGESTION not in suggestions:
                suggestions.append(TRANSFER_SUGGESTION)
            if self._config.keyword_escalation == "takeover":
                await self.request_human_takeover(session.id, reason=f"Escalation keyword: {keyword}")
                active = False

        return ProcessMessageResult(
            session_id=session.id,
            response=ResponseMessage(role=turn.role, content=turn.content, metadata=turn.metadata),
            tool_calls=tool_calls,
            suggested_actions=suggestions,
            session_active=active,
        )

    @staticmethod
    def _escalation_keyword(session: Session, text: str) -> str | None:
        if session.agent_instance is None:
            return None
        rules = session.agent_instance.definition.escalation
        return rules.matching_keyword(text) if rules else None

    # -- tools -----------------------------------------------------------

    async def _dispatch_tool(
        self, session: Session, tool_name: str, params: dict[str, Any]
    ) -> tuple[ToolCallLogEntry, ToolResult]:
        """Run one tool for ``session`` and log it. Failures come back as results."""
        entry = ToolCallLogEntry(session_id=session.id, tool_name=tool_name, input=dict(params))
        session.tool_call_log.append(entry)

        instance = session.agent_instance
        try:
            if instance is not None and tool_name not in instance.available_tools:
                result = ToolResult(
                    success=False,
                    error=f"Tool {tool_name} is not available to agent {instance.agent_id}",
                    metadata={"tool_name": tool_name, "forbidden": True},
                )
            else:
                context = ToolContext(
                    session_id=session.id,
                    user_id=session.user_id,
                    org_id=session.org_id,
                    permissions=await self._permissions.permissions_for(session.user_id),
                    metadata=dict(session.context),
                    agent_id=session.agent_id,
                    approval_required=(
                        instance.definition.constraints.requires_approval_for if instance else ()
                    ),
                )
                result = await self._executor.execute(tool_name, params, context)
        except Exception as e:
            logger.error("tool_dispatch_failed", tool_name=tool_name, session_id=session.id, error=str(e))
            result = ToolResult(
                success=False,
                error=str(e) or "Tool execution failed",
                metadata={"tool_name": tool_name, "error_code": ToolExecutionFailedError.error_code},
            )

        if result.success:
            entry.complete(ToolCallStatus.SUCCESS, output=result.data)
        else:
            entry.complete(ToolCallStatus.FAILED, error=result.error)

        session.add_turn(
            ConversationTurn(
                role=MessageRole.TOOL,
                content=tool_result_content(result),
                metadata={"tool_name": tool_name, "success": result.success},
                tool_call_ids=[entry.id],
            )
        )
        logger.info(
            "tool_call_logged",
            session_id=session.id,
            tool_name=tool_name,
            status=str(entry.status),
            duration_ms=entry.duration_ms,
        )
        return entry, result

    async def execute_tool_call(
        self, session_id: str, tool_name: str, params: dict[str, Any] | None = None
    ) -> ExecuteToolResult:
        """Run a tool directly against a session. Tool failures are returned, not raised.

        Raises:
            NotFoundError: unknown session.
            InvalidStateError: the session is not ACTIVE.
        """
        session = await self._require(session_id)
        if not session.is_active:
            raise InvalidStateError(f"Session {session_id} is not active ({session.status})")

        entry, result = await self._dispatch_tool(session, tool_name, params or {})
        await self._save(session)
        return ExecuteToolResult(
            success=result.success,
            tool_call_id=entry.id,
            result=result,
            error=result.error,
        )

    async def get_tool_call_log(self, session_id: str) -> list[ToolCallLogEntry]:
        session = await self._require(session_id)
        return list(session.tool_call_log)

    # -- handoff ---------------------------------------------------------

    async def request_human_takeover(
        self,
        session_id: str,
        reason: str | None = None,
        priority: str | None = None,
    ) -> HumanTakeoverResult:
        """Move the session to HUMAN_TAKEOVER and report its place in the queue.

        Raises:
            NotFoundError: unknown session.
            InvalidStateError: the session already ended.
        """
        session = await self._require(session_id)
        if session.status.is_terminal:
            raise InvalidStateError(f"Session {session_id} already {session.status}")

        session.status = SessionStatus.HUMAN_TAKEOVER
        session.add_turn(
            ConversationTurn(
                role=MessageRole.SYSTEM,
                content=f"Human takeover initiated. Reason: {reason or 'Not specified'}",
                metadata={"human_takeover": True, "reason": reason, "priority": priority},
            )
        )
        await self._memory.clear_context(session.id)
        await self._save(session)

        # Queue position is simulated until a live-agent queue is wired in
        position = self._rng.randint(1, 5)
        wait_seconds = position * 60
        logger.info(
            "human_takeover_requested",
            session_id=session.id,
            reason=reason,
            priority=priority,
            queue_position=position,
        )
        return HumanTakeoverResult(
            session_id=session.id,
            status=session.status,
            queue_position=position,
            estimated_wait_seconds=wait_seconds,
            message=self._takeover_message(reason, position, wait_seconds),
        )

    def _takeover_message(self, reason: str | None, position: int, wait_seconds: int) -> str:
        minutes = math.ceil(wait_seconds / 60)
        try:
            return self._renderer.render(
                "system.human-takeover",
                {
                    "reason": reason or "",
                    "queue_position": str(position),
                    "estimated_wait_minutes": str(minutes),
                },
            ).content
        except (NotFoundError, TemplateError) as e:
            logger.warning("takeover_template_unavailable", error=str(e))
            return (
                "I'm transferring you to a human agent. "
                f"You are number {position} in the queue, estimated wait {minutes} minute(s)."
            )

    async def _max_turns_handoff(self, session: Session) -> ProcessMessageResult:
        await self.request_human_takeover(session.id, reason="Max turns reached", priority="normal")
        return ProcessMessageResult(
            session_id=session.id,
            response=ResponseMessage(
                role=MessageRole.AGENT, content=MAX_TURNS_REPLY, metadata={"handoff": True}
            ),
            suggested_actions=["Wait for human agent"],
            session_active=False,
        )

    # -- history ---------------------------------------------------------

    async def get_history(
        self,
        session_id: str,
        page: int = 1,
        page_size: int = 50,
        include_tool_calls: bool = False,
    ) -> HistoryPage:
        """One page of the session transcript, oldest first."""
        session = await self._require(session_id)
        page = max(page, 1)
        page_size = max(page_size, 1)

        turns = session.conversation_history
        total = len(turns)
        window = turns[(page - 1) * page_size : page * page_size]
        entries = {e.id: e for e in session.tool_call_log}

        messages = [
            HistoryMessage(
                id=t.id,
                role=t.role,
                content=t.content,
                timestamp=t.timestamp,
                metadata=t.metadata,
                tool_calls=(
                    [_tool_call_view(entries[i]) for i in t.tool_call_ids if i in entries]
                    if include_tool_calls
                    else None
                ),
            )
            for t in window
        ]
        return HistoryPage(
            session=session,
            messages=messages,
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size),
        )

    # -- maintenance -----------------------------------------------------

    def is_model_available(self) -> bool:
        return self._gateway.is_healthy()

    async def expire_idle_sessions(self, idle_seconds: int, now: datetime | None = None) -> int:
        """Expire ACTIVE sessions idle for longer than ``idle_seconds``. Returns the count."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=idle_seconds)
        try:
            candidates = await self._store.list_session_ids(
                status=SessionStatus.ACTIVE, updated_before=cutoff
            )
        except Exception as e:
            logger.error("session_expiry_scan_failed", error=str(e))
            return 0

        expired = 0
        for session_id in candidates:
            session = await self._load(session_id)
            # The cached copy may be newer than the stored one
            if session is None or not session.is_active or session.updated_at >= cutoff:
                continue
            session.status = SessionStatus.EXPIRED
            session.ended_at = now
            session.add_turn(
                ConversationTurn(
                    role=MessageRole.SYSTEM,
                    content="Session expired after inactivity",
                    timestamp=now,
                    metadata={"session_expired": True},
                )
            )
            await self._memory.clear_context(session.id)
            await self._save(session)
            expired += 1

        if expired:
            logger.info("sessions_expired", count=expired, idle_seconds=idle_seconds)
        return expired

    async def summarize_session(self, session_id: str) -> str:
        """Condense the session's memory into a summary kept with its context.

        Raises:
            NotFoundError: no conversation context for the session.
        """
        context = await self._memory.get_context(session_id)
        if context is None:
            raise NotFoundError(f"No conversation context for session: {session_id}")

        async def _summarize(prompt: str) -> str:
            response = await self._gateway.complete(
                CompletionRequest(
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=512,
                    temperature=0.2,
                    metadata={"session_id": session_id, "purpose": "summary"},
                )
            )
            return response.content

        return await self._memory.summarize_conversation(context, _summarize)


def _tool_call_view(entry: ToolCallLogEntry) -> ToolCallView:
    return ToolCallView(
        id=entry.id,
        tool_name=entry.tool_name,
        status=entry.status,
        input=redact(entry.input),
        output=redact(entry.output),
        error=entry.error,
        executed_at=entry.started_at,
        duration_ms=entry.duration_ms,
    )
