"""Shared test fixtures and helpers."""

from __future__ import annotations

import itertools
import random
from typing import Any, AsyncIterator, Optional

import pytest

from agent_orchestrator.agents.catalog import AgentCatalog
from agent_orchestrator.automation.approval import ApprovalQueue
from agent_orchestrator.config import (
    ANONYMOUS_PERMISSIONS,
    AUTHENTICATED_PERMISSIONS,
    DEFAULT_FLAGS,
    LLMConfig,
    MemoryConfig,
    OrchestratorConfig,
    ProviderConfig,
)
from agent_orchestrator.core.collaborators import (
    InMemoryCache,
    InMemoryConsentStore,
    StaticFlagEvaluator,
    StaticPermissionResolver,
    StaticPolicyResolver,
)
from agent_orchestrator.llm.gateway import ModelGateway
from agent_orchestrator.llm.providers import LLMProvider
from agent_orchestrator.llm.types import (
    CompletionRequest,
    CompletionResponse,
    StopReason,
    StreamEvent,
    TokenUsage,
    ToolCall,
)
from agent_orchestrator.memory.conversation import ConversationMemory
from agent_orchestrator.orchestrator.service import SessionOrchestrator
from agent_orchestrator.prompts.renderer import PromptRenderer
from agent_orchestrator.storage.database import Database
from agent_orchestrator.storage.session_store import SqliteSessionStore
from agent_orchestrator.tools.executor import ToolExecutor
from agent_orchestrator.tools.registry import ToolRegistry

_ids = itertools.count(1)


def text_response(text: str, provider: str = "fake", model: str = "fake-model") -> CompletionResponse:
    """A final completion with no tool use."""
    return CompletionResponse(
        id=f"msg_{next(_ids)}",
        model=model,
        content=text,
        provider=provider,
        content_blocks=[{"type": "text", "text": text}] if text else [],
        usage=TokenUsage(input_tokens=10, output_tokens=5),
    )


def tool_response(*calls: tuple[str, dict[str, Any]], text: str = "") -> CompletionResponse:
    """A completion asking for the given ``(tool_name, arguments)`` calls."""
    tool_calls = [ToolCall(id=f"toolu_{next(_ids)}", name=n, arguments=a) for n, a in calls]
    blocks: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    blocks.extend({"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments} for c in tool_calls)
    return CompletionResponse(
        id=f"msg_{next(_ids)}",
        model="fake-model",
        content=text,
        provider="fake",
        stop_reason=StopReason.TOOL_USE,
        tool_calls=tool_calls,
        content_blocks=blocks,
        usage=TokenUsage(input_tokens=10, output_tokens=5),
    )


class FakeProvider(LLMProvider):
    """Scripted provider: returns queued responses in order, recording each request.

    When the queue runs dry the last response is repeated.
    """

    def __init__(
        self,
        responses: Optional[list[CompletionResponse]] = None,
        name: str = "fake",
        error: Optional[Exception] = None,
        available: bool = True,
    ):
        self.name = name
        self.responses = list(responses or [text_response("Hello from the model")])
        self.error = error
        self.available = available
        self.requests: list[CompletionRequest] = []

    @property
    def is_available(self) -> bool:
        return self.available

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        if self.error is not None:
            yield StreamEvent(type="error", error=str(self.error))
            return
        yield StreamEvent(type="message_start")
        yield StreamEvent(type="text_delta", index=0, delta={"text": self.responses[0].content})
        yield StreamEvent(type="message_stop")


def llm_config(**overrides: Any) -> LLMConfig:
    values: dict[str, Any] = {
        "anthropic": ProviderConfig(model="claude-test"),
        "openai": ProviderConfig(model="gpt-test"),
        "fallback_enabled": False,
        "streaming_enabled": True,
        "timeout_seconds": 5.0,
    }
    values.update(overrides)
    return LLMConfig(**values)


@pytest.fixture
def flags():
    return StaticFlagEvaluator(dict(DEFAULT_FLAGS))


@pytest.fixture
def policies():
    return StaticPolicyResolver({"PHONE_AGENT_MODE": "ASSIST"})


@pytest.fixture
def permissions():
    return StaticPermissionResolver(ANONYMOUS_PERMISSIONS, AUTHENTICATED_PERMISSIONS)


@pytest.fixture
def consent():
    return InMemoryConsentStore()


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
async def db():
    database = Database(":memory:")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def store(db):
    return SqliteSessionStore(db)


@pytest.fixture
def renderer():
    return PromptRenderer()


@pytest.fixture
def catalog(flags, renderer):
    return AgentCatalog(flags, renderer)


@pytest.fixture
def registry(policies):
    reg = ToolRegistry()
    reg.register_builtin(policies)
    return reg


@pytest.fixture
def approvals():
    return ApprovalQueue()


@pytest.fixture
def executor(registry, flags, consent, approvals):
    return ToolExecutor(registry, flags, consent, approvals)


@pytest.fixture
def memory(cache, store):
    return ConversationMemory(cache, store, MemoryConfig())


@pytest.fixture
def make_orchestrator(
    catalog, memory, executor, renderer, cache, store, flags, policies, permissions
):
    """Factory: orchestrator over a gateway built from the given providers."""

    def _make(
        primary: Optional[LLMProvider] = None,
        fallback: Optional[LLMProvider] = None,
        config: Optional[OrchestratorConfig] = None,
        llm: Optional[LLMConfig] = None,
    ) -> SessionOrchestrator:
        gateway = ModelGateway(
            llm or llm_config(fallback_enabled=fallback is not None),
            flags,
            primary=primary,
            fallback=fallback,
        )
        return SessionOrchestrator(
            catalog=catalog,
            memory=memory,
            gateway=gateway,
            executor=executor,
            renderer=renderer,
            cache=cache,
            store=store,
            flags=flags,
            policies=policies,
            permissions=permissions,
            config=config,
            rng=random.Random(7),
        )

    return _make
