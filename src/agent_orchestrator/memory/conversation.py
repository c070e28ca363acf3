"""Conversation memory: bounded, model-ready history per session.

The live context sits in the ephemeral cache; every turn is also appended
to the durable store so a context can be rebuilt after cache eviction.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from agent_orchestrator.config import MemoryConfig
from agent_orchestrator.core.models import new_id, utcnow
from agent_orchestrator.core.types import MemoryRole
from agent_orchestrator.log import get_logger

if TYPE_CHECKING:
    from agent_orchestrator.core.collaborators import Cache, SessionStore

logger = get_logger(__name__)

CACHE_PREFIX = "agent:session:"
CHARS_PER_TOKEN = 4

Summarizer = Callable[[str], Awaitable[str]]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def turn_tokens(turn: MemoryTurn) -> int:
    """Cost of a turn as sent to the model, tool_use inputs included."""
    cost = estimate_tokens(turn.content)
    for call in turn.metadata.get("tool_calls") or []:
        cost += estimate_tokens(json.dumps(call.get("input") or {}))
    return cost


@dataclass
class MemoryTurn:
    role: MemoryRole
    content: str
    id: str = field(default_factory=lambda: new_id("turn"))
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.role = MemoryRole(self.role)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": str(self.role),
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryTurn:
        return cls(
            id=data["id"],
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ConversationContext:
    session_id: str
    agent_type: str
    system_prompt: str
    turns: list[MemoryTurn] = field(default_factory=list)
    summary: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent_type": self.agent_type,
            "system_prompt": self.system_prompt,
            "turns": [t.to_dict() for t in self.turns],
            "summary": self.summary,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationContext:
        return cls(
            session_id=data["session_id"],
            agent_type=data["agent_type"],
            system_prompt=data.get("system_prompt") or "",
            turns=[MemoryTurn.from_dict(t) for t in data.get("turns") or []],
            summary=data.get("summary"),
            metadata=data.get("metadata") or {},
        )


class ConversationMemory:
    """Per-session conversation context over a cache and a durable store."""

    def __init__(self, cache: Cache, store: SessionStore, config: MemoryConfig | None = None):
        self._cache = cache
        self._store = store
        self._config = config or MemoryConfig()

    @property
    def config(self) -> MemoryConfig:
        return self._config

    async def initialize_context(
        self,
        session_id: str,
        agent_type: str,
        system_prompt: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationContext:
        context = ConversationContext(
            session_id=session_id,
            agent_type=agent_type,
            system_prompt=system_prompt,
            metadata=dict(metadata or {}),
        )
        await self._cache_put(context)
        logger.debug("memory_context_initialized", session_id=session_id, agent_type=agent_type)
        return context

    async def get_context(
        self, session_id: str, config: MemoryConfig | None = None
    ) -> ConversationContext | None:
        """Cached context, else one rebuilt from the durable store, trimmed to budget."""
        context: ConversationContext | None = None
        try:
            cached = await self._cache.get(CACHE_PREFIX + session_id)
            if cached:
                context = ConversationContext.from_dict(cached)
        except Exception as e:
            logger.warning("memory_cache_read_failed", session_id=session_id, error=str(e))

        if context is None:
            context = await self._rebuild_from_store(session_id)
            if context is None:
                return None
            await self._cache_put(context)

        return self.trim(context, config or self._config)

    async def _rebuild_from_store(self, session_id: str) -> ConversationContext | None:
        try:
            session = await self._store.get_session(session_id)
            if session is None:
                return None
            turns = await self._store.list_turns(session_id)
        except Exception as e:
            logger.warning("memory_store_read_failed", session_id=session_id, error=str(e))
            return None

        instance = session.agent_instance
        return ConversationContext(
            session_id=session_id,
            agent_type=session.agent_id or str(session.session_type),
            system_prompt=instance.system_prompt if instance else "",
            turns=turns,
        )

    async def add_turn(
        self,
        session_id: str,
        role: MemoryRole | str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryTurn:
        """Append a turn. Cache and store writes are independent and best effort."""
        turn = MemoryTurn(role=role, content=content, metadata=dict(metadata or {}))

        context = await self.get_context(session_id)
        if context is not None:
            context.turns.append(turn)
            await self._cache_put(context)
            if (
                self._config.enable_summarization
                and len(context.turns) >= self._config.summarization_threshold
            ):
                logger.info(
                    "memory_summarization_suggested",
                    session_id=session_id,
                    turns=len(context.turns),
                )

        try:
            await self._store.append_turn(session_id, turn)
        except Exception as e:
            logger.warning("memory_store_write_failed", session_id=session_id, error=str(e))

        return turn

    def trim(self, context: ConversationContext, config: MemoryConfig | None = None) -> ConversationContext:
        """Keep the newest turns that fit the turn cap and the token budget.

        The budget starts with the system prompt's cost and walks backward from
        the newest turn, stopping at the first turn that does not fit. A turn
        costs its text plus the inputs of any tool calls it made. The kept
        window always opens on a user turn.
        """
        config = config or self._config
        turns = context.turns
        if len(turns) > config.max_turns:
            turns = turns[-config.max_turns :]

        used = estimate_tokens(context.system_prompt)
        kept: list[MemoryTurn] = []
        for turn in reversed(turns):
            cost = turn_tokens(turn)
            if used + cost > config.max_context_tokens:
                break
            used += cost
            kept.append(turn)
        kept.reverse()

        # Providers reject a transcript that opens with an assistant or tool turn
        start = next((i for i, t in enumerate(kept) if t.role == MemoryRole.USER), len(kept))
        return replace(context, turns=kept[start:])

    def format_for_model(self, context: ConversationContext) -> list[dict[str, Any]]:
        """Convert memory turns to provider messages.

        Consecutive tool turns become one ``user`` message of ``tool_result``
        blocks. Assistant turns that requested tools carry their ``tool_use``
        blocks. System turns are left to the system prompt.
        """
        messages: list[dict[str, Any]] = []
        turns = context.turns
        i = 0

        while i < len(turns):
            turn = turns[i]

            if turn.role == MemoryRole.USER:
                messages.append({"role": "user", "content": turn.content})
                i += 1

            elif turn.role == MemoryRole.ASSISTANT:
                tool_calls = turn.metadata.get("tool_calls") or []
                if tool_calls:
                    blocks: list[dict[str, Any]] = []
                    if turn.content:
                        blocks.append({"type": "text", "text": turn.content})
                    for call in tool_calls:
                        blocks.append(
                            {
                                "type": "tool_use",
                                "id": call["id"],
                                "name": call["name"],
                                "input": call.get("input") or {},
                            }
                        )
                    messages.append({"role": "assistant", "content": blocks})
                else:
                    messages.append({"role": "assistant", "content": turn.content})
                i += 1

            elif turn.role == MemoryRole.TOOL:
                results: list[dict[str, Any]] = []
                while i < len(turns) and turns[i].role == MemoryRole.TOOL:
                    meta = turns[i].metadata
                    results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": meta.get("tool_call_id") or turns[i].id,
                            "content": turns[i].content,
                            "is_error": bool(meta.get("is_error", False)),
                        }
                    )
                    i += 1
                # A result whose tool_use was trimmed away would be rejected
                if any(m["role"] == "assistant" for m in messages):
                    messages.append({"role": "user", "content": results})

            else:
                i += 1

        return messages

    def get_system_prompt(self, context: ConversationContext) -> str:
        if context.summary:
            return (
                f"{context.system_prompt}\n\n## Previous Conversation Summary\n{context.summary}"
            )
        return context.system_prompt

    async def clear_context(self, session_id: str) -> None:
        """Drop the live context. Durable turns are kept."""
        try:
            await self._cache.delete(CACHE_PREFIX + session_id)
        except Exception as e:
            logger.warning("memory_cache_delete_failed", session_id=session_id, error=str(e))
        logger.debug("memory_context_cleared", session_id=session_id)

    async def summarize_conversation(
        self, context: ConversationContext, summarizer: Summarizer
    ) -> str:
        """Summarize the context with ``summarizer`` and keep the result on it.

        Returns an empty string if summarization fails.
        """
        transcript = "\n".join(
            f"{turn.role}: {turn.content}"
            for turn in context.turns
            if turn.role in (MemoryRole.USER, MemoryRole.ASSISTANT)
        )
        prompt = (
            "Summarize the following conversation in a few sentences. "
            "Keep names, dates, job details and any commitments made.\n\n"
            f"{transcript}"
        )
        try:
            summary = (await summarizer(prompt)).strip()
        except Exception as e:
            logger.warning("memory_summarization_failed", session_id=context.session_id, error=str(e))
            return ""

        context.summary = summary
        await self._cache_put(context)
        logger.info("memory_summarized", session_id=context.session_id, chars=len(summary))
        return summary

    def get_stats(self, context: ConversationContext) -> dict[str, Any]:
        by_role: dict[str, int] = {}
        for turn in context.turns:
            by_role[str(turn.role)] = by_role.get(str(turn.role), 0) + 1
        return {
            "session_id": context.session_id,
            "turn_count": len(context.turns),
            "turns_by_role": by_role,
            "estimated_tokens": estimate_tokens(self.get_system_prompt(context))
            + sum(turn_tokens(t) for t in context.turns),
            "has_summary": bool(context.summary),
            "first_turn_at": context.turns[0].timestamp.isoformat() if context.turns else None,
            "last_turn_at": context.turns[-1].timestamp.isoformat() if context.turns else None,
        }

    def export_conversation(self, context: ConversationContext) -> dict[str, Any]:
        data = context.to_dict()
        data["exported_at"] = utcnow().isoformat()
        return data

    async def _cache_put(self, context: ConversationContext) -> None:
        try:
            await self._cache.set(
                CACHE_PREFIX + context.session_id,
                context.to_dict(),
                self._config.cache_ttl_seconds,
            )
        except Exception as e:
            logger.warning("memory_cache_write_failed", session_id=context.session_id, error=str(e))
