"""Session state and the plain records exchanged at the orchestrator boundary."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from agent_orchestrator.agents.models import AgentInstance
from agent_orchestrator.core.errors import InvalidStateError
from agent_orchestrator.core.types import MessageRole, SessionStatus, ToolCallStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ConversationTurn:
    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: new_id("turn"))
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)
    tool_call_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": str(self.role),
            "content": self.content,
            "timestamp": _iso(self.timestamp),
            "metadata": self.metadata,
            "tool_call_ids": list(self.tool_call_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationTurn:
        return cls(
            id=data["id"],
            role=MessageRole(data["role"]),
            content=data["content"],
            timestamp=_parse(data["timestamp"]) or utcnow(),
            metadata=data.get("metadata") or {},
            tool_call_ids=list(data.get("tool_call_ids") or []),
        )


@dataclass
class ToolCallLogEntry:
    session_id: str
    tool_name: str
    input: dict[str, Any]
    id: str = field(default_factory=lambda: new_id("toolcall"))
    status: ToolCallStatus = ToolCallStatus.PENDING
    output: Any = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    def complete(
        self,
        status: ToolCallStatus,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        """Move the entry to its terminal status. Allowed exactly once."""
        if self.status != ToolCallStatus.PENDING:
            raise InvalidStateError(f"Tool call {self.id} already {self.status}")
        if status == ToolCallStatus.PENDING:
            raise ValueError("Terminal status required")
        self.status = status
        self.output = output
        self.error = error
        self.completed_at = utcnow()
        self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "status": str(self.status),
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallLogEntry:
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            tool_name=data["tool_name"],
            status=ToolCallStatus(data["status"]),
            input=data.get("input") or {},
            output=data.get("output"),
            error=data.get("error"),
            started_at=_parse(data["started_at"]) or utcnow(),
            completed_at=_parse(data.get("completed_at")),
            duration_ms=data.get("duration_ms"),
        )


@dataclass
class Session:
    session_type: str
    id: str = field(default_factory=lambda: new_id("session"))
    status: SessionStatus = SessionStatus.ACTIVE
    user_id: Optional[str] = None
    org_id: Optional[str] = None
    agent_id: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)
    conversation_history: list[ConversationTurn] = field(default_factory=list)
    tool_call_log: list[ToolCallLogEntry] = field(default_factory=list)
    turn_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    agent_instance: Optional[AgentInstance] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def max_turns(self) -> int | None:
        if self.agent_instance is None:
            return None
        return self.agent_instance.definition.max_turns

    def add_turn(self, turn: ConversationTurn) -> ConversationTurn:
        self.conversation_history.append(turn)
        self.updated_at = turn.timestamp
        return turn

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_type": str(self.session_type),
            "status": str(self.status),
            "user_id": self.user_id,
            "org_id": self.org_id,
            "agent_id": self.agent_id,
            "context": self.context,
            "conversation_history": [t.to_dict() for t in self.conversation_history],
            "tool_call_log": [e.to_dict() for e in self.tool_call_log],
            "turn_count": self.turn_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "ended_at": _iso(self.ended_at),
            "agent_instance": (
                self.agent_instance.model_dump(mode="json") if self.agent_instance else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        instance = data.get("agent_instance")
        return cls(
            id=data["id"],
            session_type=data["session_type"],
            status=SessionStatus(data["status"]),
            user_id=data.get("user_id"),
            org_id=data.get("org_id"),
            agent_id=data.get("agent_id"),
            context=data.get("context") or {},
            conversation_history=[
                ConversationTurn.from_dict(t) for t in data.get("conversation_history") or []
            ],
            tool_call_log=[ToolCallLogEntry.from_dict(e) for e in data.get("tool_call_log") or []],
            turn_count=data.get("turn_count", 0),
            created_at=_parse(data["created_at"]) or utcnow(),
            updated_at=_parse(data["updated_at"]) or utcnow(),
            ended_at=_parse(data.get("ended_at")),
            agent_instance=AgentInstance.model_validate(instance) if instance else None,
        )


@dataclass
class ToolResult:
    """Normalized outcome of a tool execution. Failures are data, not exceptions."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class ResponseMessage:
    role: MessageRole
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessMessageResult:
    session_id: str
    response: ResponseMessage
    tool_calls: list[ToolCallLogEntry] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)
    session_active: bool = True


@dataclass
class ExecuteToolResult:
    success: bool
    tool_call_id: str
    result: ToolResult
    error: Optional[str] = None


@dataclass
class HumanTakeoverResult:
    session_id: str
    status: SessionStatus
    queue_position: int
    estimated_wait_seconds: int
    message: str


@dataclass
class ToolCallView:
    """Tool call as shown in history, with sensitive fields redacted."""

    id: str
    tool_name: str
    status: ToolCallStatus
    input: dict[str, Any]
    output: Any
    error: Optional[str]
    executed_at: datetime
    duration_ms: Optional[int]


@dataclass
class HistoryMessage:
    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    tool_calls: Optional[list[ToolCallView]] = None


@dataclass
class HistoryPage:
    session: Session
    messages: list[HistoryMessage]
    page: int
    page_size: int
    total: int
    total_pages: int
