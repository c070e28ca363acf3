"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class SessionType(StrEnum):
    PHONE = "PHONE"
    BOOKING = "BOOKING"
    SUPPORT = "SUPPORT"
    DISPATCH = "DISPATCH"


class SessionStatus(StrEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    HUMAN_TAKEOVER = "HUMAN_TAKEOVER"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.EXPIRED)


class MessageRole(StrEnum):
    USER = "USER"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"
    TOOL = "TOOL"


class MemoryRole(StrEnum):
    """Roles as stored in conversation memory (provider vocabulary)."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ToolCallStatus(StrEnum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class AgentCategory(StrEnum):
    CUSTOMER_FACING = "CUSTOMER_FACING"
    CONTRACTOR_FACING = "CONTRACTOR_FACING"
    OPERATIONS = "OPERATIONS"
    ADMIN = "ADMIN"


class ConsentType(StrEnum):
    TRANSACTIONAL_SMS = "TRANSACTIONAL_SMS"
    MARKETING_SMS = "MARKETING_SMS"
    CALL_RECORDING = "CALL_RECORDING"
    EMAIL = "EMAIL"
