"""Agent definition and instance value objects."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from agent_orchestrator.core.types import AgentCategory


class OperatingHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str  # "08:00"
    end: str  # "18:00"
    timezone: str = "America/Toronto"


class AgentConstraints(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_initiate_outbound: bool = False
    can_access_pii: bool = False
    requires_approval_for: tuple[str, ...] = ()
    max_authorization_amount: Optional[float] = None
    operating_hours: Optional[OperatingHours] = None
    allowed_regions: tuple[str, ...] = ()


class LLMParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None


class EscalationRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger_keywords: tuple[str, ...] = ()
    sentiment_threshold: Optional[float] = None
    target_queue: Optional[str] = None

    def matching_keyword(self, text: str) -> str | None:
        """Return the first trigger keyword found in ``text`` (case-insensitive)."""
        lowered = text.lower()
        for keyword in self.trigger_keywords:
            # a blank keyword would match every message
            if keyword.strip() and keyword.lower() in lowered:
                return keyword
        return None


class AgentDefinition(BaseModel):
    """Reusable behavioral template for an agent. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: AgentCategory
    prompt_key: str
    allowed_skills: tuple[str, ...] = ()
    allowed_tools: tuple[str, ...] = ()
    required_flags: tuple[str, ...] = ()
    required_permissions: tuple[str, ...] = ()
    max_turns: Optional[int] = None
    constraints: AgentConstraints = Field(default_factory=AgentConstraints)
    llm: LLMParams = Field(default_factory=LLMParams)
    escalation: Optional[EscalationRules] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AgentInstance(BaseModel):
    """Session-bound resolution of an ``AgentDefinition``."""

    model_config = ConfigDict(frozen=True)

    definition: AgentDefinition
    session_id: str
    system_prompt: str
    available_tools: tuple[str, ...] = ()
    available_skills: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def agent_id(self) -> str:
        return self.definition.id
