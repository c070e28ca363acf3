"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from agent_orchestrator.core.types import ConsentType


@dataclass
class ToolContext:
    """Who is calling a tool, on behalf of which session."""

    session_id: str
    user_id: Optional[str] = None
    org_id: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    approval_required: tuple[str, ...] = ()

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions or "*" in self.permissions


# Business operation behind a tool: (params, context) -> data
ToolBackend = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


class Tool(ABC):
    """Base class for all model-callable tools.

    Gate metadata is declared as class attributes and enforced by
    ``ToolExecutor``; subclasses only describe themselves and produce data.
    """

    required_permission: str = ""
    required_flag: str | None = None
    # Used in "<feature_label> feature is not enabled"
    feature_label: str = ""
    consent_type: ConsentType | None = None
    # Used in "<consent_label> consent not granted: <reason>"
    consent_label: str = ""
    # Parameter holding the contact the consent check is keyed on
    contact_param: str = "to"

    def __init__(self, backend: ToolBackend | None = None) -> None:
        self._backend = backend

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name, e.g. ``BookingTool.createBooking``."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @property
    def is_stub(self) -> bool:
        return self._backend is None

    def consent_type_for(self, params: dict[str, Any]) -> ConsentType | None:
        """Consent needed for this particular call, if any."""
        return self.consent_type

    async def run(self, params: dict[str, Any], context: ToolContext) -> Any:
        """Produce the tool's data through the backend, or placeholder data without one."""
        if self._backend is not None:
            return await self._backend(params, context)
        return await self.placeholder(params, context)

    @abstractmethod
    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        """Stand-in data used when no backend is wired."""
        ...

    async def annotate(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        """Extra result metadata for a successful call."""
        return {}

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
