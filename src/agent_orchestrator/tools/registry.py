"""Tool registry: name -> Tool table."""

from __future__ import annotations

from agent_orchestrator.core.collaborators import PolicyResolver
from agent_orchestrator.log import get_logger
from agent_orchestrator.tools.base import Tool, ToolBackend

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name, stub=tool.is_stub)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_tools_by_names(self, names: list[str] | tuple[str, ...]) -> list[Tool]:
        """Get a subset of tools by name list. Unknown names are skipped."""
        return [self._tools[n] for n in names if n in self._tools]

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def register_builtin(
        self,
        policies: PolicyResolver,
        backends: dict[str, ToolBackend] | None = None,
    ) -> None:
        """Register the built-in tools, wiring any backends given by tool name."""
        from agent_orchestrator.tools.booking import CreateBookingTool, GetSlotsTool
        from agent_orchestrator.tools.calendar import CheckAvailabilityTool
        from agent_orchestrator.tools.dispatch import CheckDispatchStatusTool, InitiateDispatchTool
        from agent_orchestrator.tools.messaging import InitiateCallTool, SendEmailTool, SendSmsTool

        backends = backends or {}
        self.register(CreateBookingTool(backends.get("BookingTool.createBooking")))
        self.register(GetSlotsTool(backends.get("BookingTool.getSlots")))
        self.register(InitiateDispatchTool(backends.get("DispatchTool.initiateDispatch")))
        self.register(CheckDispatchStatusTool(backends.get("DispatchTool.checkStatus")))
        self.register(SendSmsTool(backends.get("SmsTool.sendSms")))
        self.register(SendEmailTool(backends.get("EmailTool.sendEmail")))
        self.register(InitiateCallTool(policies, backends.get("CallTool.initiateCall")))
        self.register(CheckAvailabilityTool(backends.get("CalendarTool.checkAvailability")))
