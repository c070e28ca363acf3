"""Calendar availability tool."""

from __future__ import annotations

from typing import Any

from agent_orchestrator.prompts.renderer import DEFAULT_TIMEZONE
from agent_orchestrator.tools.base import Tool, ToolContext
from agent_orchestrator.tools.booking import AVAILABILITY_SCHEMA, make_slot, parse_start_date


class CheckAvailabilityTool(Tool):
    required_permission = "calendar:read"
    required_flag = "BOOKING_ENABLED"
    feature_label = "Booking/Calendar"

    @property
    def name(self) -> str:
        return "CalendarTool.checkAvailability"

    @property
    def description(self) -> str:
        return "Check availability for a pro"

    @property
    def input_schema(self) -> dict[str, Any]:
        return AVAILABILITY_SCHEMA

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        day = parse_start_date(params.get("startDate"))
        pro = params.get("proProfileId")
        return {
            "pro_profile_id": pro,
            "slots": [
                make_slot("avail_1_stub", day, 8, 10, pro),
                make_slot("avail_2_stub", day, 13, 17, pro),
            ],
            "timezone": DEFAULT_TIMEZONE,
        }
