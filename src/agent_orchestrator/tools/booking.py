"""Booking tools: slot lookup and booking creation."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from agent_orchestrator.core.models import utcnow
from agent_orchestrator.tools.base import Tool, ToolContext


def parse_start_date(value: Any) -> datetime:
    """Midnight of the requested day, or of today when the value is missing or unparseable."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            parsed = utcnow()
    elif isinstance(value, datetime):
        parsed = value
    else:
        parsed = utcnow()
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


def make_slot(slot_id: str, day: datetime, start_hour: int, end_hour: int, pro_profile_id: Any) -> dict[str, Any]:
    return {
        "id": slot_id,
        "start_time": (day + timedelta(hours=start_hour)).isoformat(),
        "end_time": (day + timedelta(hours=end_hour)).isoformat(),
        "available": True,
        "pro_profile_id": pro_profile_id,
    }


AVAILABILITY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "proProfileId": {"type": "string", "description": "Service professional profile id"},
        "startDate": {"type": "string", "description": "First day to search (ISO 8601)"},
        "endDate": {"type": "string", "description": "Last day to search (ISO 8601)"},
        "durationMinutes": {"type": "integer", "description": "Required slot length"},
    },
    "required": ["proProfileId", "startDate"],
}


class CreateBookingTool(Tool):
    required_permission = "booking:create"
    required_flag = "BOOKING_ENABLED"
    feature_label = "Booking"

    @property
    def name(self) -> str:
        return "BookingTool.createBooking"

    @property
    def description(self) -> str:
        return "Create a new booking for a job with a pro"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "jobId": {"type": "string", "description": "Job to book"},
                "proProfileId": {"type": "string", "description": "Pro to book with"},
                "slotId": {"type": "string", "description": "Slot returned by getSlots"},
                "startTime": {"type": "string", "description": "Start time (ISO 8601)"},
                "endTime": {"type": "string", "description": "End time (ISO 8601)"},
                "notes": {"type": "string"},
            },
            "required": ["jobId", "proProfileId"],
        }

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        now = utcnow()
        return {
            "booking_id": f"booking_{int(now.timestamp() * 1000)}_stub",
            "status": "PENDING_CONFIRMATION",
            "scheduled_time": params.get("startTime") or now.isoformat(),
            "confirmation_sent": False,
        }


class GetSlotsTool(Tool):
    required_permission = "booking:read"
    required_flag = "BOOKING_ENABLED"
    feature_label = "Booking"

    @property
    def name(self) -> str:
        return "BookingTool.getSlots"

    @property
    def description(self) -> str:
        return "Get available booking slots for a pro"

    @property
    def input_schema(self) -> dict[str, Any]:
        return AVAILABILITY_SCHEMA

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        day = parse_start_date(params.get("startDate"))
        pro = params.get("proProfileId")
        return [
            make_slot("slot_1_stub", day, 9, 11, pro),
            make_slot("slot_2_stub", day, 14, 16, pro),
        ]
