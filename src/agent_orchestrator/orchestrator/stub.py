"""Canned replies used when no model is reachable."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class StubReply:
    content: str
    suggested_actions: list[str] = field(default_factory=list)
    # Tool whose call is simulated and logged alongside the reply
    simulated_tool: Optional[str] = None


def stub_reply(text: str) -> StubReply:
    lowered = text.lower()
    if "book" in lowered:
        return StubReply(
            content="I can help you book an appointment. Let me check available time slots for you.",
            suggested_actions=["View available slots", "Specify preferred time", "Choose a different date"],
            simulated_tool="BookingTool.getSlots",
        )
    if "dispatch" in lowered:
        return StubReply(
            content="I can initiate a dispatch to find available pros in your area.",
            suggested_actions=["Start dispatch", "Check existing dispatches", "Specify requirements"],
        )
    if "human" in lowered or "agent" in lowered:
        return StubReply(
            content="I understand you would like to speak with a human agent. I can transfer you now.",
            suggested_actions=["Transfer to human", "Continue with AI"],
        )

    preview = text if len(text) <= 50 else f"{text[:50]}..."
    return StubReply(
        content=(
            f'I received your message: "{preview}". '
            "Our assistant is running in limited mode right now, so I can only help "
            "with bookings, dispatch requests, or connecting you to a person."
        ),
        suggested_actions=["Book an appointment", "Request dispatch", "Talk to human agent"],
    )
