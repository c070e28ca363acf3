"""Dispatch tools: start a dispatch and check its progress."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from agent_orchestrator.core.models import utcnow
from agent_orchestrator.tools.base import Tool, ToolContext


class InitiateDispatchTool(Tool):
    required_permission = "dispatch:create"
    required_flag = "DISPATCH_ENABLED"
    feature_label = "Dispatch"

    @property
    def name(self) -> str:
        return "DispatchTool.initiateDispatch"

    @property
    def description(self) -> str:
        return "Initiate a dispatch process to find available pros"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "jobId": {"type": "string", "description": "Job to dispatch"},
                "urgency": {"type": "string", "enum": ["LOW", "NORMAL", "HIGH", "EMERGENCY"]},
                "preferredProIds": {"type": "array", "items": {"type": "string"}},
                "radiusKm": {"type": "number", "description": "Search radius in kilometres"},
            },
            "required": ["jobId"],
        }

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        now = utcnow()
        return {
            "dispatch_id": f"dispatch_{int(now.timestamp() * 1000)}_stub",
            "status": "PENDING",
            "attempts": 0,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }


class CheckDispatchStatusTool(Tool):
    required_permission = "dispatch:read"

    @property
    def name(self) -> str:
        return "DispatchTool.checkStatus"

    @property
    def description(self) -> str:
        return "Check the status of a dispatch"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "dispatchId": {"type": "string", "description": "Dispatch to look up"},
            },
            "required": ["dispatchId"],
        }

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        now = utcnow()
        return {
            "dispatch_id": params.get("dispatchId"),
            "status": "IN_PROGRESS",
            "attempts": 2,
            "created_at": (now - timedelta(minutes=5)).isoformat(),
            "updated_at": now.isoformat(),
        }
