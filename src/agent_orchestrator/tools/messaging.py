"""Outbound communication tools: SMS, email and phone calls."""

from __future__ import annotations

from typing import Any

from agent_orchestrator.core.collaborators import PolicyResolver
from agent_orchestrator.core.models import utcnow
from agent_orchestrator.core.types import ConsentType
from agent_orchestrator.log import get_logger
from agent_orchestrator.tools.base import Tool, ToolBackend, ToolContext

logger = get_logger(__name__)

_TEMPLATE_PROPERTIES: dict[str, Any] = {
    "templateId": {"type": "string", "description": "Message template to use"},
    "templateVars": {"type": "object", "additionalProperties": {"type": "string"}},
}


def _stub_id(prefix: str) -> str:
    return f"{prefix}_{int(utcnow().timestamp() * 1000)}_stub"


class SendSmsTool(Tool):
    required_permission = "sms:send"
    required_flag = "SMS_ENABLED"
    feature_label = "SMS"
    consent_type = ConsentType.TRANSACTIONAL_SMS
    consent_label = "SMS"

    @property
    def name(self) -> str:
        return "SmsTool.sendSms"

    @property
    def description(self) -> str:
        return "Send an SMS message (requires consent)"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "to": {"type": "string", "description": "Recipient phone number"},
                "message": {"type": "string"},
                **_TEMPLATE_PROPERTIES,
            },
            "required": ["to", "message"],
        }

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        return {"message_id": _stub_id("sms"), "status": "QUEUED"}


class SendEmailTool(Tool):
    required_permission = "email:send"
    required_flag = "EMAIL_ENABLED"
    feature_label = "Email"

    @property
    def name(self) -> str:
        return "EmailTool.sendEmail"

    @property
    def description(self) -> str:
        return "Send an email message"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "to": {"type": "string", "description": "Recipient email address"},
                "subject": {"type": "string"},
                "body": {"type": "string"},
                **_TEMPLATE_PROPERTIES,
            },
            "required": ["to", "subject", "body"],
        }

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        return {"message_id": _stub_id("email"), "status": "QUEUED"}


class InitiateCallTool(Tool):
    required_permission = "call:initiate"
    required_flag = "PHONE_AGENT_ENABLED"
    feature_label = "Phone agent"
    consent_label = "Call recording"

    def __init__(self, policies: PolicyResolver, backend: ToolBackend | None = None) -> None:
        super().__init__(backend)
        self._policies = policies

    @property
    def name(self) -> str:
        return "CallTool.initiateCall"

    @property
    def description(self) -> str:
        return "Initiate an outbound phone call"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "to": {"type": "string", "description": "Number to call"},
                "callbackUrl": {"type": "string"},
                "recordingEnabled": {"type": "boolean", "description": "Record the call"},
                "agentPrompt": {"type": "string", "description": "Instructions for the voice agent"},
            },
            "required": ["to"],
        }

    def consent_type_for(self, params: dict[str, Any]) -> ConsentType | None:
        return ConsentType.CALL_RECORDING if params.get("recordingEnabled") else None

    async def placeholder(self, params: dict[str, Any], context: ToolContext) -> Any:
        return {"call_id": _stub_id("call"), "status": "INITIATING"}

    async def annotate(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        mode = await self._policies.get_value("PHONE_AGENT_MODE", context.org_id)
        logger.debug("phone_agent_mode", mode=mode, session_id=context.session_id)
        return {"phone_agent_mode": mode}
