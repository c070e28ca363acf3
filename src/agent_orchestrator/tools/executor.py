"""Gated tool execution: permission, flag, consent and approval checks around each call."""

from __future__ import annotations

import time
from typing import Any

from agent_orchestrator.automation.approval import ApprovalQueue
from agent_orchestrator.core.collaborators import ConsentCheck, ConsentStore, FlagEvaluator
from agent_orchestrator.core.errors import (
    ConsentRequiredError,
    ForbiddenError,
    NotEnabledError,
    UnknownToolError,
)
from agent_orchestrator.core.models import ToolResult
from agent_orchestrator.core.types import ConsentType
from agent_orchestrator.log import get_logger
from agent_orchestrator.tools.base import Tool, ToolContext
from agent_orchestrator.tools.registry import ToolRegistry

logger = get_logger(__name__)


class ToolExecutor:
    """Runs registered tools. Never raises: every outcome is a ``ToolResult``."""

    def __init__(
        self,
        registry: ToolRegistry,
        flags: FlagEvaluator,
        consent: ConsentStore,
        approvals: ApprovalQueue | None = None,
    ):
        self._registry = registry
        self._flags = flags
        self._consent = consent
        self._approvals = approvals

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def execute(self, name: str, params: dict[str, Any], context: ToolContext) -> ToolResult:
        started = time.monotonic()

        def _failure(error: str, **extra: Any) -> ToolResult:
            return ToolResult(
                success=False,
                error=error,
                metadata={
                    "execution_time_ms": int((time.monotonic() - started) * 1000),
                    "tool_name": name,
                    **extra,
                },
            )

        tool = self._registry.get(name)
        if tool is None:
            logger.warning("tool_unknown", tool_name=name, session_id=context.session_id)
            return _failure(f"Unknown tool: {name}", error_code=UnknownToolError.error_code)

        logger.debug("tool_called", tool_name=name, session_id=context.session_id)
        try:
            self._ensure_permission(tool, context)

            if tool.required_flag and not await self._flag_enabled(tool.required_flag, context):
                return _failure(
                    f"{tool.feature_label} feature is not enabled",
                    error_code=NotEnabledError.error_code,
                )

            consent_type = tool.consent_type_for(params)
            if consent_type is not None:
                contact = str(params.get(tool.contact_param) or "")
                check = await self._check_consent(contact, consent_type)
                if not check.granted:
                    logger.info("tool_consent_missing", tool_name=name, consent_type=str(consent_type))
                    return _failure(
                        f"{tool.consent_label} consent not granted: {check.reason}",
                        consent_required=True,
                        error_code=ConsentRequiredError.error_code,
                    )

            if self._approvals is not None and name in context.approval_required:
                approved = self._approvals.consume_approved(context.session_id, name)
                if approved is None:
                    request = self._approvals.create_request(
                        session_id=context.session_id,
                        org_id=context.org_id,
                        agent_id=context.agent_id,
                        action_type=name,
                        action_description=tool.description,
                        action_payload=params,
                    )
                    return _failure(
                        f"{name} requires approval before it can run",
                        approval_required=True,
                        approval_id=request.id,
                    )

            data = await tool.run(params, context)
            extra = await tool.annotate(params, context)
        except ForbiddenError as e:
            logger.warning("tool_forbidden", tool_name=name, session_id=context.session_id, error=str(e))
            return _failure(str(e), forbidden=True, error_code=ForbiddenError.error_code)
        except Exception as e:
            logger.error("tool_execution_error", tool_name=name, session_id=context.session_id, error=str(e))
            return _failure(str(e) or "Unknown error")

        metadata: dict[str, Any] = {
            "execution_time_ms": int((time.monotonic() - started) * 1000),
            "tool_name": name,
            **extra,
        }
        if tool.is_stub:
            metadata["stub"] = True
        return ToolResult(success=True, data=data, metadata=metadata)

    @staticmethod
    def _ensure_permission(tool: Tool, context: ToolContext) -> None:
        if tool.required_permission and not context.has_permission(tool.required_permission):
            raise ForbiddenError(f"Missing required permission: {tool.required_permission}")

    async def _flag_enabled(self, flag: str, context: ToolContext) -> bool:
        try:
            return await self._flags.is_enabled(flag, context.org_id)
        except Exception as e:
            logger.error("flag_check_failed", flag=flag, error=str(e))
            return False

    async def _check_consent(self, contact: str, consent_type: ConsentType) -> ConsentCheck:
        try:
            return await self._consent.check_consent(contact, consent_type)
        except Exception as e:
            logger.error("consent_check_failed", consent_type=str(consent_type), error=str(e))
            return ConsentCheck(granted=False, consent_type=str(consent_type), reason="Consent check failed")
