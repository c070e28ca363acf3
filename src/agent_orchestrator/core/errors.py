"""Typed errors raised by the orchestration core.

Only lookup and state-precondition errors reach callers of the
orchestrator. Gate errors (``ForbiddenError``, ``NotEnabledError``,
``ConsentRequiredError``) are raised inside the tool executor and turned
into failed ``ToolResult`` values at its boundary.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""

    error_code = "ORCHESTRATOR_ERROR"


class NotFoundError(OrchestratorError):
    """Unknown session, agent, template or approval request."""

    error_code = "NOT_FOUND"


class InvalidStateError(OrchestratorError):
    """Session not active, or already terminal."""

    error_code = "INVALID_STATE"


class NotEnabledError(OrchestratorError):
    """A feature flag gate failed."""

    error_code = "NOT_ENABLED"


class ForbiddenError(OrchestratorError):
    """A permission gate failed."""

    error_code = "FORBIDDEN"


class ConsentRequiredError(OrchestratorError):
    """A consent gate failed. Remediable by the contact granting consent."""

    error_code = "CONSENT_REQUIRED"


class UnknownToolError(OrchestratorError):
    error_code = "UNKNOWN_TOOL"


class ProviderUnavailableError(OrchestratorError):
    """No healthy model provider."""

    error_code = "PROVIDER_UNAVAILABLE"


class StreamingUnavailableError(ProviderUnavailableError):
    error_code = "STREAMING_UNAVAILABLE"


class ToolExecutionFailedError(OrchestratorError):
    error_code = "TOOL_EXECUTION_FAILED"


class TemplateError(OrchestratorError):
    """A prompt template could not be rendered."""

    error_code = "TEMPLATE_ERROR"


class ConfigError(OrchestratorError):
    error_code = "CONFIG_ERROR"
