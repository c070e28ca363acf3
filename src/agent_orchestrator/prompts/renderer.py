"""Prompt template registry and renderer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from importlib import resources
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from agent_orchestrator.core.errors import NotFoundError, TemplateError
from agent_orchestrator.core.models import utcnow
from agent_orchestrator.log import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEZONE = "America/Toronto"

_IF_BLOCK = re.compile(r"\{\{#if (\w+)\}\}(.*?)\{\{/if\}\}", re.DOTALL)

_AGENT_CONTEXT_KEYS = ("org_name", "user_name", "timezone", "current_time", "additional_context")


class TemplateVariable(BaseModel):
    name: str
    description: str = ""
    required: bool = False
    default: str | None = None


class PromptTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    category: Literal["agent", "skill", "system"]
    version: str = "1.0.0"
    variables: list[TemplateVariable] = Field(default_factory=list)
    body: str


@dataclass
class RenderedPrompt:
    content: str
    template_id: str
    variables: dict[str, str] = field(default_factory=dict)


def load_default_templates() -> list[PromptTemplate]:
    """Read the packaged ``templates.yaml``."""
    text = resources.files("agent_orchestrator.prompts").joinpath("templates.yaml").read_text(
        encoding="utf-8"
    )
    raw = yaml.safe_load(text) or {}
    return [PromptTemplate.model_validate(t) for t in raw.get("templates", [])]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


class PromptRenderer:
    """Stores prompt templates and renders them with variable interpolation."""

    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, PromptTemplate] = {}
        for template in load_default_templates() if templates is None else templates:
            self.register_template(template)
        logger.info("prompt_templates_loaded", count=len(self._templates))

    def register_template(self, template: PromptTemplate) -> None:
        self._templates[template.id] = template
        logger.debug("template_registered", template_id=template.id)

    def get_template(self, template_id: str) -> PromptTemplate | None:
        return self._templates.get(template_id)

    def all_templates(self) -> list[PromptTemplate]:
        return list(self._templates.values())

    def templates_by_category(self, category: str) -> list[PromptTemplate]:
        return [t for t in self._templates.values() if t.category == category]

    def render(self, template_id: str, variables: dict[str, Any] | None = None) -> RenderedPrompt:
        """Render a template.

        Declared variables resolve from ``variables`` then their default.
        ``{{#if name}}...{{/if}}`` sections survive only when ``name`` resolves
        to a non-empty value; ``{{name}}`` placeholders are then substituted.

        Raises:
            NotFoundError: unknown template id.
            TemplateError: a required variable has no value.
        """
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")

        variables = variables or {}
        resolved: dict[str, str] = {}
        missing: list[str] = []
        for var in template.variables:
            value = _as_text(variables.get(var.name)) or (var.default or "")
            if var.required and not value:
                missing.append(var.name)
            resolved[var.name] = value

        if missing:
            raise TemplateError(f"Missing required variables: {', '.join(missing)}")

        def _section(match: re.Match[str]) -> str:
            name = match.group(1)
            value = resolved.get(name) or _as_text(variables.get(name))
            return match.group(2) if value else ""

        content = _IF_BLOCK.sub(_section, template.body)
        for name, value in resolved.items():
            content = content.replace("{{" + name + "}}", value)

        return RenderedPrompt(content=content, template_id=template_id, variables=resolved)

    def agent_prompt(self, key: str, context: dict[str, Any] | None = None) -> str:
        """System prompt for an agent, by prompt key (``agent.x-y``) or agent id (``X_Y``)."""
        template_id = key if key.startswith("agent.") else f"agent.{key.lower().replace('_', '-')}"
        if template_id not in self._templates:
            logger.warning("agent_template_missing", key=key, template_id=template_id)
            return self.default_agent_prompt(key)

        context = context or {}
        variables = {k: v for k, v in context.items() if isinstance(v, str)}
        for name in _AGENT_CONTEXT_KEYS:
            variables.setdefault(name, _as_text(context.get(name)))
        variables["timezone"] = variables["timezone"] or DEFAULT_TIMEZONE
        variables["current_time"] = variables["current_time"] or utcnow().isoformat()

        return self.render(template_id, variables).content

    @staticmethod
    def default_agent_prompt(role: str) -> str:
        return (
            "You are an AI assistant for a trades dispatch platform.\n"
            f"Your role is: {role}\n"
            "\n"
            "Guidelines:\n"
            "- Be helpful, professional, and concise\n"
            "- Focus on the user's immediate needs\n"
            "- Ask clarifying questions when needed\n"
            "- Use available tools to complete tasks\n"
            "- Escalate to human agents when appropriate\n"
            "\n"
            f"Current time: {utcnow().isoformat()}"
        )
