"""Registry of agent definitions with feature-flag gating and instance creation."""

from __future__ import annotations

import threading
from importlib import resources
from typing import Any

import yaml

from agent_orchestrator.agents.models import AgentDefinition, AgentInstance
from agent_orchestrator.core.collaborators import FlagEvaluator
from agent_orchestrator.core.errors import NotEnabledError, NotFoundError
from agent_orchestrator.core.models import utcnow
from agent_orchestrator.core.types import AgentCategory
from agent_orchestrator.log import get_logger
from agent_orchestrator.prompts.renderer import PromptRenderer

logger = get_logger(__name__)


def load_default_definitions() -> list[AgentDefinition]:
    """Read the packaged ``catalog.yaml``."""
    text = resources.files("agent_orchestrator.agents").joinpath("catalog.yaml").read_text(
        encoding="utf-8"
    )
    raw = yaml.safe_load(text) or {}
    return [AgentDefinition.model_validate(a) for a in raw.get("agents", [])]


def _context_value(context: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if context.get(key):
            return context[key]
    return None


class AgentCatalog:
    """Table of agent definitions keyed by id.

    Built once at startup and passed by handle to whatever needs it.
    """

    def __init__(
        self,
        flags: FlagEvaluator,
        renderer: PromptRenderer,
        definitions: list[AgentDefinition] | None = None,
    ):
        self._flags = flags
        self._renderer = renderer
        self._definitions: dict[str, AgentDefinition] = {}
        self._lock = threading.RLock()
        for definition in load_default_definitions() if definitions is None else definitions:
            self.register(definition)
        logger.info("agent_catalog_initialized", count=len(self._definitions))

    # -- registration --------------------------------------------------

    def register(self, definition: AgentDefinition) -> None:
        stored = definition.model_copy(deep=True)
        with self._lock:
            if stored.id in self._definitions:
                logger.warning("agent_definition_overwritten", agent_id=stored.id)
            self._definitions[stored.id] = stored
        logger.debug("agent_registered", agent_id=stored.id)

    def unregister(self, agent_id: str) -> bool:
        with self._lock:
            removed = self._definitions.pop(agent_id, None) is not None
        if removed:
            logger.debug("agent_unregistered", agent_id=agent_id)
        return removed

    # -- lookup --------------------------------------------------------

    def get(self, agent_id: str) -> AgentDefinition | None:
        with self._lock:
            return self._definitions.get(agent_id)

    def get_all(self) -> list[AgentDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def get_by_category(self, category: AgentCategory | str) -> list[AgentDefinition]:
        return [d for d in self.get_all() if d.category == category]

    def agent_ids(self) -> list[str]:
        with self._lock:
            return list(self._definitions.keys())

    def has(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._definitions

    # -- feature flags -------------------------------------------------

    async def is_enabled(self, agent_id: str, org_id: str | None = None) -> bool:
        """True when every required flag of the agent is on. Unknown agents are disabled."""
        definition = self.get(agent_id)
        if definition is None:
            return False
        for flag in definition.required_flags:
            if not await self._flags.is_enabled(flag, org_id):
                logger.debug("agent_disabled_by_flag", agent_id=agent_id, flag=flag)
                return False
        return True

    async def get_enabled_agents(self, org_id: str | None = None) -> list[AgentDefinition]:
        return [d for d in self.get_all() if await self.is_enabled(d.id, org_id)]

    # -- instances -----------------------------------------------------

    async def create_instance(
        self,
        agent_id: str,
        session_id: str,
        context: dict[str, Any] | None = None,
    ) -> AgentInstance:
        """Resolve an agent definition into an instance bound to one session.

        Raises:
            NotFoundError: no definition with that id.
            NotEnabledError: a required flag is off for the session's org.
        """
        context = context or {}
        definition = self.get(agent_id)
        if definition is None:
            raise NotFoundError(f"Agent not found: {agent_id}")

        org_id = _context_value(context, "org_id", "orgId")
        if not await self.is_enabled(agent_id, org_id):
            raise NotEnabledError(f"Agent {agent_id} is not enabled")

        system_prompt = self._renderer.agent_prompt(
            definition.prompt_key,
            {
                "org_name": _context_value(context, "org_name", "orgName"),
                "user_name": _context_value(context, "user_name", "userName"),
                "timezone": _context_value(context, "timezone"),
                "current_time": utcnow().isoformat(),
                "additional_context": _context_value(
                    context, "additional_context", "additionalContext"
                ),
            },
        )

        instance = AgentInstance(
            definition=definition,
            session_id=session_id,
            system_prompt=system_prompt,
            available_tools=tuple(self.filter_available_tools(definition.allowed_tools, context)),
            available_skills=tuple(
                self.filter_available_skills(definition.allowed_skills, context)
            ),
        )
        logger.debug("agent_instance_created", agent_id=agent_id, session_id=session_id)
        return instance

    def filter_available_tools(self, tools: tuple[str, ...], context: dict[str, Any]) -> list[str]:
        """Narrow the tool allow-list for a session. Returns a subset, never more."""
        disabled = set(context.get("disabled_tools") or ())
        return [t for t in tools if t not in disabled]

    def filter_available_skills(
        self, skills: tuple[str, ...], context: dict[str, Any]
    ) -> list[str]:
        disabled = set(context.get("disabled_skills") or ())
        return [s for s in skills if s not in disabled]

    # -- utilities -----------------------------------------------------

    def metadata_listing(self) -> list[dict[str, str]]:
        return [
            {
                "id": d.id,
                "name": d.name,
                "category": str(d.category),
                "description": d.description,
            }
            for d in self.get_all()
        ]

    @staticmethod
    def validate_definition(data: dict[str, Any] | AgentDefinition) -> tuple[bool, list[str]]:
        """Check the fields every definition needs. Returns ``(valid, errors)``."""
        if isinstance(data, AgentDefinition):
            data = data.model_dump()
        errors: list[str] = []
        if not data.get("id"):
            errors.append("Agent ID is required")
        if not data.get("name"):
            errors.append("Agent name is required")
        if not data.get("category"):
            errors.append("Agent category is required")
        elif data["category"] not in {c.value for c in AgentCategory}:
            errors.append(f"Unknown agent category: {data['category']}")
        if not data.get("prompt_key"):
            errors.append("System prompt key is required")
        if data.get("max_turns") is not None and data["max_turns"] < 1:
            errors.append("max_turns must be positive")
        escalation = data.get("escalation") or {}
        if any(not str(k).strip() for k in escalation.get("trigger_keywords") or ()):
            errors.append("Escalation trigger keywords must not be blank")
        return not errors, errors
