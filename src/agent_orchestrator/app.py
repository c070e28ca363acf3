"""Application wiring: builds every component from configuration and manages lifecycle."""

from __future__ import annotations

from agent_orchestrator.agents.catalog import AgentCatalog
from agent_orchestrator.automation.approval import ApprovalQueue
from agent_orchestrator.config import AppConfig
from agent_orchestrator.core.collaborators import (
    InMemoryCache,
    InMemoryConsentStore,
    StaticFlagEvaluator,
    StaticPermissionResolver,
    StaticPolicyResolver,
)
from agent_orchestrator.llm.gateway import ModelGateway
from agent_orchestrator.log import get_logger
from agent_orchestrator.memory.conversation import ConversationMemory
from agent_orchestrator.orchestrator.service import SessionOrchestrator
from agent_orchestrator.prompts.renderer import PromptRenderer
from agent_orchestrator.services.expiry import SessionExpiryService
from agent_orchestrator.services.service_manager import ServiceManager
from agent_orchestrator.storage.database import Database
from agent_orchestrator.storage.session_store import SqliteSessionStore
from agent_orchestrator.tools.executor import ToolExecutor
from agent_orchestrator.tools.registry import ToolRegistry

logger = get_logger(__name__)


class OrchestratorApp:
    """Top-level application object. Owns the database and background services."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.store = SqliteSessionStore(self.db)
        self.cache = InMemoryCache()

        self.flags = StaticFlagEvaluator(config.flags.defaults, config.flags.orgs)
        self.policies = StaticPolicyResolver(config.policies.defaults, config.policies.orgs)
        self.permissions = StaticPermissionResolver(
            config.permissions.anonymous,
            config.permissions.authenticated,
            config.permissions.users,
        )
        self.consent = InMemoryConsentStore(config.consent.default_granted)

        self.renderer = PromptRenderer()
        self.catalog = AgentCatalog(self.flags, self.renderer)
        self.tool_registry = ToolRegistry()
        self.approvals = ApprovalQueue()
        self.executor = ToolExecutor(self.tool_registry, self.flags, self.consent, self.approvals)
        self.memory = ConversationMemory(self.cache, self.store, config.memory)
        self.gateway = ModelGateway(config.llm, self.flags)

        self.orchestrator = SessionOrchestrator(
            catalog=self.catalog,
            memory=self.memory,
            gateway=self.gateway,
            executor=self.executor,
            renderer=self.renderer,
            cache=self.cache,
            store=self.store,
            flags=self.flags,
            policies=self.policies,
            permissions=self.permissions,
            config=config.orchestrator,
        )

        self.service_manager = ServiceManager()
        if config.expiry.enabled:
            self.service_manager.add(SessionExpiryService(config.expiry, self.orchestrator))

    async def start(self) -> None:
        """Initialize storage and providers, then start background services."""
        # 1. Database
        await self.db.initialize()

        # 2. Tools
        self.tool_registry.register_builtin(self.policies)

        # 3. Model providers
        await self.gateway.initialize()

        # 4. Services
        await self.service_manager.start_all()

        logger.info(
            "orchestrator_started",
            agents=len(self.catalog.agent_ids()),
            tools=len(self.tool_registry.names()),
            model_available=self.gateway.is_healthy(),
            provider=self.gateway.current_provider,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.service_manager.stop_all()
        await self.db.close()
        logger.info("orchestrator_stopped")
