"""Periodic expiry of idle sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.triggers.interval import IntervalTrigger

from agent_orchestrator.config import ExpiryConfig
from agent_orchestrator.log import get_logger
from agent_orchestrator.services.base import ScheduledService

if TYPE_CHECKING:
    from agent_orchestrator.orchestrator.service import SessionOrchestrator

logger = get_logger(__name__)


class SessionExpiryService(ScheduledService):
    """Marks ACTIVE sessions EXPIRED once they sit idle past the configured window."""

    job_id = "session-expiry"

    def __init__(self, config: ExpiryConfig, orchestrator: SessionOrchestrator):
        super().__init__(timezone=config.timezone)
        self._config = config
        self._orchestrator = orchestrator
        self._last_expired = 0

    @property
    def service_name(self) -> str:
        return "session_expiry"

    @property
    def last_expired(self) -> int:
        return self._last_expired

    def trigger(self) -> IntervalTrigger:
        return IntervalTrigger(seconds=self._config.interval_seconds)

    def job(self):
        return self.run_once

    async def start(self) -> None:
        await super().start()
        logger.info(
            "session_expiry_started",
            interval_seconds=self._config.interval_seconds,
            idle_seconds=self._config.idle_seconds,
        )

    async def stop(self) -> None:
        await super().stop()
        logger.info("session_expiry_stopped", last_expired=self._last_expired)

    async def run_once(self) -> int:
        """One sweep. Errors are logged so the job keeps its schedule."""
        try:
            self._last_expired = await self._orchestrator.expire_idle_sessions(
                self._config.idle_seconds
            )
        except Exception as e:
            logger.error("session_expiry_failed", error=str(e))
            return 0
        return self._last_expired
