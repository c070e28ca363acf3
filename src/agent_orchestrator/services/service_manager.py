"""Service lifecycle manager."""

from __future__ import annotations

from agent_orchestrator.log import get_logger
from agent_orchestrator.services.base import Service

logger = get_logger(__name__)


class ServiceManager:
    """Starts and stops background services in registration order."""

    def __init__(self, services: list[Service] | None = None):
        self._services: list[Service] = list(services or [])

    def add(self, service: Service) -> None:
        self._services.append(service)

    def get(self, name: str) -> Service | None:
        for service in self._services:
            if service.service_name == name:
                return service
        return None

    async def start_all(self) -> None:
        """Start all services. A service that fails to start is logged and skipped."""
        for service in self._services:
            try:
                await service.start()
            except Exception as e:
                logger.warning("service_unavailable", service=service.service_name, error=str(e))
        logger.info("all_services_started", count=len(self._services))

    async def stop_all(self) -> None:
        """Stop all services in reverse order."""
        for service in reversed(self._services):
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        return {s.service_name: await s.health_check() for s in self._services}
