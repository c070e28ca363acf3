"""Lifecycle interfaces for services that run alongside the orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger


class Service(ABC):
    """Started by ``ServiceManager.start_all`` and stopped in reverse order."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...


class ScheduledService(Service):
    """A service whose work is one recurring APScheduler job.

    Subclasses provide the job coroutine and its trigger. Only one run is
    in flight at a time and missed runs are coalesced.
    """

    job_id: str = ""

    def __init__(self, timezone: str = "UTC"):
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @abstractmethod
    def trigger(self) -> BaseTrigger:
        ...

    @abstractmethod
    def job(self) -> Callable[[], Awaitable[Any]]:
        ...

    def next_run_time(self):
        job = self._scheduler.get_job(self.job_id)
        return job.next_run_time if job else None

    async def start(self) -> None:
        self._scheduler.add_job(
            self.job(),
            self.trigger(),
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    async def health_check(self) -> bool:
        return self._scheduler.running
