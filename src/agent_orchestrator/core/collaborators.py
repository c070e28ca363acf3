"""Interfaces to the collaborators the core consumes, with in-process implementations.

Feature flags, policies, consent records, permissions and the ephemeral
cache all live outside the orchestration core. Each is reached through a
small ABC so deployments can plug in their own backends.
"""

from __future__ import annotations

import copy
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from agent_orchestrator.core.models import utcnow
from agent_orchestrator.log import get_logger

if TYPE_CHECKING:
    from agent_orchestrator.core.models import Session
    from agent_orchestrator.memory.conversation import MemoryTurn

logger = get_logger(__name__)


# ------------------------------------------------------------------
# Feature flags
# ------------------------------------------------------------------


class FlagEvaluator(ABC):
    @abstractmethod
    async def is_enabled(self, flag: str, org_id: str | None = None) -> bool:
        ...


class StaticFlagEvaluator(FlagEvaluator):
    """Flags from configuration, with optional per-org overrides. Unknown flags are off."""

    def __init__(
        self,
        defaults: dict[str, bool] | None = None,
        orgs: dict[str, dict[str, bool]] | None = None,
    ):
        self._defaults = dict(defaults or {})
        self._orgs = {org: dict(flags) for org, flags in (orgs or {}).items()}

    async def is_enabled(self, flag: str, org_id: str | None = None) -> bool:
        if org_id and flag in self._orgs.get(org_id, {}):
            return self._orgs[org_id][flag]
        return self._defaults.get(flag, False)

    def set(self, flag: str, enabled: bool, org_id: str | None = None) -> None:
        if org_id:
            self._orgs.setdefault(org_id, {})[flag] = enabled
        else:
            self._defaults[flag] = enabled
        logger.info("flag_set", flag=flag, enabled=enabled, org_id=org_id)


# ------------------------------------------------------------------
# Policies
# ------------------------------------------------------------------


class PolicyResolver(ABC):
    @abstractmethod
    async def get_value(self, key: str, org_id: str | None = None) -> Any:
        ...


class StaticPolicyResolver(PolicyResolver):
    def __init__(
        self,
        defaults: dict[str, Any] | None = None,
        orgs: dict[str, dict[str, Any]] | None = None,
    ):
        self._defaults = dict(defaults or {})
        self._orgs = {org: dict(values) for org, values in (orgs or {}).items()}

    async def get_value(self, key: str, org_id: str | None = None) -> Any:
        if org_id and key in self._orgs.get(org_id, {}):
            return self._orgs[org_id][key]
        return self._defaults.get(key)


# ------------------------------------------------------------------
# Consent
# ------------------------------------------------------------------


@dataclass
class ConsentCheck:
    granted: bool
    consent_type: str
    granted_at: Optional[datetime] = None
    reason: Optional[str] = None


class ConsentStore(ABC):
    @abstractmethod
    async def check_consent(self, contact_id: str, consent_type: str) -> ConsentCheck:
        ...


class InMemoryConsentStore(ConsentStore):
    """Consent records keyed by (contact, consent type)."""

    def __init__(self, default_granted: bool = False):
        self._default_granted = default_granted
        self._records: dict[tuple[str, str], tuple[bool, datetime]] = {}

    def grant(self, contact_id: str, consent_type: str) -> None:
        self._records[(contact_id, str(consent_type))] = (True, utcnow())

    def revoke(self, contact_id: str, consent_type: str) -> None:
        self._records[(contact_id, str(consent_type))] = (False, utcnow())

    async def check_consent(self, contact_id: str, consent_type: str) -> ConsentCheck:
        record = self._records.get((contact_id, str(consent_type)))
        if record is None:
            if self._default_granted:
                return ConsentCheck(granted=True, consent_type=str(consent_type))
            return ConsentCheck(
                granted=False,
                consent_type=str(consent_type),
                reason="No consent on record",
            )
        granted, at = record
        if not granted:
            return ConsentCheck(
                granted=False, consent_type=str(consent_type), reason="Consent revoked"
            )
        return ConsentCheck(granted=True, consent_type=str(consent_type), granted_at=at)


# ------------------------------------------------------------------
# Permissions
# ------------------------------------------------------------------


class PermissionResolver(ABC):
    @abstractmethod
    async def permissions_for(self, user_id: str | None) -> list[str]:
        ...


class StaticPermissionResolver(PermissionResolver):
    """Anonymous callers get a read-only set; known users get the authenticated set."""

    def __init__(
        self,
        anonymous: list[str],
        authenticated: list[str],
        users: dict[str, list[str]] | None = None,
    ):
        self._anonymous = list(anonymous)
        self._authenticated = list(authenticated)
        self._users = {k: list(v) for k, v in (users or {}).items()}

    async def permissions_for(self, user_id: str | None) -> list[str]:
        if not user_id:
            return list(self._anonymous)
        if user_id in self._users:
            return list(self._users[user_id])
        return list(self._authenticated)


# ------------------------------------------------------------------
# Ephemeral cache
# ------------------------------------------------------------------


class Cache(ABC):
    @abstractmethod
    async def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class InMemoryCache(Cache):
    """Process-local TTL cache. Values are copied in and out, like a network cache."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, copy.deepcopy(value))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


# ------------------------------------------------------------------
# Durable store
# ------------------------------------------------------------------


class SessionStore(ABC):
    """Durable session records plus append-only conversation memory turns."""

    @abstractmethod
    async def save_session(self, session: Session) -> None:
        """Create or update the session record."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        ...

    @abstractmethod
    async def list_session_ids(
        self, status: str | None = None, updated_before: datetime | None = None
    ) -> list[str]:
        ...

    @abstractmethod
    async def append_turn(self, session_id: str, turn: MemoryTurn) -> None:
        ...

    @abstractmethod
    async def list_turns(self, session_id: str) -> list[MemoryTurn]:
        ...
