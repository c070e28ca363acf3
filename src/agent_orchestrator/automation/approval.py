"""Approval queue for agent actions that need a human decision first."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Callable, Optional

from agent_orchestrator.core.errors import InvalidStateError, NotFoundError
from agent_orchestrator.core.models import new_id, utcnow
from agent_orchestrator.log import get_logger

logger = get_logger(__name__)

DEFAULT_EXPIRY_MINUTES = 60


class ApprovalStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    # Approved and then used by the tool call it authorized
    EXECUTED = "EXECUTED"


@dataclass
class ApprovalRequest:
    session_id: str
    action_type: str
    action_payload: dict[str, Any]
    expires_at: datetime
    org_id: Optional[str] = None
    agent_id: Optional[str] = None
    action_description: str = ""
    amount_cents: Optional[int] = None
    id: str = field(default_factory=lambda: new_id("approval"))
    status: ApprovalStatus = ApprovalStatus.PENDING
    reason: Optional[str] = None
    requested_at: datetime = field(default_factory=utcnow)
    responded_at: Optional[datetime] = None
    responded_by: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "org_id": self.org_id,
            "agent_id": self.agent_id,
            "action_type": self.action_type,
            "action_description": self.action_description,
            "action_payload": self.action_payload,
            "amount_cents": self.amount_cents,
            "status": str(self.status),
            "reason": self.reason,
            "requested_at": self.requested_at.isoformat(),
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "responded_by": self.responded_by,
            "expires_at": self.expires_at.isoformat(),
        }


class ApprovalQueue:
    """In-process queue of approval requests keyed by id."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._requests: dict[str, ApprovalRequest] = {}

    def create_request(
        self,
        session_id: str,
        action_type: str,
        action_payload: dict[str, Any],
        org_id: str | None = None,
        agent_id: str | None = None,
        action_description: str = "",
        amount_cents: int | None = None,
        expires_in_minutes: int = DEFAULT_EXPIRY_MINUTES,
    ) -> ApprovalRequest:
        now = self._clock()
        request = ApprovalRequest(
            session_id=session_id,
            org_id=org_id,
            agent_id=agent_id,
            action_type=action_type,
            action_description=action_description or f"Execute {action_type}",
            action_payload=dict(action_payload),
            amount_cents=amount_cents,
            requested_at=now,
            expires_at=now + timedelta(minutes=expires_in_minutes),
        )
        self._requests[request.id] = request
        logger.info(
            "approval_requested",
            approval_id=request.id,
            session_id=session_id,
            action_type=action_type,
        )
        return request

    def _pending(self, approval_id: str) -> ApprovalRequest:
        request = self._requests.get(approval_id)
        if request is None:
            raise NotFoundError(f"Approval request not found: {approval_id}")
        if request.status != ApprovalStatus.PENDING:
            raise InvalidStateError(f"Request is already {request.status}")
        return request

    def approve(self, approval_id: str, approved_by: str, reason: str | None = None) -> ApprovalRequest:
        request = self._pending(approval_id)
        now = self._clock()
        if request.expires_at < now:
            request.status = ApprovalStatus.EXPIRED
            raise InvalidStateError("Request has expired")

        request.status = ApprovalStatus.APPROVED
        request.responded_at = now
        request.responded_by = approved_by
        request.reason = reason
        logger.info("approval_granted", approval_id=approval_id, approved_by=approved_by)
        return request

    def reject(self, approval_id: str, rejected_by: str, reason: str | None = None) -> ApprovalRequest:
        request = self._pending(approval_id)
        request.status = ApprovalStatus.REJECTED
        request.responded_at = self._clock()
        request.responded_by = rejected_by
        request.reason = reason
        logger.info("approval_denied", approval_id=approval_id, rejected_by=rejected_by)
        return request

    def get_request(self, approval_id: str) -> ApprovalRequest | None:
        return self._requests.get(approval_id)

    def pending_requests(self, org_id: str | None = None) -> list[ApprovalRequest]:
        """Pending requests, oldest first. Stale ones are expired on the way."""
        now = self._clock()
        pending: list[ApprovalRequest] = []
        for request in self._requests.values():
            if request.status != ApprovalStatus.PENDING:
                continue
            if org_id is not None and request.org_id != org_id:
                continue
            if request.expires_at < now:
                request.status = ApprovalStatus.EXPIRED
                continue
            pending.append(request)
        return sorted(pending, key=lambda r: r.requested_at)

    def pending_for_session(self, session_id: str) -> list[ApprovalRequest]:
        return [r for r in self.pending_requests() if r.session_id == session_id]

    def session_requests(self, session_id: str) -> list[ApprovalRequest]:
        return sorted(
            (r for r in self._requests.values() if r.session_id == session_id),
            key=lambda r: r.requested_at,
        )

    def consume_approved(self, session_id: str, action_type: str) -> ApprovalRequest | None:
        """Take the oldest approved request for this action, marking it executed."""
        for request in self.session_requests(session_id):
            if request.action_type == action_type and request.status == ApprovalStatus.APPROVED:
                request.status = ApprovalStatus.EXECUTED
                logger.info("approval_consumed", approval_id=request.id, action_type=action_type)
                return request
        return None

    def expire_stale(self) -> int:
        now = self._clock()
        expired = 0
        for request in self._requests.values():
            if request.status == ApprovalStatus.PENDING and request.expires_at < now:
                request.status = ApprovalStatus.EXPIRED
                expired += 1
        if expired:
            logger.info("approvals_expired", count=expired)
        return expired

    def queue_stats(self, org_id: str | None = None) -> dict[str, int]:
        counts = {"pending": 0, "approved": 0, "rejected": 0, "expired": 0}
        total_response_ms = 0
        responded = 0
        for request in self._requests.values():
            if org_id is not None and request.org_id != org_id:
                continue
            match request.status:
                case ApprovalStatus.PENDING:
                    counts["pending"] += 1
                case ApprovalStatus.APPROVED | ApprovalStatus.EXECUTED:
                    counts["approved"] += 1
                case ApprovalStatus.REJECTED:
                    counts["rejected"] += 1
                case ApprovalStatus.EXPIRED:
                    counts["expired"] += 1
            if request.responded_at:
                total_response_ms += int(
                    (request.responded_at - request.requested_at).total_seconds() * 1000
                )
                responded += 1
        counts["average_response_time_ms"] = round(total_response_ms / responded) if responded else 0
        return counts
