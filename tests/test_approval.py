"""Tests for the approval queue."""

from datetime import timedelta

import pytest

from agent_orchestrator.automation.approval import ApprovalQueue, ApprovalStatus
from agent_orchestrator.core.errors import InvalidStateError, NotFoundError
from agent_orchestrator.core.models import utcnow


class FakeClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return ApprovalQueue(clock=clock)


def _request(queue, session_id="session_1", action="BookingTool.createBooking", **kwargs):
    return queue.create_request(session_id=session_id, action_type=action, action_payload={"jobId": "J1"}, **kwargs)


class TestApprovalQueue:
    def test_approve_then_consume(self, queue):
        request = _request(queue, org_id="org_1")
        assert queue.pending_requests("org_1") == [request]

        queue.approve(request.id, approved_by="ops_1", reason="Looks fine")
        assert request.status == ApprovalStatus.APPROVED
        assert request.responded_by == "ops_1"

        consumed = queue.consume_approved("session_1", "BookingTool.createBooking")
        assert consumed is request
        assert request.status == ApprovalStatus.EXECUTED
        assert queue.consume_approved("session_1", "BookingTool.createBooking") is None

    def test_reject(self, queue):
        request = _request(queue)
        queue.reject(request.id, rejected_by="ops_1", reason="Wrong pro")
        assert request.status == ApprovalStatus.REJECTED
        with pytest.raises(InvalidStateError):
            queue.approve(request.id, approved_by="ops_2")

    def test_unknown_request(self, queue):
        with pytest.raises(NotFoundError):
            queue.approve("approval_missing", approved_by="ops_1")

    def test_expired_request_cannot_be_approved(self, queue, clock):
        request = _request(queue, expires_in_minutes=5)
        clock.advance(10)
        with pytest.raises(InvalidStateError):
            queue.approve(request.id, approved_by="ops_1")
        assert request.status == ApprovalStatus.EXPIRED

    def test_pending_listing_expires_stale(self, queue, clock):
        stale = _request(queue, expires_in_minutes=5)
        fresh = _request(queue, session_id="session_2", expires_in_minutes=120)
        clock.advance(10)
        assert queue.pending_requests() == [fresh]
        assert stale.status == ApprovalStatus.EXPIRED
        assert queue.pending_for_session("session_2") == [fresh]

    def test_expire_stale_and_stats(self, queue, clock):
        _request(queue, expires_in_minutes=5)
        approved = _request(queue, expires_in_minutes=120)
        queue.approve(approved.id, approved_by="ops_1")
        clock.advance(10)

        assert queue.expire_stale() == 1
        stats = queue.queue_stats()
        assert stats["expired"] == 1
        assert stats["approved"] == 1
        assert stats["pending"] == 0

    def test_to_dict(self, queue):
        data = _request(queue, amount_cents=12_500).to_dict()
        assert data["status"] == "PENDING"
        assert data["amount_cents"] == 12_500
