"""
Tests for the approval store.

These tests prove:
- At most one pending approval exists per actor
- Resolution happens once, and releases the actor's lock in the same commit
- The pending queue is ordered by priority, then age
"""
import pytest

from bizagent.models.enums import ApprovalStatus, Decision, RiskLevel
from bizagent.services.action_lock import ActionLock
from bizagent.services.approval_store import ApprovalStore
from bizagent.services.errors import ApprovalAlreadyResolved, ApprovalNotFound, LockContention


@pytest.fixture
def approvals(db_session):
    return ApprovalStore(db_session)


def open_approval(approvals, make_request, actor_id="cust-1", priority=RiskLevel.MEDIUM):
    approvals.lock.try_acquire(actor_id)
    request = make_request(actor_id=actor_id)
    return approvals.create(request.request_id, actor_id, priority)


class TestCreate:

    def test_create_is_pending(self, approvals, make_request):
        record = open_approval(approvals, make_request)

        assert record.status == ApprovalStatus.PENDING
        assert record.priority == RiskLevel.MEDIUM
        assert record.resolved_by is None
        assert record.resolved_at is None
        assert approvals.get_by_actor("cust-1").approval_id == record.approval_id

    def test_second_pending_for_actor_refused(self, approvals, make_request):
        """INVARIANT: at most one pending approval per actor."""
        open_approval(approvals, make_request)
        other = make_request(actor_id="cust-1")

        with pytest.raises(LockContention) as exc_info:
            approvals.create(other.request_id, "cust-1", RiskLevel.LOW)

        assert exc_info.value.code == "lock_contention"

    def test_get_by_actor_ignores_resolved(self, approvals, make_request):
        record = open_approval(approvals, make_request)
        approvals.resolve(record.approval_id, Decision.APPROVED, "admin")

        assert approvals.get_by_actor("cust-1") is None


class TestResolve:

    def test_resolve_stamps_once_and_releases_lock(self, db_session, approvals, make_request):
        record = open_approval(approvals, make_request)
        assert ActionLock(db_session).is_held("cust-1")

        resolved = approvals.resolve(record.approval_id, Decision.REJECTED, "admin-1")

        assert resolved.status == ApprovalStatus.REJECTED
        assert resolved.resolved_by == "admin-1"
        assert resolved.resolved_at is not None
        assert not ActionLock(db_session).is_held("cust-1")

    def test_unknown_approval(self, approvals):
        with pytest.raises(ApprovalNotFound) as exc_info:
            approvals.resolve("missing", Decision.APPROVED, "admin")
        assert exc_info.value.to_dict()["code"] == "approval_not_found"

    def test_resolving_twice_fails(self, approvals, make_request):
        record = open_approval(approvals, make_request)
        approvals.resolve(record.approval_id, Decision.APPROVED, "admin-1")

        with pytest.raises(ApprovalAlreadyResolved) as exc_info:
            approvals.resolve(record.approval_id, Decision.REJECTED, "admin-2")

        assert exc_info.value.status == "approved"
        # First resolution stands
        assert approvals.get(record.approval_id).resolved_by == "admin-1"

    def test_mark_failed_then_executed(self, approvals, make_request):
        record = open_approval(approvals, make_request)
        approvals.resolve(record.approval_id, Decision.APPROVED, "admin")

        approvals.mark_failed(record, {"error": "store down"})
        assert record.executed_at is None
        assert record.failure_detail == {"error": "store down"}

        approvals.mark_executed(record)
        assert record.executed_at is not None
        assert record.failure_detail is None


class TestPendingQueue:

    def test_priority_desc_then_oldest_first(self, approvals, make_request):
        low = open_approval(approvals, make_request, "a", RiskLevel.LOW)
        high_old = open_approval(approvals, make_request, "b", RiskLevel.HIGH)
        medium = open_approval(approvals, make_request, "c", RiskLevel.MEDIUM)
        high_new = open_approval(approvals, make_request, "d", RiskLevel.HIGH)

        queue = [r.approval_id for r in approvals.list_pending()]

        assert queue == [
            high_old.approval_id,
            high_new.approval_id,
            medium.approval_id,
            low.approval_id,
        ]

    def test_queue_excludes_resolved_and_pages(self, approvals, make_request):
        first = open_approval(approvals, make_request, "a", RiskLevel.HIGH)
        second = open_approval(approvals, make_request, "b", RiskLevel.MEDIUM)
        third = open_approval(approvals, make_request, "c", RiskLevel.LOW)
        approvals.resolve(first.approval_id, Decision.APPROVED, "admin")

        assert [r.approval_id for r in approvals.list_pending()] == [second.approval_id, third.approval_id]
        assert [r.approval_id for r in approvals.list_pending(limit=1, offset=1)] == [third.approval_id]
