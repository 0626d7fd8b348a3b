"""
Approval store - owns the pending/approved/rejected lifecycle of approvals.

Resolution and lock release are written in one commit, so no new message for
the actor can observe the record resolved while the lock is still held, or the
lock free while the record is still pending.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bizagent.models.domain import ApprovalRecord
from bizagent.models.enums import ApprovalStatus, Decision, RiskLevel
from bizagent.services.action_lock import ActionLock
from bizagent.services.errors import ApprovalAlreadyResolved, ApprovalNotFound, LockContention

logger = logging.getLogger(__name__)


class ApprovalStore:
    """Repository for ApprovalRecord rows."""

    def __init__(self, db: Session, lock: Optional[ActionLock] = None):
        self.db = db
        self.lock = lock or ActionLock(db)

    def create(
        self,
        request_id: str,
        actor_id: str,
        priority: RiskLevel,
        commit: bool = True
    ) -> ApprovalRecord:
        """
        Open a pending approval for a request.

        The caller must already hold the actor's lock; a pending record for the
        same actor is refused here as a second line of defence.
        """
        if self.get_by_actor(actor_id) is not None:
            raise LockContention(actor_id)

        priority = RiskLevel(priority)
        record = ApprovalRecord(
            request_id=request_id,
            actor_id=actor_id,
            status=ApprovalStatus.PENDING,
            priority=priority,
            priority_rank=priority.rank
        )
        self.db.add(record)
        if commit:
            self.db.commit()
            self.db.refresh(record)
        else:
            self.db.flush()

        logger.info("Approval %s opened for request %s (priority %s)",
                    record.approval_id, request_id, priority.value)
        return record

    def get(self, approval_id: str) -> Optional[ApprovalRecord]:
        return self.db.query(ApprovalRecord).filter(
            ApprovalRecord.approval_id == approval_id
        ).first()

    def get_by_request(self, request_id: str) -> Optional[ApprovalRecord]:
        return self.db.query(ApprovalRecord).filter(
            ApprovalRecord.request_id == request_id
        ).first()

    def get_by_actor(self, actor_id: str) -> Optional[ApprovalRecord]:
        """The actor's current pending approval, if any."""
        return self.db.query(ApprovalRecord).filter(
            ApprovalRecord.actor_id == actor_id,
            ApprovalRecord.status == ApprovalStatus.PENDING
        ).first()

    def resolve(self, approval_id: str, decision: Decision, resolved_by: str) -> ApprovalRecord:
        """
        Move a pending approval to approved or rejected and free the actor.

        Raises:
            ApprovalNotFound: unknown approval_id
            ApprovalAlreadyResolved: the approval already left pending
        """
        decision = Decision(decision)
        record = self.get(approval_id)
        if record is None:
            raise ApprovalNotFound(approval_id)
        if record.status != ApprovalStatus.PENDING:
            raise ApprovalAlreadyResolved(approval_id, record.status.value)

        # Conditional update: two admins deciding at once cannot both win
        updated = self.db.query(ApprovalRecord).filter(
            ApprovalRecord.approval_id == approval_id,
            ApprovalRecord.status == ApprovalStatus.PENDING
        ).update(
            {
                ApprovalRecord.status: ApprovalStatus(decision.value),
                ApprovalRecord.resolved_by: resolved_by,
                ApprovalRecord.resolved_at: datetime.utcnow(),
            },
            synchronize_session=False
        )
        if updated == 0:
            self.db.rollback()
            self.db.refresh(record)
            raise ApprovalAlreadyResolved(approval_id, record.status.value)

        self.lock.release(record.actor_id, commit=False)
        self.db.commit()
        self.db.refresh(record)

        logger.info("Approval %s %s by %s", approval_id, decision.value, resolved_by)
        return record

    def list_pending(self, limit: int = 50, offset: int = 0) -> List[ApprovalRecord]:
        """High priority first; oldest first within a priority tier."""
        return self.db.query(ApprovalRecord).filter(
            ApprovalRecord.status == ApprovalStatus.PENDING
        ).order_by(
            ApprovalRecord.priority_rank.desc(),
            ApprovalRecord.created_at.asc(),
            ApprovalRecord.id.asc()
        ).offset(max(0, int(offset))).limit(max(1, int(limit))).all()

    def mark_executed(self, record: ApprovalRecord, commit: bool = True) -> None:
        record.executed_at = datetime.utcnow()
        record.failure_detail = None
        if commit:
            self.db.commit()

    def mark_failed(self, record: ApprovalRecord, detail: Dict[str, Any], commit: bool = True) -> None:
        """Attach the failure cause; executed_at stays unset."""
        record.executed_at = None
        record.failure_detail = detail
        if commit:
            self.db.commit()
