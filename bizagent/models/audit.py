"""
Audit log model - the compliance record of every pipeline transition.

Entries are written by bizagent.services.audit, which masks PII in the detail
payload before it reaches this table.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, JSON, String

from bizagent.database import Base


class AuditEvent(Base):
    """
    Immutable record of one state transition.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - detail_json never carries unmasked PII
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)  # e.g., "approval_rejected"
    entity_type = Column(String, nullable=True)  # e.g., "ApprovalRecord", "ActionRequest"
    entity_id = Column(String, nullable=True, index=True)
    actor_id = Column(String, nullable=True, index=True)  # Nullable for system events
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    detail_json = Column(JSON, nullable=True)


class AuditEventType:
    """Enumeration of audit event types."""
    # Inbound
    REQUEST_CREATED = "request_created"
    LOCK_CONTENTION = "lock_contention"
    CLASSIFICATION_FALLBACK = "classification_fallback"
    PROCESSING_FAILED = "processing_failed"

    # Approval lifecycle
    APPROVAL_CREATED = "approval_created"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"

    # Execution
    ACTION_EXECUTED = "action_executed"
    EXECUTION_FAILED = "execution_failed"

    # Delivery
    NOTIFICATION_FAILED = "notification_failed"
