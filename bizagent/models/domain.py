"""Domain models - requests, approvals, locks and the execution ledger."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from bizagent.database import Base
from bizagent.models.enums import (
    ActionKind,
    ApprovalStatus,
    Channel,
    ExecutionStatus,
    ProposedAction,
    RequestState,
    RiskLevel
)


def new_id() -> str:
    return str(uuid.uuid4())


class ActionRequest(Base):
    """
    The normalized unit of work produced by classifying one inbound message.

    Invariants enforced here:
    - Content fields (actor, kind, entities, confidence, source text and the
      evaluation snapshot) never change after creation
    - `state` only moves through the request state machine
    - Retries create a new request, they never mutate this one
    """
    __tablename__ = "action_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    request_id = Column(String, unique=True, nullable=False, index=True, default=new_id)
    actor_id = Column(String, nullable=False, index=True)
    channel = Column(SQLEnum(Channel), nullable=False, default=Channel.WEB)
    language = Column(String, nullable=False, default="en")

    kind = Column(SQLEnum(ActionKind), nullable=False)
    entities = Column(JSON, nullable=False, default=dict)
    confidence = Column(Float, nullable=False)
    source_text = Column(String, nullable=False)

    # Evaluation snapshot, taken once at creation
    proposed_action = Column(SQLEnum(ProposedAction), nullable=False)
    requires_approval = Column(Boolean, nullable=False, default=False)
    risk_level = Column(SQLEnum(RiskLevel), nullable=False, default=RiskLevel.LOW)
    reasons = Column(JSON, nullable=False, default=list)

    state = Column(SQLEnum(RequestState), nullable=False, default=RequestState.CREATED)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    approval = relationship("ApprovalRecord", back_populates="request", uselist=False)
    execution = relationship("ExecutionRecord", back_populates="request", uselist=False)


class ApprovalRecord(Base):
    """
    Human sign-off for one gated ActionRequest.

    Invariants:
    - At most one pending record per actor (the ActorLock row enforces it)
    - resolved_by and resolved_at are set exactly once, when leaving pending
    - executed_at is only set after a successful post-approval execution
    - Never deleted; terminal records stay for audit
    """
    __tablename__ = "approval_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    approval_id = Column(String, unique=True, nullable=False, index=True, default=new_id)
    request_id = Column(String, ForeignKey("action_requests.request_id"), unique=True, nullable=False)
    actor_id = Column(String, nullable=False, index=True)

    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING, index=True)
    priority = Column(SQLEnum(RiskLevel), nullable=False, default=RiskLevel.LOW)
    # Sortable copy of priority for the pending queue scan
    priority_rank = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    executed_at = Column(DateTime, nullable=True)
    failure_detail = Column(JSON, nullable=True)

    request = relationship("ActionRequest", back_populates="approval")


class ActorLock(Base):
    """
    Mutual-exclusion marker for one actor.

    The primary key is the lock: a second insert for the same actor fails,
    no matter which process or thread attempts it.
    """
    __tablename__ = "action_locks"

    actor_id = Column(String, primary_key=True)
    acquired_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ExecutionRecord(Base):
    """
    Idempotency ledger for the executor, one row per executed request.

    Invariants:
    - A success result is replayed, never re-performed
    - Only a failed execution (explicit retry) or a stale claim may be claimed again
    """
    __tablename__ = "execution_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    request_id = Column(String, ForeignKey("action_requests.request_id"), unique=True, nullable=False)
    status = Column(SQLEnum(ExecutionStatus), nullable=False, default=ExecutionStatus.EXECUTING)
    detail = Column(JSON, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)

    request = relationship("ActionRequest", back_populates="execution")
