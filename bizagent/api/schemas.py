"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from bizagent.models.enums import (
    ActionKind,
    ApprovalStatus,
    Channel,
    Decision,
    ExecutionStatus,
    ProposedAction,
    RequestState,
    RiskLevel
)


# Inbound schemas
class MessageCreate(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1, max_length=2000)
    channel: Channel = Channel.WEB
    language: Optional[str] = None
    customer_name: Optional[str] = None
    history: List[str] = []


class PipelineResponse(BaseModel):
    status: str
    reply: str
    confidence: Optional[float]
    request_id: Optional[str]
    approval_id: Optional[str]
    requires_approval: bool
    risk_level: Optional[RiskLevel]
    reasons: List[str]
    execution: Optional[Dict[str, Any]]
    language: str


class OutboxMessage(BaseModel):
    text: str
    sent_at: str


# Approval schemas
class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_id: str
    request_id: str
    actor_id: str
    status: ApprovalStatus
    priority: RiskLevel
    created_at: datetime
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    executed_at: Optional[datetime]
    failure_detail: Optional[Dict[str, Any]]


class DecisionCreate(BaseModel):
    decision: Decision
    resolved_by: str = Field(..., min_length=1, max_length=100)


class ExecutionResponse(BaseModel):
    status: ExecutionStatus
    detail: Dict[str, Any]


class DecisionResponse(BaseModel):
    approval: Optional[ApprovalResponse]
    request_state: RequestState
    execution: Optional[ExecutionResponse]


# Request schemas
class ActionRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: str
    actor_id: str
    channel: Channel
    language: str
    kind: ActionKind
    entities: Dict[str, Any]
    confidence: float
    proposed_action: ProposedAction
    requires_approval: bool
    risk_level: RiskLevel
    reasons: List[str]
    state: RequestState
    created_at: datetime
    updated_at: datetime


# Audit schemas
class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    actor_id: Optional[str]
    created_at: datetime
    detail_json: Optional[Dict[str, Any]]


# Error response
class ErrorResponse(BaseModel):
    """Structured rejection returned by admin endpoints."""
    code: str
    message: str
    detail: Dict[str, Any] = {}


class HTTPErrorResponse(BaseModel):
    """Body of a 4xx raised through HTTPException."""
    detail: ErrorResponse
