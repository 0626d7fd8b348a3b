"""Enums for the approval pipeline - these define the valid kinds, states and decisions."""
from enum import Enum


class ActionKind(str, Enum):
    """What the customer asked for, as classified."""
    CREATE_ORDER = "create_order"
    GENERATE_INVOICE = "generate_invoice"
    SEND_PAYMENT_REMINDER = "send_payment_reminder"
    UPDATE_INVENTORY = "update_inventory"
    REFUND = "refund"
    DATA_EXPORT = "data_export"
    FOLLOW_UP = "follow_up"
    GENERAL_QUERY = "general_query"


class ProposedAction(str, Enum):
    """
    The action the executor will actually perform.

    Mirrors ActionKind, plus a clarification request that replaces the
    original action when the classifier is not confident enough.
    """
    CREATE_ORDER = "create_order"
    GENERATE_INVOICE = "generate_invoice"
    SEND_PAYMENT_REMINDER = "send_payment_reminder"
    UPDATE_INVENTORY = "update_inventory"
    REFUND = "refund"
    DATA_EXPORT = "data_export"
    FOLLOW_UP = "follow_up"
    GENERAL_QUERY = "general_query"
    REQUEST_CLARIFICATION = "request_clarification"

    @classmethod
    def for_kind(cls, kind: ActionKind) -> "ProposedAction":
        return cls(ActionKind(kind).value)


class RequestState(str, Enum):
    """Lifecycle of one ActionRequest. No other states are allowed."""
    CREATED = "created"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"


class ApprovalStatus(str, Enum):
    """Pending until an admin decides; approved and rejected are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    """An admin's verdict on a pending approval."""
    APPROVED = "approved"
    REJECTED = "rejected"


class RiskLevel(str, Enum):
    """Advisory severity. Orders the admin queue, never gates execution."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class ExecutionStatus(str, Enum):
    EXECUTING = "executing"
    SUCCESS = "success"
    FAILED = "failed"


class Channel(str, Enum):
    """Transports a customer can reach us through."""
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    WEB = "web"
