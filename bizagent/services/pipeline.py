"""
The approval-gated action pipeline.

One inbound message goes: lock pre-check -> classify -> evaluate -> either
execute immediately, or take the actor's lock and open an approval. An admin
decision later resolves the approval and, when approved, executes.

Handlers take a transport-agnostic InboundMessage; the HTTP layer normalizes
Telegram, WhatsApp and web-form payloads into one.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizagent.config import RuleThresholds
from bizagent.models.audit import AuditEventType
from bizagent.models.domain import ActionRequest, ApprovalRecord, new_id
from bizagent.models.enums import (
    ActionKind,
    ApprovalStatus,
    Channel,
    Decision,
    ProposedAction,
    RequestState
)
from bizagent.services import messages
from bizagent.services.action_lock import ActionLock
from bizagent.services.approval_store import ApprovalStore
from bizagent.services.audit import record_audit
from bizagent.services.business_store import BusinessStore
from bizagent.services.classifier import Classification
from bizagent.services.errors import (
    ActionRequestNotFound,
    ApprovalAlreadyResolved,
    ApprovalNotFound,
    InvalidTransition,
    LockContention
)
from bizagent.services.executor import DEFAULT_STALE_AFTER_SEC, ActionExecutor, ExecutionResult
from bizagent.services.notifier import Notifier
from bizagent.services.rules import describe, evaluate
from bizagent.services.state_machine import StateMachine

logger = logging.getLogger(__name__)

TROUBLE_CONFIDENCE = 0.1


class Outcome:
    """Pipeline result statuses."""
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution_failed"
    IN_PROGRESS = "execution_in_progress"
    AWAITING_APPROVAL = "awaiting_approval"
    LOCK_CONTENTION = "lock_contention"
    FALLBACK = "fallback"
    ERROR = "error"


@dataclass
class InboundMessage:
    actor_id: str
    text: str
    channel: Channel = Channel.WEB
    language: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    history: List[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    status: str
    reply: str
    confidence: Optional[float] = None
    request_id: Optional[str] = None
    approval_id: Optional[str] = None
    requires_approval: bool = False
    risk_level: Optional[str] = None
    reasons: List[str] = field(default_factory=list)
    execution: Optional[Dict[str, Any]] = None
    language: str = messages.DEFAULT_LANGUAGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reply": self.reply,
            "confidence": self.confidence,
            "request_id": self.request_id,
            "approval_id": self.approval_id,
            "requires_approval": self.requires_approval,
            "risk_level": self.risk_level,
            "reasons": list(self.reasons),
            "execution": self.execution,
            "language": self.language,
        }


@dataclass
class DecisionOutcome:
    approval: ApprovalRecord
    request_state: RequestState
    execution: Optional[ExecutionResult] = None


class MessagePipeline:

    def __init__(
        self,
        db: Session,
        classifier,
        notifier: Notifier,
        thresholds: Optional[RuleThresholds] = None,
        store: Optional[BusinessStore] = None,
        stale_after_sec: float = DEFAULT_STALE_AFTER_SEC
    ):
        self.db = db
        self.classifier = classifier
        self.notifier = notifier
        self.thresholds = thresholds or RuleThresholds()
        self.store = store or BusinessStore(db)
        self.lock = ActionLock(db)
        self.approvals = ApprovalStore(db, self.lock)
        self.executor = ActionExecutor(db, self.store, stale_after_sec=stale_after_sec)
        self.state_machine = StateMachine(db)

    # ----------------------------
    # Inbound
    # ----------------------------

    def handle(self, event: InboundMessage) -> PipelineResult:
        """
        Process one inbound message and deliver the reply to the actor.

        Never raises: internal faults become the "having trouble" reply and a
        processing_failed audit entry.
        """
        language = event.language or messages.detect_language(event.text)
        try:
            result = self._handle(event, language)
        except Exception as exc:
            self.db.rollback()
            logger.exception("Processing failed for actor %s", event.actor_id)
            self._audit_safely(
                AuditEventType.PROCESSING_FAILED,
                event.actor_id,
                {"channel": Channel(event.channel).value, "error_type": type(exc).__name__}
            )
            result = PipelineResult(
                status=Outcome.ERROR,
                reply=messages.text("trouble", language),
                confidence=TROUBLE_CONFIDENCE,
                language=language,
            )

        self.notifier.notify(event.actor_id, event.channel, result.reply, event=result.status)
        return result

    def _handle(self, event: InboundMessage, language: str) -> PipelineResult:
        actor_id = event.actor_id

        # Same-actor ordering: nothing new while an approval is pending
        if self._lock_held(actor_id):
            return self._please_wait(event, language, stage="pre_check")

        classification = self.classifier.classify(event.text, event.context, event.history)
        if classification.fallback:
            record_audit(
                self.db,
                AuditEventType.CLASSIFICATION_FALLBACK,
                actor_id,
                {"reason": classification.fallback_reason, "channel": Channel(event.channel).value}
            )
            return PipelineResult(
                status=Outcome.FALLBACK,
                reply=messages.text("let_me_check", language),
                confidence=classification.confidence,
                language=language,
            )

        request = self._build_request(event, classification, language)

        if not request.requires_approval:
            self.db.add(request)
            self._audit_created(request)
            self.db.commit()
            return self._execute(request, approval=None, classification=classification)

        return self._gate(event, request, language)

    def _build_request(self, event: InboundMessage, classification: Classification, language: str) -> ActionRequest:
        entities = dict(classification.entities or {})
        if entities.get("customer_order_count") is None:
            entities["customer_order_count"] = self.store.customer_order_count(event.actor_id)

        request = ActionRequest(
            request_id=new_id(),
            actor_id=event.actor_id,
            channel=Channel(event.channel),
            language=language,
            kind=ActionKind(classification.intent),
            entities=entities,
            confidence=classification.confidence,
            source_text=event.text,
            state=RequestState.CREATED,
        )
        evaluation = evaluate(request, self.thresholds)
        request.proposed_action = evaluation.proposed_action
        request.requires_approval = evaluation.requires_approval
        request.risk_level = evaluation.risk_level
        request.reasons = list(evaluation.reasons)
        return request

    def _gate(self, event: InboundMessage, request: ActionRequest, language: str) -> PipelineResult:
        actor_id = event.actor_id
        # Lock row, request and approval land in one commit
        if not self.lock.try_acquire(actor_id, commit=False):
            return self._please_wait(event, language, stage="acquire")

        try:
            self.db.add(request)
            self.db.flush()
            self.state_machine.transition(request, RequestState.AWAITING_APPROVAL, commit=False)
            approval = self.approvals.create(
                request.request_id, actor_id, request.risk_level, commit=False
            )
            self._audit_created(request)
            record_audit(
                self.db,
                AuditEventType.APPROVAL_CREATED,
                actor_id,
                {"request_id": request.request_id, "priority": request.risk_level.value},
                entity_type="ApprovalRecord",
                entity_id=approval.approval_id,
                commit=False
            )
            self.db.commit()
        except LockContention:
            self.db.rollback()
            return self._please_wait(event, language, stage="approval_store")
        except Exception:
            self.db.rollback()
            raise

        self.notifier.alert_admins(
            f"Approval needed: {request.kind.value} from {actor_id} ({describe(request.reasons)})",
            {
                "approval_id": approval.approval_id,
                "request_id": request.request_id,
                "priority": request.risk_level.value,
            }
        )
        logger.info("Request %s awaiting approval %s", request.request_id, approval.approval_id)

        return PipelineResult(
            status=Outcome.AWAITING_APPROVAL,
            reply=messages.text("approval_pending", language),
            confidence=request.confidence,
            request_id=request.request_id,
            approval_id=approval.approval_id,
            requires_approval=True,
            risk_level=request.risk_level.value,
            reasons=list(request.reasons),
            language=language,
        )

    def _please_wait(self, event: InboundMessage, language: str, stage: str) -> PipelineResult:
        record_audit(
            self.db,
            AuditEventType.LOCK_CONTENTION,
            event.actor_id,
            {"stage": stage, "channel": Channel(event.channel).value}
        )
        return PipelineResult(
            status=Outcome.LOCK_CONTENTION,
            reply=messages.text("please_wait", language),
            language=language,
        )

    # ----------------------------
    # Admin decisions
    # ----------------------------

    def decide(self, approval_id: str, decision: Decision, resolved_by: str) -> DecisionOutcome:
        """
        Resolve a pending approval. Approved requests are executed right away;
        rejected ones never reach the executor.

        Raises:
            ApprovalNotFound, ApprovalAlreadyResolved
        """
        decision = Decision(decision)
        approval = self.approvals.get(approval_id)
        if approval is None:
            raise ApprovalNotFound(approval_id)
        if approval.status != ApprovalStatus.PENDING:
            raise ApprovalAlreadyResolved(approval_id, approval.status.value)

        request = approval.request
        approved = decision == Decision.APPROVED

        # Request state and audit entry land in the same commit as the resolution
        self.state_machine.transition(
            request,
            RequestState.APPROVED if approved else RequestState.REJECTED,
            commit=False
        )
        record_audit(
            self.db,
            AuditEventType.APPROVAL_APPROVED if approved else AuditEventType.APPROVAL_REJECTED,
            approval.actor_id,
            {"request_id": request.request_id, "resolved_by": resolved_by},
            entity_type="ApprovalRecord",
            entity_id=approval.approval_id,
            commit=False
        )
        approval = self.approvals.resolve(approval_id, decision, resolved_by)

        if not approved:
            self.notifier.notify(
                request.actor_id,
                request.channel,
                messages.text("approval_rejected", request.language),
                event=AuditEventType.APPROVAL_REJECTED
            )
            return DecisionOutcome(approval=approval, request_state=RequestState.REJECTED)

        self._execute(request, approval=approval, notify=True)
        return DecisionOutcome(
            approval=approval,
            request_state=RequestState(request.state),
            execution=self.executor.last_result(request.request_id),
        )

    def retry(self, request_id: str) -> DecisionOutcome:
        """
        Explicit admin retry of a failed execution. A request that already
        executed returns its stored result without running again. A request
        stuck in EXECUTING is resumed once its claim has gone stale.

        Raises:
            ActionRequestNotFound, InvalidTransition
        """
        request = self.db.query(ActionRequest).filter(
            ActionRequest.request_id == request_id
        ).first()
        if request is None:
            raise ActionRequestNotFound(request_id)

        approval = self.approvals.get_by_request(request_id)
        if request.state == RequestState.EXECUTED:
            return DecisionOutcome(
                approval=approval,
                request_state=RequestState.EXECUTED,
                execution=self.executor.last_result(request_id),
            )

        resume = request.state == RequestState.EXECUTING
        if resume and not self.executor.is_stale(request):
            raise InvalidTransition(
                f"Request {request_id} is still executing.",
                {"from": RequestState.EXECUTING.value, "to": RequestState.EXECUTING.value,
                 "reason": "execution_in_progress"}
            )

        self._execute(request, approval=approval, notify=True, resume=resume)
        return DecisionOutcome(
            approval=approval,
            request_state=RequestState(request.state),
            execution=self.executor.last_result(request_id),
        )

    # ----------------------------
    # Execution
    # ----------------------------

    def _execute(
        self,
        request: ActionRequest,
        approval: Optional[ApprovalRecord],
        classification: Optional[Classification] = None,
        notify: bool = False,
        resume: bool = False
    ) -> PipelineResult:
        if not resume:
            self.state_machine.transition(request, RequestState.EXECUTING)
        result = self.executor.execute(request.request_id)

        if result.in_progress:
            # Another worker owns the claim and will record the outcome
            logger.info("Request %s is already executing; leaving it to its owner", request.request_id)
            return PipelineResult(
                status=Outcome.IN_PROGRESS,
                reply=messages.text("in_progress", request.language),
                confidence=request.confidence,
                request_id=request.request_id,
                approval_id=approval.approval_id if approval is not None else None,
                requires_approval=request.requires_approval,
                risk_level=request.risk_level.value,
                reasons=list(request.reasons or []),
                execution=result.to_dict(),
                language=request.language,
            )

        if result.succeeded:
            self.state_machine.transition(request, RequestState.EXECUTED, commit=False)
            if approval is not None:
                self.approvals.mark_executed(approval, commit=False)
            event = AuditEventType.ACTION_EXECUTED
        else:
            self.state_machine.transition(request, RequestState.FAILED, commit=False)
            if approval is not None:
                self.approvals.mark_failed(approval, result.detail, commit=False)
            event = AuditEventType.EXECUTION_FAILED

        record_audit(
            self.db,
            event,
            request.actor_id,
            {
                "request_id": request.request_id,
                "proposed_action": request.proposed_action.value,
                "result": result.to_dict(),
            },
            entity_type="ActionRequest",
            entity_id=request.request_id,
            commit=False
        )
        self.db.commit()

        reply = self._reply_for(request, result, approved=approval is not None, classification=classification)
        if notify:
            self.notifier.notify(request.actor_id, request.channel, reply, event=event)

        return PipelineResult(
            status=Outcome.EXECUTED if result.succeeded else Outcome.EXECUTION_FAILED,
            reply=reply,
            confidence=request.confidence,
            request_id=request.request_id,
            approval_id=approval.approval_id if approval is not None else None,
            requires_approval=request.requires_approval,
            risk_level=request.risk_level.value,
            reasons=list(request.reasons or []),
            execution=result.to_dict(),
            language=request.language,
        )

    def _reply_for(
        self,
        request: ActionRequest,
        result: ExecutionResult,
        approved: bool,
        classification: Optional[Classification]
    ) -> str:
        language = request.language
        if not result.succeeded:
            return messages.text("execution_failed", language)
        if request.proposed_action == ProposedAction.REQUEST_CLARIFICATION:
            return messages.text("clarification", language)
        if request.proposed_action == ProposedAction.GENERAL_QUERY:
            if classification is not None and classification.reply:
                return classification.reply
            return messages.text("help", language)
        return messages.text("approval_approved" if approved else "executed", language)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _lock_held(self, actor_id: str) -> bool:
        """
        Whether the actor is waiting on an approval. A lock row with no
        pending approval behind it is an orphan and is released here.
        """
        if not self.lock.is_held(actor_id):
            return False
        if self.approvals.get_by_actor(actor_id) is not None:
            return True

        logger.warning("Releasing orphaned lock for actor %s", actor_id)
        self.lock.release(actor_id)
        return False

    def _audit_created(self, request: ActionRequest) -> None:
        record_audit(
            self.db,
            AuditEventType.REQUEST_CREATED,
            request.actor_id,
            {
                "request_id": request.request_id,
                "kind": request.kind.value,
                "channel": request.channel.value,
                "confidence": request.confidence,
                "proposed_action": request.proposed_action.value,
                "requires_approval": request.requires_approval,
                "risk_level": request.risk_level.value,
                "reasons": list(request.reasons),
            },
            entity_type="ActionRequest",
            entity_id=request.request_id,
            commit=False
        )

    def _audit_safely(self, event: str, actor_id: str, detail: Dict[str, Any]) -> None:
        try:
            record_audit(self.db, event, actor_id, detail)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not write %s audit entry for %s", event, actor_id)
