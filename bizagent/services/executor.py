"""
Action executor - performs the business effect of an authorized request.

Dispatches on the request's proposed action to the business store. Execution
is idempotent per request_id: the execution_records row is claimed before the
side effect runs, and a successful result is replayed on every later call.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import and_, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bizagent.models.domain import ActionRequest, ExecutionRecord
from bizagent.models.enums import ExecutionStatus, ProposedAction
from bizagent.services.business_store import GST_RATE, BusinessStore
from bizagent.services.errors import ActionRequestNotFound, ExecutionFailure
from bizagent.services.rules import amount_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    status: ExecutionStatus
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def in_progress(self) -> bool:
        return self.status == ExecutionStatus.EXECUTING

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "detail": dict(self.detail)}


IN_PROGRESS = ExecutionResult(ExecutionStatus.EXECUTING, {"message": "execution already in progress"})

# A claim older than this is treated as abandoned by a crashed worker
DEFAULT_STALE_AFTER_SEC = 300.0

Handler = Callable[[ActionRequest], Dict[str, Any]]


class ActionExecutor:

    def __init__(
        self,
        db: Session,
        store: Optional[BusinessStore] = None,
        stale_after_sec: float = DEFAULT_STALE_AFTER_SEC
    ):
        self.db = db
        self.store = store or BusinessStore(db)
        self.stale_after = timedelta(seconds=stale_after_sec)
        self._handlers: Dict[ProposedAction, Handler] = {
            ProposedAction.CREATE_ORDER: self._create_order,
            ProposedAction.GENERATE_INVOICE: self._generate_invoice,
            ProposedAction.SEND_PAYMENT_REMINDER: self._send_payment_reminder,
            ProposedAction.UPDATE_INVENTORY: self._update_inventory,
            ProposedAction.REFUND: self._refund,
            ProposedAction.DATA_EXPORT: self._data_export,
            ProposedAction.FOLLOW_UP: self._follow_up,
            ProposedAction.GENERAL_QUERY: self._general_query,
            ProposedAction.REQUEST_CLARIFICATION: self._request_clarification,
        }

    def execute(self, request_id: str) -> ExecutionResult:
        """
        Perform the request's action once.

        A repeated call after success returns the stored result without
        touching the collaborator. A collaborator failure comes back as a
        failed result; it is not retried here, a later call retries it.
        """
        request = self.db.query(ActionRequest).filter(
            ActionRequest.request_id == request_id
        ).first()
        if request is None:
            raise ActionRequestNotFound(request_id)

        if not self._claim(request_id):
            return self._replay(request_id)

        handler = self._handlers[ProposedAction(request.proposed_action)]
        try:
            detail = handler(request)
            result = ExecutionResult(ExecutionStatus.SUCCESS, detail)
        except Exception as exc:
            # Any collaborator failure is reported, never raised to the caller
            self.db.rollback()
            logger.warning("Execution of request %s failed: %s", request_id, exc)
            result = ExecutionResult(ExecutionStatus.FAILED, {
                "error": str(exc) or type(exc).__name__,
                "error_type": type(exc).__name__,
            })

        record = self._record(request_id)
        record.status = result.status
        record.detail = result.to_dict()["detail"]
        record.finished_at = datetime.utcnow()
        self.db.commit()

        logger.info("Request %s executed: %s", request_id, result.status.value)
        return result

    def last_result(self, request_id: str) -> Optional[ExecutionResult]:
        record = self._record(request_id)
        if record is None:
            return None
        if record.status == ExecutionStatus.EXECUTING:
            return IN_PROGRESS
        return ExecutionResult(ExecutionStatus(record.status), dict(record.detail or {}))

    def is_stale(self, request: ActionRequest) -> bool:
        """
        Whether an EXECUTING request was abandoned: its claim (or, with no
        claim yet, its last state change) is older than the stale window.
        """
        record = self._record(request.request_id)
        if record is not None and record.status != ExecutionStatus.EXECUTING:
            return False
        started = record.started_at if record is not None else request.updated_at
        return self._expired(started)

    def _expired(self, started: Optional[datetime]) -> bool:
        return started is not None and datetime.utcnow() - started >= self.stale_after

    def _record(self, request_id: str) -> Optional[ExecutionRecord]:
        return self.db.query(ExecutionRecord).filter(
            ExecutionRecord.request_id == request_id
        ).first()

    def _claim(self, request_id: str) -> bool:
        """
        Take the right to run the side effect. Only a first execution, a
        retry of a failed one, or a takeover of a stale claim can claim.
        """
        now = datetime.utcnow()
        record = self._record(request_id)
        if record is None:
            try:
                self.db.execute(insert(ExecutionRecord).values(
                    request_id=request_id,
                    status=ExecutionStatus.EXECUTING,
                    attempts=1,
                    started_at=now
                ))
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                return False
            return True

        if record.status == ExecutionStatus.FAILED:
            condition = ExecutionRecord.status == ExecutionStatus.FAILED
        elif record.status == ExecutionStatus.EXECUTING and self._expired(record.started_at):
            logger.warning("Reclaiming stale execution of request %s (started %s)",
                           request_id, record.started_at.isoformat())
            condition = and_(
                ExecutionRecord.status == ExecutionStatus.EXECUTING,
                ExecutionRecord.started_at == record.started_at
            )
        else:
            return False

        updated = self.db.query(ExecutionRecord).filter(
            ExecutionRecord.request_id == request_id,
            condition
        ).update(
            {
                ExecutionRecord.status: ExecutionStatus.EXECUTING,
                ExecutionRecord.attempts: ExecutionRecord.attempts + 1,
                ExecutionRecord.started_at: now,
                ExecutionRecord.finished_at: None,
            },
            synchronize_session=False
        )
        self.db.commit()
        return updated == 1

    def _replay(self, request_id: str) -> ExecutionResult:
        result = self.last_result(request_id)
        if result is None or result.in_progress:
            logger.info("Request %s is already executing elsewhere", request_id)
            return IN_PROGRESS
        logger.info("Request %s already executed, replaying result", request_id)
        return result

    # Handlers: one per proposed action

    def _create_order(self, request: ActionRequest) -> Dict[str, Any]:
        entities = request.entities or {}
        items = entities.get("items") or []
        if not items and not amount_of(entities):
            raise ExecutionFailure("An order needs at least one item or an amount.")

        order = self.store.create(
            "order",
            {"items": items, "amount": amount_of(entities)},
            customer_id=request.actor_id,
            status="confirmed",
            request_id=request.request_id
        )
        return {"order_id": order["record_id"], "amount": order["data"]["amount"]}

    def _generate_invoice(self, request: ActionRequest) -> Dict[str, Any]:
        entities = request.entities or {}
        amount = amount_of(entities)
        gst = round(amount * GST_RATE, 2)
        invoice = self.store.create(
            "invoice",
            {
                "customer": entities.get("customer"),
                "items": entities.get("items") or [],
                "amount": amount,
                "gst": gst,
                "total": round(amount + gst, 2),
            },
            customer_id=request.actor_id,
            status="issued",
            request_id=request.request_id
        )
        return {
            "invoice_id": invoice["record_id"],
            "amount": amount,
            "gst": gst,
            "total": invoice["data"]["total"],
        }

    def _send_payment_reminder(self, request: ActionRequest) -> Dict[str, Any]:
        entities = request.entities or {}
        reminder = self.store.create(
            "reminder",
            {
                "customer": entities.get("customer"),
                "amount": amount_of(entities),
                "due_days": entities.get("due_days"),
            },
            customer_id=request.actor_id,
            status="queued",
            request_id=request.request_id
        )
        return {"reminder_id": reminder["record_id"], "status": reminder["status"]}

    def _update_inventory(self, request: ActionRequest) -> Dict[str, Any]:
        items = (request.entities or {}).get("items") or []
        if not items:
            raise ExecutionFailure("No inventory items to update.")
        updated = self.store.set_inventory(items)
        return {"updated_items": len(updated), "items": updated}

    def _refund(self, request: ActionRequest) -> Dict[str, Any]:
        entities = request.entities or {}
        order_id = entities.get("order_id")
        if order_id:
            self.store.update_status("order", order_id, "refunded")

        refund = self.store.create(
            "refund",
            {"order_id": order_id, "amount": amount_of(entities)},
            customer_id=request.actor_id,
            status="issued",
            request_id=request.request_id
        )
        return {"refund_id": refund["record_id"], "order_id": order_id, "amount": amount_of(entities)}

    def _data_export(self, request: ActionRequest) -> Dict[str, Any]:
        summary = {
            "orders": self.store.count("order", request.actor_id),
            "invoices": self.store.count("invoice", request.actor_id),
        }
        export = self.store.create(
            "export",
            {"scope": (request.entities or {}).get("scope", "customer"), "summary": summary},
            customer_id=request.actor_id,
            status="ready",
            request_id=request.request_id
        )
        return {"export_id": export["record_id"], "summary": summary}

    def _follow_up(self, request: ActionRequest) -> Dict[str, Any]:
        entities = request.entities or {}
        follow_up = self.store.create(
            "follow_up",
            {"customer": entities.get("customer"), "urgency": entities.get("urgency", "medium")},
            customer_id=request.actor_id,
            status="sent",
            request_id=request.request_id
        )
        return {"follow_up_id": follow_up["record_id"]}

    def _general_query(self, request: ActionRequest) -> Dict[str, Any]:
        return {"action": "none"}

    def _request_clarification(self, request: ActionRequest) -> Dict[str, Any]:
        return {"action": "clarification_requested", "original_kind": request.kind.value}
