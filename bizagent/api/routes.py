"""API routes for inbound messages and the admin approval console."""
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from bizagent.api.schemas import (
    ActionRequestResponse,
    ApprovalResponse,
    AuditEventResponse,
    DecisionCreate,
    DecisionResponse,
    HTTPErrorResponse,
    MessageCreate,
    OutboxMessage,
    PipelineResponse
)
from bizagent.api.webhooks import normalize_telegram_update, normalize_whatsapp_payload
from bizagent.config import Settings, settings
from bizagent.database import get_db
from bizagent.models.domain import ActionRequest
from bizagent.services.approval_store import ApprovalStore
from bizagent.services.audit import recent_events
from bizagent.services.channels import WEB_OUTBOX, WebOutbox, build_channels
from bizagent.services.classifier import build_classifier
from bizagent.services.errors import (
    ActionRequestNotFound,
    ApprovalAlreadyResolved,
    ApprovalNotFound,
    InvalidTransition,
    PipelineError
)
from bizagent.services.notifier import ADMIN_FEED, AdminFeed, Notifier
from bizagent.services.pipeline import DecisionOutcome, InboundMessage, MessagePipeline

router = APIRouter()

ERROR_STATUS = {
    ApprovalNotFound: status.HTTP_404_NOT_FOUND,
    ActionRequestNotFound: status.HTTP_404_NOT_FOUND,
    ApprovalAlreadyResolved: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
}

ERROR_RESPONSES = {
    404: {"model": HTTPErrorResponse, "description": "Unknown approval or request"},
    409: {"model": HTTPErrorResponse, "description": "Already resolved or invalid transition"},
}


def _http_error(err: PipelineError) -> HTTPException:
    code = ERROR_STATUS.get(type(err), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail=err.to_dict())


# Dependencies
def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def get_classifier():
    return build_classifier(settings)


@lru_cache(maxsize=1)
def get_channels():
    return build_channels(settings)


def get_admin_feed() -> AdminFeed:
    return ADMIN_FEED


def get_web_outbox() -> WebOutbox:
    return WEB_OUTBOX


def get_notifier(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    channels=Depends(get_channels),
    feed: AdminFeed = Depends(get_admin_feed),
    config: Settings = Depends(get_settings)
) -> Notifier:
    # Deliveries and their backoff run after the response is sent
    return Notifier(
        db,
        channels,
        max_attempts=config.notify_max_attempts,
        backoff_sec=config.notify_backoff_sec,
        feed=feed,
        dispatch=background_tasks.add_task
    )


def get_pipeline(
    db: Session = Depends(get_db),
    classifier=Depends(get_classifier),
    notifier: Notifier = Depends(get_notifier),
    config: Settings = Depends(get_settings)
) -> MessagePipeline:
    return MessagePipeline(
        db, classifier, notifier, config.thresholds, stale_after_sec=config.execution_stale_sec
    )


def require_admin(
    x_admin_token: str = Header(default="", alias="X-Admin-Token"),
    config: Settings = Depends(get_settings)
) -> bool:
    if not config.admin_token:
        raise HTTPException(status_code=500, detail="Server misconfigured: ADMIN_TOKEN is not set.")
    if x_admin_token != config.admin_token:
        raise HTTPException(status_code=401, detail="Unauthorized: invalid admin token.")
    return True


def _decision_response(outcome: DecisionOutcome) -> Dict[str, Any]:
    approval = outcome.approval
    return {
        "approval": ApprovalResponse.model_validate(approval) if approval is not None else None,
        "request_state": outcome.request_state,
        "execution": outcome.execution.to_dict() if outcome.execution else None,
    }


# Inbound endpoints
@router.post("/messages", response_model=PipelineResponse)
def post_message(message: MessageCreate, pipeline: MessagePipeline = Depends(get_pipeline)):
    """Web-form inbound message. The reply is also queued in the actor's outbox."""
    result = pipeline.handle(InboundMessage(
        actor_id=message.actor_id,
        text=message.text,
        channel=message.channel,
        language=message.language,
        context={"customer_name": message.customer_name},
        history=message.history,
    ))
    return result.to_dict()


@router.get("/messages/{actor_id}/outbox", response_model=List[OutboxMessage])
def get_outbox(actor_id: str, outbox: WebOutbox = Depends(get_web_outbox)):
    """Replies queued for a web-form actor."""
    return outbox.messages(actor_id)


@router.post("/webhooks/telegram")
def telegram_webhook(update: Dict[str, Any], pipeline: MessagePipeline = Depends(get_pipeline)):
    """
    Telegram bot update. Always answers 200 so Telegram does not redeliver;
    ignored updates say why.
    """
    inbound, reason = normalize_telegram_update(update)
    if inbound is None:
        return {"ok": True, "ignored": reason}
    return {"ok": True, "result": pipeline.handle(inbound).to_dict()}


@router.get("/webhooks/whatsapp", response_class=PlainTextResponse)
def verify_whatsapp_webhook(
    mode: str = Query("", alias="hub.mode"),
    verify_token: str = Query("", alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
    config: Settings = Depends(get_settings)
):
    """Meta subscription handshake: echo the challenge when the token matches."""
    if mode == "subscribe" and config.whatsapp_verify_token and verify_token == config.whatsapp_verify_token:
        return challenge
    raise HTTPException(status_code=403, detail="Webhook verification failed.")


@router.post("/webhooks/whatsapp")
def whatsapp_webhook(payload: Dict[str, Any], pipeline: MessagePipeline = Depends(get_pipeline)):
    """WhatsApp Cloud API webhook; one pipeline run per text message."""
    results = [pipeline.handle(inbound).to_dict() for inbound in normalize_whatsapp_payload(payload)]
    return {"ok": True, "processed": len(results), "results": results}


# Approval endpoints
@router.get("/approvals", response_model=List[ApprovalResponse], dependencies=[Depends(require_admin)])
def list_approvals(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    """Pending queue: high priority first, oldest first within a priority."""
    return ApprovalStore(db).list_pending(limit=limit, offset=offset)


@router.get(
    "/approvals/{approval_id}",
    response_model=ApprovalResponse,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_admin)]
)
def get_approval(approval_id: str, db: Session = Depends(get_db)):
    approval = ApprovalStore(db).get(approval_id)
    if approval is None:
        raise _http_error(ApprovalNotFound(approval_id))
    return approval


@router.post(
    "/approvals/{approval_id}/decision",
    response_model=DecisionResponse,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_admin)]
)
def decide_approval(
    approval_id: str,
    decision: DecisionCreate,
    pipeline: MessagePipeline = Depends(get_pipeline)
):
    """
    Approve or reject a pending request.

    An approved request executes immediately; the execution outcome is part
    of the response.
    """
    try:
        outcome = pipeline.decide(approval_id, decision.decision, decision.resolved_by)
    except PipelineError as e:
        raise _http_error(e)
    return _decision_response(outcome)


# Request endpoints
@router.get(
    "/requests/{request_id}",
    response_model=ActionRequestResponse,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_admin)]
)
def get_request(request_id: str, db: Session = Depends(get_db)):
    request = db.query(ActionRequest).filter(ActionRequest.request_id == request_id).first()
    if request is None:
        raise _http_error(ActionRequestNotFound(request_id))
    return request


@router.post(
    "/requests/{request_id}/execute",
    response_model=DecisionResponse,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_admin)]
)
def retry_request(request_id: str, pipeline: MessagePipeline = Depends(get_pipeline)):
    """Explicit retry of a failed execution. Executed requests return their stored result."""
    try:
        outcome = pipeline.retry(request_id)
    except PipelineError as e:
        raise _http_error(e)
    return _decision_response(outcome)


# Audit and console endpoints
@router.get("/audit/recent", response_model=List[AuditEventResponse], dependencies=[Depends(require_admin)])
def get_recent_audit(
    limit: int = Query(50, ge=1, le=200),
    actor_id: Optional[str] = None,
    db: Session = Depends(get_db)
):
    return recent_events(db, limit=limit, actor_id=actor_id)


@router.get("/admin/notifications", dependencies=[Depends(require_admin)])
def get_admin_notifications(
    limit: int = Query(50, ge=1, le=100),
    feed: AdminFeed = Depends(get_admin_feed)
):
    """Most recent customer and admin notifications."""
    return feed.recent(limit)
