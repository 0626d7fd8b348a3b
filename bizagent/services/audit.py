"""Append-only audit log writer and reader."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bizagent.models.audit import AuditEvent
from bizagent.services.privacy import mask_pii

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    event: str,
    actor_id: Optional[str],
    detail: Optional[Dict[str, Any]] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    commit: bool = True
) -> AuditEvent:
    """
    Append one audit entry. Detail is masked before it is persisted.

    With commit=False the entry joins the caller's transaction, so it lands
    together with the state change it describes.
    """
    entry = AuditEvent(
        event_type=event,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        detail_json=mask_pii(detail or {})
    )
    db.add(entry)
    if commit:
        db.commit()
    logger.debug("audit %s entity=%s:%s", event, entity_type, entity_id)
    return entry


def recent_events(db: Session, limit: int = 50, actor_id: Optional[str] = None) -> List[AuditEvent]:
    limit = max(1, min(int(limit), 200))
    query = db.query(AuditEvent)
    if actor_id:
        query = query.filter(AuditEvent.actor_id == actor_id)
    return query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
