"""
Notification fan-out.

Delivery is best-effort: a bounded number of attempts with exponential
backoff, then the message is dropped and the drop is audited. notify() never
raises and never touches request or approval state.
"""
import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizagent.models.audit import AuditEventType
from bizagent.models.enums import Channel
from bizagent.services.audit import record_audit
from bizagent.services.errors import NotificationDeliveryFailure
from bizagent.services.privacy import mask_pii

logger = logging.getLogger(__name__)


class AdminFeed:
    """Most recent notifications, for the admin console."""

    def __init__(self, maxlen: int = 100):
        self._items = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def publish(self, entry: Dict[str, Any]) -> None:
        entry = dict(mask_pii(entry))
        entry.setdefault("created_at", datetime.utcnow().isoformat())
        with self._lock:
            self._items.appendleft(entry)

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._items)[:max(0, int(limit))]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


ADMIN_FEED = AdminFeed()


class Notifier:

    def __init__(
        self,
        db: Session,
        channels: Mapping[Channel, Any],
        max_attempts: int = 3,
        backoff_sec: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        feed: Optional[AdminFeed] = None,
        dispatch: Optional[Callable[..., Any]] = None
    ):
        self.db = db
        self.channels = channels
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_sec = backoff_sec
        self.sleep = sleep
        self.feed = feed or ADMIN_FEED
        # e.g. BackgroundTasks.add_task; None delivers inline
        self.dispatch = dispatch

    def notify(self, actor_id: str, channel: Channel, message: str, event: Optional[str] = None) -> bool:
        """
        Deliver `message` to the actor. Returns whether delivery succeeded.

        With a dispatcher, delivery and its retries run later, outside the
        caller; True then only means the delivery was queued.
        """
        channel = Channel(channel)
        self.feed.publish({
            "type": "customer_message",
            "event": event,
            "actor_id": actor_id,
            "channel": channel.value,
            "message": message,
        })

        if self.dispatch is not None:
            self.dispatch(self.deliver, actor_id, channel, message, event)
            return True
        return self.deliver(actor_id, channel, message, event)

    def deliver(self, actor_id: str, channel: Channel, message: str, event: Optional[str] = None) -> bool:
        """Send with bounded retries; a final failure is dropped and audited."""
        channel = Channel(channel)
        adapter = self.channels.get(channel)
        if adapter is None:
            self._drop(actor_id, channel, event, 0, f"No adapter for channel {channel.value}")
            return False

        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                adapter.send(actor_id, message)
                return True
            except Exception as exc:
                # Adapter failures of any kind count as a failed attempt
                last_error = str(exc) or type(exc).__name__
                logger.warning("Notification to %s via %s failed (attempt %d/%d): %s",
                               actor_id, channel.value, attempt, self.max_attempts, last_error)
                if attempt < self.max_attempts:
                    self.sleep(self.backoff_sec * (2 ** (attempt - 1)))

        self._drop(actor_id, channel, event, self.max_attempts, last_error)
        return False

    def alert_admins(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        """Admin-console alert, e.g. a new approval waiting in the queue."""
        entry = {"type": "admin_alert", "message": message}
        entry.update(detail or {})
        self.feed.publish(entry)

    def _drop(self, actor_id: str, channel: Channel, event: Optional[str], attempts: int, error: str) -> None:
        failure = NotificationDeliveryFailure(
            f"Dropped notification to {actor_id} via {channel.value}",
            {"channel": channel.value, "attempts": attempts, "error": error, "event": event}
        )
        logger.error("%s: %s", failure.message, error)
        try:
            record_audit(
                self.db,
                AuditEventType.NOTIFICATION_FAILED,
                actor_id,
                failure.to_dict(),
                entity_type="Notification",
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not audit dropped notification for %s", actor_id)
