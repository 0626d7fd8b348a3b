"""
Per-actor action lock.

The lock lives in the same database as the approval records, so releasing it
can share a commit with the approval resolution. Acquisition is a primary-key
insert: the database decides the winner, across threads and processes.
"""
import logging
from datetime import datetime

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bizagent.models.domain import ActorLock

logger = logging.getLogger(__name__)


class ActionLock:
    """Keyed mutual exclusion. Contention on one actor never blocks another."""

    def __init__(self, db: Session):
        self.db = db

    def try_acquire(self, actor_id: str, commit: bool = True) -> bool:
        """
        Acquire the lock for `actor_id` if nobody holds it.

        Returns False instead of waiting when it is already held. Contention
        rolls the session back, so it must not carry other pending changes.
        With commit=False the row is only visible once the caller commits,
        together with whatever it writes under the lock.
        """
        try:
            self.db.execute(
                insert(ActorLock).values(actor_id=actor_id, acquired_at=datetime.utcnow())
            )
            if commit:
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Lock contention for actor %s", actor_id)
            return False
        return True

    def release(self, actor_id: str, commit: bool = True) -> None:
        """Release the lock. Releasing a free lock is a no-op."""
        self.db.execute(delete(ActorLock).where(ActorLock.actor_id == actor_id))
        if commit:
            self.db.commit()

    def is_held(self, actor_id: str) -> bool:
        row = self.db.execute(
            select(ActorLock.actor_id).where(ActorLock.actor_id == actor_id)
        ).first()
        return row is not None
