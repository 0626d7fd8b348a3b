"""
State machine for ActionRequest lifecycles.

All state changes of a request MUST go through here.
"""
from datetime import datetime
from typing import Dict, FrozenSet

from sqlalchemy.orm import Session

from bizagent.models.domain import ActionRequest
from bizagent.models.enums import RequestState
from bizagent.services.errors import InvalidTransition

TRANSITIONS: Dict[RequestState, FrozenSet[RequestState]] = {
    RequestState.CREATED: frozenset({RequestState.EXECUTING, RequestState.AWAITING_APPROVAL}),
    RequestState.AWAITING_APPROVAL: frozenset({RequestState.APPROVED, RequestState.REJECTED}),
    RequestState.APPROVED: frozenset({RequestState.EXECUTING}),
    RequestState.EXECUTING: frozenset({RequestState.EXECUTED, RequestState.FAILED}),
    # Explicit admin retry
    RequestState.FAILED: frozenset({RequestState.EXECUTING}),
    RequestState.REJECTED: frozenset(),
    RequestState.EXECUTED: frozenset(),
}

# Fixed at creation
IMMUTABLE_FIELDS = (
    "request_id", "actor_id", "channel", "kind", "entities", "confidence",
    "source_text", "proposed_action", "requires_approval", "risk_level", "reasons",
)


class StateMachine:
    """Enforces request state transitions."""

    def __init__(self, db: Session):
        self.db = db

    def can_transition(self, current: RequestState, new_state: RequestState) -> bool:
        return RequestState(new_state) in TRANSITIONS[RequestState(current)]

    def transition(self, request: ActionRequest, new_state: RequestState, commit: bool = True) -> None:
        """
        Move a request to `new_state`.

        Raises:
            InvalidTransition: the move is not in the transition table
        """
        new_state = RequestState(new_state)
        current = RequestState(request.state)
        if not self.can_transition(current, new_state):
            raise InvalidTransition(
                f"Cannot move request {request.request_id} from {current.value} to {new_state.value}.",
                {"from": current.value, "to": new_state.value}
            )

        request.state = new_state
        request.updated_at = datetime.utcnow()
        if commit:
            self.db.commit()

    def attempt_modify_request(self, request: ActionRequest, **changes) -> None:
        """
        Guard for content edits. Request content is never modified after
        creation; a retry is a new request.

        Raises:
            ValueError: always, for any immutable field
        """
        forbidden = [name for name in changes if name in IMMUTABLE_FIELDS]
        if forbidden:
            raise ValueError(
                f"IMMUTABILITY VIOLATION: Cannot modify {', '.join(forbidden)} "
                f"of request {request.request_id}. Submit a new message instead."
            )
        raise ValueError(
            "IMMUTABILITY VIOLATION: Requests only change state through transition()."
        )
