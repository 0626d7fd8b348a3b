"""
Error taxonomy for the approval pipeline.

Every error carries a stable `code` so the admin surface can return structured
rejections instead of raw exceptions.
"""
from typing import Any, Dict, Optional


class PipelineError(Exception):
    code = "pipeline_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        self.message = message
        self.detail = detail or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class ClassificationError(PipelineError):
    """The classifier failed or answered with something unusable."""
    code = "classification_error"


class ClassificationTimeout(ClassificationError):
    code = "classification_timeout"


class LockContention(PipelineError):
    """
    The actor already has a request waiting for an admin.
    This is NOT a system fault - it's the lock working correctly.
    """
    code = "lock_contention"

    def __init__(self, actor_id: str, message: Optional[str] = None):
        self.actor_id = actor_id
        super().__init__(message or f"Actor {actor_id} already has a pending approval.")


class ApprovalNotFound(PipelineError):
    code = "approval_not_found"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval {approval_id} not found.")


class ApprovalAlreadyResolved(PipelineError):
    code = "approval_already_resolved"

    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} is already {status}.", {"status": status})


class ActionRequestNotFound(PipelineError):
    code = "request_not_found"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Action request {request_id} not found.")


class InvalidTransition(PipelineError):
    code = "invalid_transition"


class ExecutionFailure(PipelineError):
    """A collaborator refused or failed to perform the action."""
    code = "execution_failed"


class NotificationDeliveryFailure(PipelineError):
    code = "notification_failed"
