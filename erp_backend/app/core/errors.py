"""
Typed errors raised by the approval engine and the ticket/leave services.

Every error carries an HTTP ``status_code`` and a machine readable ``code``;
``main.py`` turns them into ``{"detail": ..., "code": ...}`` responses.
Anything that is not a ``WorkflowError`` is treated as unexpected (500).
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    status_code = 500
    code = "workflow_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class Unauthenticated(WorkflowError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(WorkflowError):
    status_code = 403
    code = "forbidden"


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class InvalidState(WorkflowError):
    """Request is terminal, has no pending record, or lost a decision race."""
    status_code = 400
    code = "invalid_state"


class ValidationError(WorkflowError):
    status_code = 400
    code = "validation_error"


class UnknownStageError(Exception):
    """Programmer error: a workflow or stage id that is not configured."""

    def __init__(self, workflow_type: str, stage: Optional[str] = None):
        msg = f"unknown workflow '{workflow_type}'" if stage is None \
            else f"unknown stage '{stage}' for workflow '{workflow_type}'"
        super().__init__(msg)
        self.workflow_type = workflow_type
        self.stage = stage
