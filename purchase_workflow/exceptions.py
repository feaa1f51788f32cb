"""
Workflow error taxonomy.

Every error carries the purchase request id and the entity/step implicated so
callers can correct their input. Only ConcurrentModification is retryable.
"""

from typing import Any, Optional


class WorkflowError(Exception):
    code = "WORKFLOW_ERROR"
    status_code = 400
    retryable = False

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.request_id = str(request_id) if request_id is not None else None
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "request_id": self.request_id,
                "details": self.details,
                "retryable": self.retryable,
            }
        }


class InvalidTransition(WorkflowError):
    """Target phase is not reachable from the current phase."""

    code = "INVALID_TRANSITION"
    status_code = 409


class ApprovalGateNotSatisfied(WorkflowError):
    """Attempt to leave an approval gate that has not been approved."""

    code = "APPROVAL_GATE_NOT_SATISFIED"
    status_code = 409


class DuplicateApprover(WorkflowError):
    """Same approver tried to sign both steps of a dual approval."""

    code = "DUPLICATE_APPROVER"
    status_code = 409


class ReconciliationMatchError(WorkflowError):
    """A fulfilled request item has no priced supplier line."""

    code = "RECONCILIATION_MATCH_ERROR"
    status_code = 422


class ConcurrentModification(WorkflowError):
    """The request changed between read and commit."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    retryable = True


class EntityNotFound(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class ActionNotPermitted(WorkflowError):
    code = "ACTION_NOT_PERMITTED"
    status_code = 403


class RejectionReasonRequired(WorkflowError):
    code = "REJECTION_REASON_REQUIRED"
    status_code = 422


class AlreadyExists(WorkflowError):
    code = "ALREADY_EXISTS"
    status_code = 409


class DuplicateQuotationLine(WorkflowError):
    """A supplier answer prices the same quotation line more than once."""

    code = "DUPLICATE_QUOTATION_LINE"
    status_code = 422
