from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from purchase_workflow.services.approval_policy import RejectionAction


class ApprovalDecisionRequest(BaseModel):
    approved: bool
    reason: Optional[str] = Field(None, max_length=1000)
    rejection_action: RejectionAction = RejectionAction.RETURN


class ApprovalHistoryResponse(BaseModel):
    id: str
    purchase_request_id: str
    approver_type: str
    approver_id: str
    approved: bool
    rejection_reason: Optional[str] = None
    rejection_action: Optional[str] = None
    approval_step: int
    approval_cycle: int
    requires_dual_approval: bool
    approval_value_cents: int
    threshold_cents: int
    created_at: str


class GateStatusResponse(BaseModel):
    gate: str
    state: str
    cycle: int
    next_step: str


class ApprovalStatusResponse(BaseModel):
    request_id: str
    current_phase: str
    total_cents: int
    requires_dual_approval: bool
    threshold_cents: Optional[int] = None
    first_approver_id: Optional[str] = None
    second_approver_id: Optional[str] = None
    gates: List[GateStatusResponse]
    history: List[ApprovalHistoryResponse] = []


class ApprovalConfigCreate(BaseModel):
    value_threshold_cents: int = Field(..., gt=0)
    reason: str = Field(..., min_length=3, max_length=1000)
    effective_date: Optional[datetime] = None


class ApprovalConfigResponse(BaseModel):
    id: Optional[str] = None
    value_threshold_cents: int
    effective_date: Optional[str] = None
    is_active: bool
    reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
