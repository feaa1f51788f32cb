import uuid
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from purchase_workflow.services.phase_registry import Phase


class RequestItemCreate(BaseModel):
    product_code: Optional[str] = Field(None, max_length=50)
    description: str = Field(..., min_length=1, max_length=500)
    unit: str = Field("UN", min_length=1, max_length=20)
    requested_quantity: int = Field(..., ge=1, le=999999)
    estimated_unit_price_cents: int = Field(0, ge=0)
    technical_specification: Optional[str] = Field(None, max_length=2000)


class PurchaseRequestCreate(BaseModel):
    cost_center_id: Optional[uuid.UUID] = None
    category: str = Field("produto", max_length=50)
    urgency: Literal["baixo", "medio", "alto"] = "medio"
    justification: Optional[str] = Field(None, max_length=2000)
    items: List[RequestItemCreate] = Field(..., min_length=1, max_length=200)


class PhaseTransitionRequest(BaseModel):
    target_phase: Phase


class RequestItemResponse(BaseModel):
    id: str
    line_number: int
    product_code: Optional[str] = None
    description: str
    unit: str
    requested_quantity: int
    approved_quantity: Optional[int] = None
    estimated_unit_price_cents: int
    technical_specification: Optional[str] = None
    is_transferred: bool
    transferred_to_request_id: Optional[str] = None


class PurchaseRequestResponse(BaseModel):
    id: str
    request_number: str
    requester_id: str
    cost_center_id: Optional[uuid.UUID] = None
    category: str
    urgency: str
    justification: Optional[str] = None
    total_cents: int
    currency: str
    current_phase: str
    requires_dual_approval: bool
    approval_threshold_cents: Optional[int] = None
    a1_state: str
    a2_state: str
    first_approver_id: Optional[str] = None
    first_approved_at: Optional[str] = None
    second_approver_id: Optional[str] = None
    second_approved_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    parent_request_id: Optional[str] = None
    derived_request_id: Optional[str] = None
    version: int
    items: List[RequestItemResponse] = []
    created_at: str
    updated_at: str


class AuditEntryResponse(BaseModel):
    id: str
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    changed_fields: Optional[list[str]] = None
    request_id: Optional[str] = None
    created_at: str
