import uuid
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from purchase_workflow.schemas.purchase_order import PurchaseOrderResponse
from purchase_workflow.schemas.purchase_request import PurchaseRequestResponse


class QuotationCreate(BaseModel):
    purchase_request_id: uuid.UUID
    deadline: Optional[datetime] = None
    terms_and_conditions: Optional[str] = Field(None, max_length=5000)


class SupplierQuotationItemCreate(BaseModel):
    quotation_item_id: uuid.UUID
    unit_price_cents: int = Field(..., ge=0)
    total_price_cents: Optional[int] = Field(None, ge=0)
    is_available: bool = True
    available_quantity: Optional[int] = Field(None, ge=0)
    delivery_days: Optional[int] = Field(None, ge=0)
    brand: Optional[str] = Field(None, max_length=100)
    model: Optional[str] = Field(None, max_length=100)
    observations: Optional[str] = Field(None, max_length=1000)


class SupplierQuotationCreate(BaseModel):
    supplier_id: uuid.UUID
    payment_terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    observations: Optional[str] = None
    items: List[SupplierQuotationItemCreate] = Field(..., min_length=1)


class SupplierSelectionRequest(BaseModel):
    supplier_quotation_id: uuid.UUID
    unavailable_item_ids: List[uuid.UUID] = []
    choice_reason: Optional[str] = Field(None, max_length=1000)


class QuotationItemResponse(BaseModel):
    id: str
    request_item_id: Optional[str] = None
    item_code: str
    description: str
    quantity: int
    unit: str
    specifications: Optional[str] = None


class SupplierQuotationItemResponse(BaseModel):
    id: str
    quotation_item_id: str
    unit_price_cents: int
    total_price_cents: int
    is_available: bool
    available_quantity: Optional[int] = None
    delivery_days: Optional[int] = None
    brand: Optional[str] = None
    model: Optional[str] = None


class SupplierQuotationResponse(BaseModel):
    id: str
    supplier_id: str
    status: str
    total_value_cents: Optional[int] = None
    payment_terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    is_chosen: bool
    choice_reason: Optional[str] = None
    items: List[SupplierQuotationItemResponse] = []


class QuotationResponse(BaseModel):
    id: str
    quotation_number: str
    purchase_request_id: str
    status: str
    deadline: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    created_by: str
    items: List[QuotationItemResponse] = []
    supplier_quotations: List[SupplierQuotationResponse] = []
    created_at: str


class ReconciliationResponse(BaseModel):
    request: PurchaseRequestResponse
    purchase_order: Optional[PurchaseOrderResponse] = None
    derived_request: Optional[PurchaseRequestResponse] = None
