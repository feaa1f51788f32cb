from typing import List, Optional
from pydantic import BaseModel


class PurchaseOrderItemResponse(BaseModel):
    id: str
    request_item_id: str
    supplier_quotation_item_id: str
    item_code: str
    description: str
    quantity: int
    unit: str
    unit_price_cents: int
    total_price_cents: int


class PurchaseOrderResponse(BaseModel):
    id: str
    order_number: str
    purchase_request_id: str
    supplier_id: str
    quotation_id: str
    supplier_quotation_id: str
    status: str
    total_value_cents: int
    currency: str
    observations: Optional[str] = None
    items: List[PurchaseOrderItemResponse] = []
    created_at: str
