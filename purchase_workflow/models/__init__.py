"""Central model registry: import all models so Alembic autodiscover works."""

from purchase_workflow.database import Base  # noqa: F401

from purchase_workflow.models.purchase_request import PurchaseRequest, RequestItem  # noqa: F401
from purchase_workflow.models.quotation import (  # noqa: F401
    Quotation,
    QuotationItem,
    SupplierQuotation,
    SupplierQuotationItem,
)
from purchase_workflow.models.purchase_order import PurchaseOrder, PurchaseOrderItem  # noqa: F401
from purchase_workflow.models.approval import ApprovalHistory, ApprovalConfiguration  # noqa: F401
from purchase_workflow.models.audit_log import AuditLog  # noqa: F401
