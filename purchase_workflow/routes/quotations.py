import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.database import get_db
from purchase_workflow.middleware.auth import get_current_actor
from purchase_workflow.middleware.authorization import require_flags
from purchase_workflow.models.quotation import (
    Quotation,
    QuotationItem,
    SupplierQuotation,
    SupplierQuotationItem,
)
from purchase_workflow.routes.purchase_requests import (
    build_response,
    order_to_response,
    to_response,
)
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.common import iso
from purchase_workflow.schemas.quotation import (
    QuotationCreate,
    QuotationItemResponse,
    QuotationResponse,
    ReconciliationResponse,
    SupplierQuotationCreate,
    SupplierQuotationItemResponse,
    SupplierQuotationResponse,
    SupplierSelectionRequest,
)
from purchase_workflow.services.quotation_service import (
    add_supplier_quotation,
    create_quotation,
    get_quotation_detail,
    list_quotations_for_request,
)
from purchase_workflow.services.reconciliation_service import select_supplier_quotation

logger = structlog.get_logger()
router = APIRouter()


def _item_to_response(qi: QuotationItem) -> QuotationItemResponse:
    return QuotationItemResponse(
        id=str(qi.id),
        request_item_id=str(qi.request_item_id) if qi.request_item_id else None,
        item_code=qi.item_code,
        description=qi.description,
        quantity=qi.quantity,
        unit=qi.unit,
        specifications=qi.specifications,
    )


def _supplier_to_response(
    sq: SupplierQuotation, items: list[SupplierQuotationItem]
) -> SupplierQuotationResponse:
    return SupplierQuotationResponse(
        id=str(sq.id),
        supplier_id=str(sq.supplier_id),
        status=sq.status,
        total_value_cents=sq.total_value_cents,
        payment_terms=sq.payment_terms,
        delivery_terms=sq.delivery_terms,
        is_chosen=sq.is_chosen,
        choice_reason=sq.choice_reason,
        items=[
            SupplierQuotationItemResponse(
                id=str(si.id),
                quotation_item_id=str(si.quotation_item_id),
                unit_price_cents=si.unit_price_cents,
                total_price_cents=si.total_price_cents,
                is_available=si.is_available,
                available_quantity=si.available_quantity,
                delivery_days=si.delivery_days,
                brand=si.brand,
                model=si.model,
            )
            for si in items
        ],
    )


def _to_response(
    quotation: Quotation,
    items: list[QuotationItem],
    supplier_quotations: list[tuple[SupplierQuotation, list[SupplierQuotationItem]]] = (),
) -> QuotationResponse:
    return QuotationResponse(
        id=str(quotation.id),
        quotation_number=quotation.quotation_number,
        purchase_request_id=str(quotation.purchase_request_id),
        status=quotation.status,
        deadline=iso(quotation.deadline),
        terms_and_conditions=quotation.terms_and_conditions,
        created_by=str(quotation.created_by),
        items=[_item_to_response(qi) for qi in items],
        supplier_quotations=[_supplier_to_response(sq, si) for sq, si in supplier_quotations],
        created_at=iso(quotation.created_at) or "",
    )


@router.post("", response_model=QuotationResponse, status_code=status.HTTP_201_CREATED)
async def open_quotation(
    body: QuotationCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_flags("is_buyer")),
    db: AsyncSession = Depends(get_db),
):
    quotation, items = await create_quotation(db, actor, body)
    return _to_response(quotation, items)


@router.get("", response_model=list[QuotationResponse])
async def list_quotations(
    purchase_request_id: uuid.UUID = Query(...),
    quotation_status: str = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    quotations = await list_quotations_for_request(db, purchase_request_id, quotation_status)
    return [_to_response(q, []) for q in quotations]


@router.get("/{quotation_id}", response_model=QuotationResponse)
async def get_quotation(
    quotation_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    detail = await get_quotation_detail(db, quotation_id)
    return _to_response(detail["quotation"], detail["items"], detail["supplier_quotations"])


@router.post(
    "/{quotation_id}/supplier-quotations",
    response_model=SupplierQuotationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_supplier_quotation(
    quotation_id: str,
    body: SupplierQuotationCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_flags("is_buyer")),
    db: AsyncSession = Depends(get_db),
):
    sq, items = await add_supplier_quotation(db, actor, quotation_id, body)
    return _supplier_to_response(sq, items)


@router.post("/{quotation_id}/select-supplier", response_model=ReconciliationResponse)
async def select_supplier(
    quotation_id: str,
    body: SupplierSelectionRequest,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_flags("is_buyer")),
    db: AsyncSession = Depends(get_db),
):
    """Close the quotation with the buyer's choice and reconcile it into an order."""
    result = await select_supplier_quotation(
        db,
        quotation_id,
        body.supplier_quotation_id,
        body.unavailable_item_ids,
        actor,
        choice_reason=body.choice_reason,
    )
    return ReconciliationResponse(
        request=await build_response(db, result.request),
        purchase_order=(
            order_to_response(result.purchase_order, result.order_items)
            if result.purchase_order is not None
            else None
        ),
        derived_request=(
            to_response(result.derived_request, result.derived_items)
            if result.derived_request is not None
            else None
        ),
    )
