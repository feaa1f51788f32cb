from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.database import get_db
from purchase_workflow.middleware.auth import get_current_actor
from purchase_workflow.models.approval import ApprovalHistory
from purchase_workflow.models.audit_log import AuditLog
from purchase_workflow.models.purchase_order import PurchaseOrder, PurchaseOrderItem
from purchase_workflow.models.purchase_request import PurchaseRequest, RequestItem
from purchase_workflow.schemas.approval import ApprovalHistoryResponse
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.common import PaginatedResponse, build_pagination, iso
from purchase_workflow.schemas.purchase_order import (
    PurchaseOrderItemResponse,
    PurchaseOrderResponse,
)
from purchase_workflow.schemas.purchase_request import (
    AuditEntryResponse,
    PhaseTransitionRequest,
    PurchaseRequestCreate,
    PurchaseRequestResponse,
    RequestItemResponse,
)
from purchase_workflow.services.approval_service import list_approval_history
from purchase_workflow.services.audit_service import list_audit_trail
from purchase_workflow.services.cache import get_cached_snapshot, store_snapshot
from purchase_workflow.services.phase_registry import Phase
from purchase_workflow.services.purchase_order_service import (
    get_purchase_order_items,
    require_purchase_order,
)
from purchase_workflow.services.request_service import (
    create_purchase_request,
    get_request,
    get_request_items,
    list_purchase_requests,
    request_version,
)
from purchase_workflow.services.transition_service import transition_phase

logger = structlog.get_logger()
router = APIRouter()


def _opt_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def item_to_response(ri: RequestItem) -> RequestItemResponse:
    return RequestItemResponse(
        id=str(ri.id),
        line_number=ri.line_number,
        product_code=ri.product_code,
        description=ri.description,
        unit=ri.unit,
        requested_quantity=ri.requested_quantity,
        approved_quantity=ri.approved_quantity,
        estimated_unit_price_cents=ri.estimated_unit_price_cents,
        technical_specification=ri.technical_specification,
        is_transferred=ri.is_transferred,
        transferred_to_request_id=_opt_str(ri.transferred_to_request_id),
    )


def to_response(pr: PurchaseRequest, items: list[RequestItem]) -> PurchaseRequestResponse:
    return PurchaseRequestResponse(
        id=str(pr.id),
        request_number=pr.request_number,
        requester_id=str(pr.requester_id),
        cost_center_id=_opt_str(pr.cost_center_id),
        category=pr.category,
        urgency=pr.urgency,
        justification=pr.justification,
        total_cents=pr.total_cents,
        currency=pr.currency,
        current_phase=pr.current_phase,
        requires_dual_approval=pr.requires_dual_approval,
        approval_threshold_cents=pr.approval_threshold_cents,
        a1_state=pr.a1_state,
        a2_state=pr.a2_state,
        first_approver_id=_opt_str(pr.first_approver_id),
        first_approved_at=iso(pr.first_approved_at),
        second_approver_id=_opt_str(pr.second_approver_id),
        second_approved_at=iso(pr.second_approved_at),
        rejection_reason=pr.rejection_reason,
        parent_request_id=_opt_str(pr.parent_request_id),
        derived_request_id=_opt_str(pr.derived_request_id),
        version=pr.version,
        items=[item_to_response(ri) for ri in items],
        created_at=iso(pr.created_at) or "",
        updated_at=iso(pr.updated_at) or "",
    )


async def build_response(db: AsyncSession, pr: PurchaseRequest) -> PurchaseRequestResponse:
    return to_response(pr, await get_request_items(db, pr.id))


def order_to_response(po: PurchaseOrder, items: list[PurchaseOrderItem]) -> PurchaseOrderResponse:
    return PurchaseOrderResponse(
        id=str(po.id),
        order_number=po.order_number,
        purchase_request_id=str(po.purchase_request_id),
        supplier_id=str(po.supplier_id),
        quotation_id=str(po.quotation_id),
        supplier_quotation_id=str(po.supplier_quotation_id),
        status=po.status,
        total_value_cents=po.total_value_cents,
        currency=po.currency,
        observations=po.observations,
        items=[
            PurchaseOrderItemResponse(
                id=str(i.id),
                request_item_id=str(i.request_item_id),
                supplier_quotation_item_id=str(i.supplier_quotation_item_id),
                item_code=i.item_code,
                description=i.description,
                quantity=i.quantity,
                unit=i.unit,
                unit_price_cents=i.unit_price_cents,
                total_price_cents=i.total_price_cents,
            )
            for i in items
        ],
        created_at=iso(po.created_at) or "",
    )


def history_to_response(h: ApprovalHistory) -> ApprovalHistoryResponse:
    return ApprovalHistoryResponse(
        id=str(h.id),
        purchase_request_id=str(h.purchase_request_id),
        approver_type=h.approver_type,
        approver_id=str(h.approver_id),
        approved=h.approved,
        rejection_reason=h.rejection_reason,
        rejection_action=h.rejection_action,
        approval_step=h.approval_step,
        approval_cycle=h.approval_cycle,
        requires_dual_approval=h.requires_dual_approval,
        approval_value_cents=h.approval_value_cents,
        threshold_cents=h.threshold_cents,
        created_at=iso(h.created_at) or "",
    )


def _audit_to_response(a: AuditLog) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=str(a.id),
        actor_id=_opt_str(a.actor_id),
        actor_email=a.actor_email,
        action=a.action,
        entity_type=a.entity_type,
        entity_id=str(a.entity_id),
        before_state=a.before_state,
        after_state=a.after_state,
        changed_fields=a.changed_fields,
        request_id=a.request_id,
        created_at=iso(a.created_at) or "",
    )


# ---------- LIST / GET ----------


@router.get("", response_model=PaginatedResponse[PurchaseRequestResponse])
async def list_requests(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    phase: Optional[Phase] = Query(None),
    mine: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    logger.info("pr_list_request", page=page, phase=phase.value if phase else None, mine=mine)
    requests, total = await list_purchase_requests(
        db,
        phase=phase.value if phase else None,
        requester_id=actor.id if mine else None,
        page=page,
        limit=limit,
    )
    data = [await build_response(db, pr) for pr in requests]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.get("/{request_id}", response_model=PurchaseRequestResponse)
async def get_purchase_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    cached = await get_cached_snapshot(request_id)
    if cached is not None:
        return PurchaseRequestResponse(**cached)

    pr = await get_request(db, request_id)
    response = await build_response(db, pr)
    # Store only if no commit landed since the read
    if await request_version(db, pr.id) == response.version:
        await store_snapshot(pr.id, response.model_dump())
    else:
        logger.info("request_cache_store_skipped", request_id=str(pr.id), version=response.version)
    return response


# ---------- CREATE ----------


@router.post("", response_model=PurchaseRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    body: PurchaseRequestCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await create_purchase_request(db, actor, body)
    return await build_response(db, pr)


# ---------- WORKFLOW ----------


@router.post("/{request_id}/transition", response_model=PurchaseRequestResponse)
async def transition_request(
    request_id: str,
    body: PhaseTransitionRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await transition_phase(db, request_id, body.target_phase, actor)
    return await build_response(db, pr)


@router.get("/{request_id}/approval-history", response_model=list[ApprovalHistoryResponse])
async def get_approval_history(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await get_request(db, request_id)
    return [history_to_response(h) for h in await list_approval_history(db, pr.id)]


@router.get("/{request_id}/audit-trail", response_model=list[AuditEntryResponse])
async def get_audit_trail(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await get_request(db, request_id)
    entries = await list_audit_trail(db, "PurchaseRequest", pr.id)
    return [_audit_to_response(a) for a in entries]


@router.get("/{request_id}/purchase-order", response_model=PurchaseOrderResponse)
async def get_request_purchase_order(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await get_request(db, request_id)
    po = await require_purchase_order(db, pr.id)
    return order_to_response(po, await get_purchase_order_items(db, po.id))
