"""
Quotation reconciliation: turns a buyer's supplier choice into a purchase
order plus, when the supplier cannot deliver everything, one derived request
for the leftovers.

    fulfilled items   → one PurchaseOrder, prices copied from the supplier lines
    unfulfilled items → one derived request in solicitacao, originals flagged
                        transferred and linked to it

The original request's total becomes the sum of the fulfilled supplier totals
and it moves on to aprovacao_a2. When nothing is fulfilled no order is created
and the request stays in cotacao. The whole run is one transaction; a match
failure leaves no trace.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.exceptions import ActionNotPermitted, EntityNotFound, InvalidTransition
from purchase_workflow.models.purchase_order import PurchaseOrder, PurchaseOrderItem
from purchase_workflow.models.purchase_request import PurchaseRequest, RequestItem
from purchase_workflow.models.quotation import Quotation, SupplierQuotation
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services.audit_service import create_audit_log
from purchase_workflow.services.event_gateway import (
    EVENT_REQUEST_CREATED,
    EVENT_REQUEST_UPDATED,
    WorkflowEvent,
)
from purchase_workflow.services.item_matching import partition_items
from purchase_workflow.services.phase_registry import Phase
from purchase_workflow.services.purchase_order_service import (
    create_purchase_order,
    load_quotation_lines,
    void_purchase_order,
)
from purchase_workflow.services.request_service import (
    as_uuid,
    get_request_items,
    insert_request,
    lock_request,
)
from purchase_workflow.services.transition_service import apply_transition
from purchase_workflow.services.unit_of_work import atomic

logger = structlog.get_logger()


@dataclass
class ReconciliationResult:
    request: PurchaseRequest
    purchase_order: Optional[PurchaseOrder] = None
    order_items: list[PurchaseOrderItem] = field(default_factory=list)
    derived_request: Optional[PurchaseRequest] = None
    derived_items: list[RequestItem] = field(default_factory=list)


async def _mark_chosen(
    session: AsyncSession,
    quotation: Quotation,
    supplier_quotation: SupplierQuotation,
    choice_reason: Optional[str],
) -> None:
    # Previous choice must be cleared and flushed before the new one is set
    await session.execute(
        update(SupplierQuotation)
        .where(
            SupplierQuotation.quotation_id == quotation.id,
            SupplierQuotation.id != supplier_quotation.id,
            SupplierQuotation.is_chosen == True,  # noqa: E712
        )
        .values(is_chosen=False)
        .execution_options(synchronize_session="fetch")
    )
    await session.flush()

    supplier_quotation.is_chosen = True
    supplier_quotation.status = "chosen"
    supplier_quotation.choice_reason = choice_reason
    quotation.status = "analyzed"
    await session.flush()


async def spin_off_request(
    session: AsyncSession,
    pr: PurchaseRequest,
    items: list[RequestItem],
    actor: Actor,
) -> tuple[PurchaseRequest, list[RequestItem]]:
    """
    Move unfulfilled items into a new request that starts the workflow over.

    The derived request gets its own approval evaluation; nothing is inherited
    from the parent's approvals.
    """
    derived, derived_items = await insert_request(
        session,
        requester_id=pr.requester_id,
        items=[
            {
                "product_code": ri.product_code,
                "description": ri.description,
                "unit": ri.unit,
                "requested_quantity": ri.requested_quantity,
                "estimated_unit_price_cents": ri.estimated_unit_price_cents,
                "technical_specification": ri.technical_specification,
            }
            for ri in items
        ],
        cost_center_id=pr.cost_center_id,
        category=pr.category,
        urgency=pr.urgency,
        justification=pr.justification,
        parent_request_id=pr.id,
    )

    for ri in items:
        ri.mark_transferred(derived.id)
    pr.derived_request_id = derived.id
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor.id,
        action="PR_DERIVED",
        entity_type="PurchaseRequest",
        entity_id=derived.id,
        after_state={
            "request_number": derived.request_number,
            "parent_request_id": str(pr.id),
            "transferred_item_ids": [str(ri.id) for ri in items],
            "total_cents": derived.total_cents,
            "requires_dual_approval": derived.requires_dual_approval,
        },
        actor_email=actor.email,
    )

    logger.info(
        "derived_request_created",
        request_id=str(derived.id),
        parent_request_id=str(pr.id),
        items=len(derived_items),
        total_cents=derived.total_cents,
    )
    return derived, derived_items


async def select_supplier_quotation(
    session: AsyncSession,
    quotation_id,
    supplier_quotation_id,
    unavailable_item_ids: Iterable[uuid.UUID],
    actor: Actor,
    choice_reason: Optional[str] = None,
) -> ReconciliationResult:
    if not actor.is_buyer:
        raise ActionNotPermitted(
            "Only buyers can select a supplier quotation",
            details={"actor_id": str(actor.id)},
        )

    unavailable = [as_uuid(i, "RequestItem") for i in unavailable_item_ids]
    q_id = as_uuid(quotation_id, "Quotation")
    sq_id = as_uuid(supplier_quotation_id, "SupplierQuotation")

    async with atomic(session) as events:
        quotation = await session.get(Quotation, q_id)
        if quotation is None:
            raise EntityNotFound(
                f"Quotation {quotation_id} not found",
                details={"entity": "Quotation"},
            )

        pr = await lock_request(session, quotation.purchase_request_id)
        if pr.current_phase != Phase.COTACAO.value:
            raise InvalidTransition(
                f"Supplier selection requires phase {Phase.COTACAO.value}, request is in {pr.current_phase}",
                request_id=pr.id,
                details={"current_phase": pr.current_phase, "quotation_id": str(q_id)},
            )

        sq_result = await session.execute(
            select(SupplierQuotation).where(
                SupplierQuotation.id == sq_id,
                SupplierQuotation.quotation_id == quotation.id,
            )
        )
        supplier_quotation = sq_result.scalar_one_or_none()
        if supplier_quotation is None:
            raise EntityNotFound(
                f"Supplier quotation {supplier_quotation_id} not found for quotation {quotation.quotation_number}",
                request_id=pr.id,
                details={"entity": "SupplierQuotation"},
            )

        request_items = await get_request_items(session, pr.id, include_transferred=False)
        if not request_items:
            raise InvalidTransition(
                "Request has no active items left to reconcile",
                request_id=pr.id,
                details={"quotation_id": str(q_id)},
            )

        quotation_items, supplier_items = await load_quotation_lines(
            session, quotation.id, supplier_quotation.id
        )
        partition = partition_items(
            request_items, quotation_items, supplier_items, unavailable, request_id=pr.id
        )

        await _mark_chosen(session, quotation, supplier_quotation, choice_reason)
        pr.buyer_id = actor.id

        result = ReconciliationResult(request=pr)
        if partition.unfulfilled:
            result.derived_request, result.derived_items = await spin_off_request(
                session, pr, partition.unfulfilled, actor
            )

        await create_audit_log(
            session,
            actor_id=actor.id,
            action="SUPPLIER_SELECTED",
            entity_type="Quotation",
            entity_id=quotation.id,
            after_state={
                "supplier_quotation_id": str(supplier_quotation.id),
                "supplier_id": str(supplier_quotation.supplier_id),
                "fulfilled_item_ids": [str(line.request_item.id) for line in partition.fulfilled],
                "unfulfilled_item_ids": [str(ri.id) for ri in partition.unfulfilled],
            },
            actor_email=actor.email,
        )

        reconciliation_payload = {
            "quotation_id": str(quotation.id),
            "supplier_quotation_id": str(supplier_quotation.id),
        }
        if result.derived_request is not None:
            reconciliation_payload["derived_request_id"] = str(result.derived_request.id)

        if partition.fulfilled:
            for line in partition.fulfilled:
                line.request_item.approved_quantity = line.quantity
            result.purchase_order, result.order_items = await create_purchase_order(
                session, pr, supplier_quotation, partition.fulfilled, actor.id
            )
            pr.total_cents = partition.fulfilled_total_cents
            await session.flush()
            reconciliation_payload["order_number"] = result.purchase_order.order_number
            events.append(await apply_transition(
                session, pr, Phase.APROVACAO_A2, actor, payload=reconciliation_payload
            ))
        else:
            await void_purchase_order(session, pr)
            await session.flush()
            events.append(WorkflowEvent(
                event_type=EVENT_REQUEST_UPDATED,
                request_id=str(pr.id),
                new_phase=pr.current_phase,
                payload=reconciliation_payload,
            ))

        if result.derived_request is not None:
            events.append(WorkflowEvent(
                event_type=EVENT_REQUEST_CREATED,
                request_id=str(result.derived_request.id),
                new_phase=result.derived_request.current_phase,
                payload={
                    "request_number": result.derived_request.request_number,
                    "parent_request_id": str(pr.id),
                    "total_cents": result.derived_request.total_cents,
                },
            ))

    logger.info(
        "reconciliation_completed",
        request_id=str(pr.id),
        quotation_id=str(q_id),
        supplier_quotation_id=str(sq_id),
        fulfilled=len(partition.fulfilled),
        unfulfilled=len(partition.unfulfilled),
        order_number=result.purchase_order.order_number if result.purchase_order else None,
        derived_request_id=str(result.derived_request.id) if result.derived_request else None,
    )
    return result
