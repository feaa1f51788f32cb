"""
Purchase order lifecycle.

An order only ever comes from the chosen supplier quotation. Item prices are
copied from the supplier lines when the order is created and never
recomputed. Orders are deleted (voided) when the request regresses below
pedido_compra, and rebuilt when it comes back.
"""

import uuid
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.exceptions import EntityNotFound, InvalidTransition
from purchase_workflow.models.purchase_order import PurchaseOrder, PurchaseOrderItem
from purchase_workflow.models.purchase_request import PurchaseRequest
from purchase_workflow.models.quotation import (
    Quotation,
    QuotationItem,
    SupplierQuotation,
    SupplierQuotationItem,
)
from purchase_workflow.services.item_matching import MatchedLine, partition_items
from purchase_workflow.services.numbering import ORDER_PREFIX, next_document_number
from purchase_workflow.services.phase_registry import PURCHASE_ORDER_PHASE
from purchase_workflow.services.request_service import as_uuid, get_request_items

logger = structlog.get_logger()


async def get_purchase_order(
    session: AsyncSession, request_id
) -> Optional[PurchaseOrder]:
    result = await session.execute(
        select(PurchaseOrder).where(
            PurchaseOrder.purchase_request_id == as_uuid(request_id)
        )
    )
    return result.scalar_one_or_none()


async def get_purchase_order_items(
    session: AsyncSession, purchase_order_id: uuid.UUID
) -> list[PurchaseOrderItem]:
    result = await session.execute(
        select(PurchaseOrderItem)
        .where(PurchaseOrderItem.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderItem.created_at, PurchaseOrderItem.item_code)
    )
    return list(result.scalars().all())


async def void_purchase_order(session: AsyncSession, pr: PurchaseRequest) -> Optional[str]:
    """Delete the request's order and its items. Returns the voided order number."""
    po = await get_purchase_order(session, pr.id)
    if po is None:
        return None

    order_number = po.order_number
    await session.execute(
        delete(PurchaseOrderItem).where(PurchaseOrderItem.purchase_order_id == po.id)
    )
    await session.delete(po)
    await session.flush()

    logger.info(
        "purchase_order_voided",
        request_id=str(pr.id),
        order_number=order_number,
        phase=pr.current_phase,
    )
    return order_number


async def create_purchase_order(
    session: AsyncSession,
    pr: PurchaseRequest,
    supplier_quotation: SupplierQuotation,
    lines: list[MatchedLine],
    created_by: uuid.UUID,
) -> tuple[PurchaseOrder, list[PurchaseOrderItem]]:
    """
    Create the request's order from matched supplier lines.

    Any previous order is voided first; a request never holds two. The order
    total is the exact sum of the copied supplier totals. Uses session.flush();
    caller owns the transaction.
    """
    await void_purchase_order(session, pr)

    po = PurchaseOrder(
        order_number=await next_document_number(
            session, PurchaseOrder.order_number, ORDER_PREFIX
        ),
        purchase_request_id=pr.id,
        supplier_id=supplier_quotation.supplier_id,
        quotation_id=supplier_quotation.quotation_id,
        supplier_quotation_id=supplier_quotation.id,
        status="draft",
        total_value_cents=sum(line.supplier_item.total_price_cents for line in lines),
        currency=pr.currency,
        observations=supplier_quotation.observations,
        created_by=created_by,
    )
    session.add(po)
    await session.flush()

    items: list[PurchaseOrderItem] = []
    for line in lines:
        poi = PurchaseOrderItem(
            purchase_order_id=po.id,
            request_item_id=line.request_item.id,
            supplier_quotation_item_id=line.supplier_item.id,
            item_code=line.quotation_item.item_code,
            description=line.request_item.description,
            quantity=line.quantity,
            unit=line.request_item.unit,
            unit_price_cents=line.supplier_item.unit_price_cents,
            total_price_cents=line.supplier_item.total_price_cents,
        )
        session.add(poi)
        items.append(poi)
    await session.flush()

    logger.info(
        "purchase_order_created",
        request_id=str(pr.id),
        order_number=po.order_number,
        supplier_id=str(po.supplier_id),
        items=len(items),
        total_value_cents=po.total_value_cents,
    )
    return po, items


async def get_chosen_supplier_quotation(
    session: AsyncSession, request_id: uuid.UUID
) -> Optional[SupplierQuotation]:
    """Chosen supplier quotation from the request's most recent quotation that has one."""
    result = await session.execute(
        select(SupplierQuotation)
        .join(Quotation, Quotation.id == SupplierQuotation.quotation_id)
        .where(
            Quotation.purchase_request_id == request_id,
            SupplierQuotation.is_chosen == True,  # noqa: E712
        )
        .order_by(Quotation.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_quotation_lines(
    session: AsyncSession, quotation_id: uuid.UUID, supplier_quotation_id: uuid.UUID
) -> tuple[list[QuotationItem], list[SupplierQuotationItem]]:
    qi_result = await session.execute(
        select(QuotationItem).where(QuotationItem.quotation_id == quotation_id)
    )
    si_result = await session.execute(
        select(SupplierQuotationItem).where(
            SupplierQuotationItem.supplier_quotation_id == supplier_quotation_id
        )
    )
    return list(qi_result.scalars().all()), list(si_result.scalars().all())


async def rebuild_purchase_order(
    session: AsyncSession, pr: PurchaseRequest, created_by: uuid.UUID
) -> PurchaseOrder:
    """
    Recreate the order when the request re-enters pedido_compra without one.

    The chosen supplier and the request's active items decide the lines, with
    the same matching rules as supplier selection. Items the supplier cannot
    deliver were already transferred at selection time, so they are skipped.
    """
    sq = await get_chosen_supplier_quotation(session, pr.id)
    if sq is None:
        raise InvalidTransition(
            f"Cannot enter {PURCHASE_ORDER_PHASE.value} without a chosen supplier quotation",
            request_id=pr.id,
            details={"target_phase": PURCHASE_ORDER_PHASE.value},
        )

    request_items = await get_request_items(session, pr.id, include_transferred=False)
    quotation_items, supplier_items = await load_quotation_lines(
        session, sq.quotation_id, sq.id
    )
    partition = partition_items(
        request_items, quotation_items, supplier_items, request_id=pr.id
    )
    if not partition.fulfilled:
        raise InvalidTransition(
            "The chosen supplier quotation has no deliverable items",
            request_id=pr.id,
            details={"supplier_quotation_id": str(sq.id)},
        )

    po, _ = await create_purchase_order(session, pr, sq, partition.fulfilled, created_by)
    logger.info("purchase_order_rebuilt", request_id=str(pr.id), order_number=po.order_number)
    return po


async def require_purchase_order(session: AsyncSession, request_id) -> PurchaseOrder:
    po = await get_purchase_order(session, request_id)
    if po is None:
        raise EntityNotFound(
            f"Purchase request {request_id} has no purchase order",
            request_id=request_id,
            details={"entity": "PurchaseOrder"},
        )
    return po
