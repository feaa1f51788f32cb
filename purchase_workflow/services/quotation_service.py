"""Quotations (RFQ envelopes) and the supplier answers to them."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.exceptions import (
    ActionNotPermitted,
    AlreadyExists,
    DuplicateQuotationLine,
    EntityNotFound,
    InvalidTransition,
)
from purchase_workflow.models.quotation import (
    Quotation,
    QuotationItem,
    SupplierQuotation,
    SupplierQuotationItem,
)
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.quotation import QuotationCreate, SupplierQuotationCreate
from purchase_workflow.services.audit_service import create_audit_log
from purchase_workflow.services.event_gateway import EVENT_REQUEST_UPDATED, WorkflowEvent
from purchase_workflow.services.numbering import QUOTATION_PREFIX, next_document_number
from purchase_workflow.services.phase_registry import Phase
from purchase_workflow.services.request_service import as_uuid, get_request, get_request_items
from purchase_workflow.services.unit_of_work import atomic

logger = structlog.get_logger()


def _require_buyer(actor: Actor) -> None:
    if not actor.is_buyer:
        raise ActionNotPermitted(
            "Only buyers can manage quotations",
            details={"actor_id": str(actor.id)},
        )


async def get_quotation(session: AsyncSession, quotation_id) -> Quotation:
    quotation = await session.get(Quotation, as_uuid(quotation_id, "Quotation"))
    if quotation is None:
        raise EntityNotFound(
            f"Quotation {quotation_id} not found",
            details={"entity": "Quotation"},
        )
    return quotation


async def create_quotation(
    session: AsyncSession, actor: Actor, body: QuotationCreate
) -> tuple[Quotation, list[QuotationItem]]:
    """Open an RFQ for a request in cotacao, one line per active request item."""
    _require_buyer(actor)

    async with atomic(session, body.purchase_request_id) as events:
        pr = await get_request(session, body.purchase_request_id)
        if pr.current_phase != Phase.COTACAO.value:
            raise InvalidTransition(
                f"Quotations can only be opened in {Phase.COTACAO.value}",
                request_id=pr.id,
                details={"current_phase": pr.current_phase},
            )

        request_items = await get_request_items(session, pr.id, include_transferred=False)

        quotation = Quotation(
            quotation_number=await next_document_number(
                session, Quotation.quotation_number, QUOTATION_PREFIX
            ),
            purchase_request_id=pr.id,
            status="draft",
            deadline=body.deadline,
            terms_and_conditions=body.terms_and_conditions,
            created_by=actor.id,
        )
        session.add(quotation)
        await session.flush()

        items = []
        for ri in request_items:
            qi = QuotationItem(
                quotation_id=quotation.id,
                request_item_id=ri.id,
                item_code=ri.product_code or f"ITEM-{ri.line_number:03d}",
                description=ri.description,
                quantity=ri.effective_quantity,
                unit=ri.unit,
                specifications=ri.technical_specification,
            )
            session.add(qi)
            items.append(qi)
        pr.buyer_id = actor.id
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.id,
            action="QUOTATION_CREATED",
            entity_type="Quotation",
            entity_id=quotation.id,
            after_state={
                "quotation_number": quotation.quotation_number,
                "purchase_request_id": str(pr.id),
                "items": len(items),
            },
            actor_email=actor.email,
        )
        events.append(WorkflowEvent(
            event_type=EVENT_REQUEST_UPDATED,
            request_id=str(pr.id),
            new_phase=pr.current_phase,
            payload={"quotation_id": str(quotation.id)},
        ))

    logger.info(
        "quotation_created",
        quotation_id=str(quotation.id),
        quotation_number=quotation.quotation_number,
        request_id=str(pr.id),
        items=len(items),
    )
    return quotation, items


async def add_supplier_quotation(
    session: AsyncSession, actor: Actor, quotation_id, body: SupplierQuotationCreate
) -> tuple[SupplierQuotation, list[SupplierQuotationItem]]:
    """
    Register one supplier's priced answer. A line total defaults to unit
    price times the quantity the supplier can deliver: the quotation line
    quantity, or a smaller available_quantity when one is given.
    """
    _require_buyer(actor)

    async with atomic(session):
        quotation = await get_quotation(session, quotation_id)

        pr = await get_request(session, quotation.purchase_request_id)
        if pr.current_phase != Phase.COTACAO.value:
            raise InvalidTransition(
                f"Supplier answers can only be registered in {Phase.COTACAO.value}",
                request_id=pr.id,
                details={"current_phase": pr.current_phase, "quotation_id": str(quotation.id)},
            )

        seen = set()
        for line in body.items:
            if line.quotation_item_id in seen:
                raise DuplicateQuotationLine(
                    f"Quotation item {line.quotation_item_id} is priced more than once",
                    request_id=pr.id,
                    details={"quotation_item_id": str(line.quotation_item_id)},
                )
            seen.add(line.quotation_item_id)

        qi_result = await session.execute(
            select(QuotationItem).where(QuotationItem.quotation_id == quotation.id)
        )
        quotation_items = {qi.id: qi for qi in qi_result.scalars().all()}

        existing = await session.execute(
            select(SupplierQuotation.id).where(
                SupplierQuotation.quotation_id == quotation.id,
                SupplierQuotation.supplier_id == body.supplier_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyExists(
                f"Supplier {body.supplier_id} already answered quotation {quotation.quotation_number}",
                request_id=quotation.purchase_request_id,
                details={"supplier_id": str(body.supplier_id)},
            )

        sq = SupplierQuotation(
            quotation_id=quotation.id,
            supplier_id=body.supplier_id,
            status="received",
            payment_terms=body.payment_terms,
            delivery_terms=body.delivery_terms,
            observations=body.observations,
            received_at=datetime.utcnow(),
        )
        session.add(sq)
        await session.flush()

        items = []
        for line in body.items:
            qi = quotation_items.get(line.quotation_item_id)
            if qi is None:
                raise EntityNotFound(
                    f"Quotation item {line.quotation_item_id} is not part of {quotation.quotation_number}",
                    request_id=quotation.purchase_request_id,
                    details={"entity": "QuotationItem", "id": str(line.quotation_item_id)},
                )
            total = line.total_price_cents
            if total is None:
                quantity = qi.quantity
                if line.available_quantity is not None:
                    quantity = min(quantity, line.available_quantity)
                total = line.unit_price_cents * quantity
            si = SupplierQuotationItem(
                supplier_quotation_id=sq.id,
                quotation_item_id=qi.id,
                unit_price_cents=line.unit_price_cents,
                total_price_cents=total,
                is_available=line.is_available,
                available_quantity=line.available_quantity,
                delivery_days=line.delivery_days,
                brand=line.brand,
                model=line.model,
                observations=line.observations,
            )
            session.add(si)
            items.append(si)

        sq.total_value_cents = sum(si.total_price_cents for si in items if si.is_available)
        quotation.status = "received"
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.id,
            action="SUPPLIER_QUOTATION_RECEIVED",
            entity_type="SupplierQuotation",
            entity_id=sq.id,
            after_state={
                "quotation_id": str(quotation.id),
                "supplier_id": str(sq.supplier_id),
                "total_value_cents": sq.total_value_cents,
            },
            actor_email=actor.email,
        )

    logger.info(
        "supplier_quotation_added",
        quotation_id=str(quotation.id),
        supplier_quotation_id=str(sq.id),
        supplier_id=str(sq.supplier_id),
        total_value_cents=sq.total_value_cents,
    )
    return sq, items


async def get_quotation_detail(session: AsyncSession, quotation_id) -> dict:
    quotation = await get_quotation(session, quotation_id)

    qi_result = await session.execute(
        select(QuotationItem)
        .where(QuotationItem.quotation_id == quotation.id)
        .order_by(QuotationItem.item_code)
    )
    sq_result = await session.execute(
        select(SupplierQuotation)
        .where(SupplierQuotation.quotation_id == quotation.id)
        .order_by(SupplierQuotation.created_at)
    )
    supplier_quotations = list(sq_result.scalars().all())

    supplier_items: dict = {sq.id: [] for sq in supplier_quotations}
    if supplier_quotations:
        si_result = await session.execute(
            select(SupplierQuotationItem).where(
                SupplierQuotationItem.supplier_quotation_id.in_(list(supplier_items))
            )
        )
        for si in si_result.scalars().all():
            supplier_items[si.supplier_quotation_id].append(si)

    return {
        "quotation": quotation,
        "items": list(qi_result.scalars().all()),
        "supplier_quotations": [(sq, supplier_items[sq.id]) for sq in supplier_quotations],
    }


async def list_quotations_for_request(
    session: AsyncSession, request_id, status: Optional[str] = None
) -> list[Quotation]:
    q = select(Quotation).where(Quotation.purchase_request_id == as_uuid(request_id))
    if status:
        q = q.where(Quotation.status == status)
    result = await session.execute(q.order_by(Quotation.created_at.desc()))
    return list(result.scalars().all())
