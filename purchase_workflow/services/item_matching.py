"""
Item matching for supplier selection.

Each active request item is resolved to its quotation line and then to the
chosen supplier's priced line. The quotation line's `request_item_id` is the
canonical link. Matching by description (case-insensitive, trimmed) is a
degraded path used only for quotation lines entered without that link.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from purchase_workflow.exceptions import ReconciliationMatchError
from purchase_workflow.models.purchase_request import RequestItem
from purchase_workflow.models.quotation import QuotationItem, SupplierQuotationItem


@dataclass(frozen=True)
class MatchedLine:
    request_item: RequestItem
    quotation_item: QuotationItem
    supplier_item: SupplierQuotationItem
    quantity: int


@dataclass
class Partition:
    fulfilled: list[MatchedLine] = field(default_factory=list)
    unfulfilled: list[RequestItem] = field(default_factory=list)

    @property
    def fulfilled_total_cents(self) -> int:
        return sum(line.supplier_item.total_price_cents for line in self.fulfilled)


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().casefold()


def resolve_quotation_item(
    request_item: RequestItem,
    quotation_items: Iterable[QuotationItem],
) -> Optional[QuotationItem]:
    """Find the quotation line for a request item, by link first, then by description."""
    unlinked = []
    for qi in quotation_items:
        if qi.request_item_id is not None:
            if qi.request_item_id == request_item.id:
                return qi
        else:
            unlinked.append(qi)

    wanted = _normalize(request_item.description)
    candidates = [qi for qi in unlinked if _normalize(qi.description) == wanted]
    if len(candidates) > 1:
        raise ReconciliationMatchError(
            f"Request item '{request_item.description}' matches more than one quotation line",
            request_id=request_item.purchase_request_id,
            details={
                "request_item_id": str(request_item.id),
                "quotation_item_ids": [str(qi.id) for qi in candidates],
            },
        )
    return candidates[0] if candidates else None


def fulfilled_quantity(request_item: RequestItem, supplier_item: SupplierQuotationItem) -> int:
    """Quantity the supplier can deliver for a request item; 0 means unavailable."""
    if not supplier_item.is_available:
        return 0
    wanted = request_item.effective_quantity
    if supplier_item.available_quantity is None:
        return wanted
    return max(0, min(wanted, supplier_item.available_quantity))


def partition_items(
    request_items: list[RequestItem],
    quotation_items: list[QuotationItem],
    supplier_items: list[SupplierQuotationItem],
    unavailable_ids: Iterable[uuid.UUID] = (),
    request_id=None,
) -> Partition:
    """
    Split request items into lines that go into the purchase order and items
    that move to a derived request.

    Items in `unavailable_ids` and items the supplier marks unavailable (or
    offers zero units of) are unfulfilled. Every other item must resolve to a
    priced supplier line, otherwise ReconciliationMatchError is raised and
    nothing is partitioned.
    """
    excluded = {uuid.UUID(str(i)) for i in unavailable_ids}
    known = {ri.id for ri in request_items}
    unknown = excluded - known
    if unknown:
        raise ReconciliationMatchError(
            "Unavailable items do not belong to the request's active items",
            request_id=request_id,
            details={"request_item_ids": sorted(str(i) for i in unknown)},
        )

    by_quotation_item = {si.quotation_item_id: si for si in supplier_items}
    claimed: dict[uuid.UUID, uuid.UUID] = {}
    partition = Partition()

    for ri in sorted(request_items, key=lambda r: r.line_number):
        if ri.id in excluded:
            partition.unfulfilled.append(ri)
            continue

        qi = resolve_quotation_item(ri, quotation_items)
        if qi is None:
            raise ReconciliationMatchError(
                f"No quotation line found for request item {ri.line_number}",
                request_id=request_id,
                details={"request_item_id": str(ri.id), "description": ri.description},
            )
        if qi.id in claimed:
            raise ReconciliationMatchError(
                f"Quotation line '{qi.description}' resolves to more than one request item",
                request_id=request_id,
                details={
                    "quotation_item_id": str(qi.id),
                    "request_item_ids": [str(claimed[qi.id]), str(ri.id)],
                },
            )
        claimed[qi.id] = ri.id

        si = by_quotation_item.get(qi.id)
        if si is None:
            raise ReconciliationMatchError(
                f"Chosen supplier has no priced line for request item {ri.line_number}",
                request_id=request_id,
                details={"request_item_id": str(ri.id), "quotation_item_id": str(qi.id)},
            )

        quantity = fulfilled_quantity(ri, si)
        if quantity == 0:
            partition.unfulfilled.append(ri)
        else:
            partition.fulfilled.append(
                MatchedLine(request_item=ri, quotation_item=qi, supplier_item=si, quantity=quantity)
            )

    return partition
