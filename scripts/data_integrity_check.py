"""
Read-only integrity report for the purchase workflow tables.

Nothing here writes: violations are printed for a human to investigate.

    python scripts/data_integrity_check.py
"""

import asyncio
import os
import sys
from collections import defaultdict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

sys.path.append(os.getcwd())

from purchase_workflow.database import AsyncSessionLocal
from purchase_workflow.models import (
    ApprovalHistory,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseRequest,
    RequestItem,
    SupplierQuotation,
)
from purchase_workflow.services.phase_registry import (
    GATE_PHASES,
    PURCHASE_ORDER_PHASE,
    Phase,
    TERMINAL_PHASE,
    is_known_phase,
    phase_index,
)


async def check_phases(db: AsyncSession) -> list[str]:
    res = await db.execute(select(PurchaseRequest.request_number, PurchaseRequest.current_phase))
    return [
        f"{number}: unknown phase '{phase}'"
        for number, phase in res.all()
        if not is_known_phase(phase)
    ]


async def check_transfers(db: AsyncSession) -> list[str]:
    problems = []
    res = await db.execute(
        select(RequestItem).where(
            (RequestItem.is_transferred == True)  # noqa: E712
            | (RequestItem.transferred_to_request_id != None)  # noqa: E711
        )
    )
    for item in res.scalars().all():
        if item.is_transferred != (item.transferred_to_request_id is not None):
            problems.append(f"item {item.id}: transfer flag and link disagree")
            continue
        target = await db.execute(
            select(func.count(RequestItem.id)).where(
                RequestItem.purchase_request_id == item.transferred_to_request_id,
                RequestItem.description == item.description,
                RequestItem.requested_quantity == item.requested_quantity,
            )
        )
        if not target.scalar():
            problems.append(
                f"item {item.id}: request {item.transferred_to_request_id} has no matching copy"
            )
    return problems


async def check_chosen_suppliers(db: AsyncSession) -> list[str]:
    res = await db.execute(
        select(SupplierQuotation.quotation_id, func.count(SupplierQuotation.id))
        .where(SupplierQuotation.is_chosen == True)  # noqa: E712
        .group_by(SupplierQuotation.quotation_id)
        .having(func.count(SupplierQuotation.id) > 1)
    )
    return [f"quotation {qid}: {n} chosen supplier quotations" for qid, n in res.all()]


async def check_gates(db: AsyncSession) -> list[str]:
    """Requests past a gate must carry enough distinct approvals in that gate's cycle."""
    problems = []
    res = await db.execute(
        select(PurchaseRequest).where(PurchaseRequest.current_phase != TERMINAL_PHASE.value)
    )
    for pr in res.scalars().all():
        if not is_known_phase(pr.current_phase):
            continue
        for gate, gate_phase in GATE_PHASES.items():
            if phase_index(pr.current_phase) <= phase_index(gate_phase):
                continue
            cycle = pr.a1_cycle if gate.value == "A1" else pr.a2_cycle
            rows = await db.execute(
                select(ApprovalHistory).where(
                    ApprovalHistory.purchase_request_id == pr.id,
                    ApprovalHistory.approver_type == gate.value,
                    ApprovalHistory.approval_cycle == cycle,
                    ApprovalHistory.approved == True,  # noqa: E712
                )
            )
            approvals = rows.scalars().all()
            dual = any(a.requires_dual_approval for a in approvals)
            approvers = {a.approver_id for a in approvals}
            needed = 2 if dual else 1
            if len(approvers) < needed:
                problems.append(
                    f"{pr.request_number}: in {pr.current_phase} with {len(approvers)} "
                    f"{gate.value} approver(s), {needed} required"
                )
    return problems


async def check_purchase_orders(db: AsyncSession) -> list[str]:
    problems = []
    res = await db.execute(
        select(PurchaseOrder, PurchaseRequest)
        .join(PurchaseRequest, PurchaseRequest.id == PurchaseOrder.purchase_request_id)
    )
    early = {Phase.SOLICITACAO.value, Phase.APROVACAO_A1.value, Phase.COTACAO.value}
    for po, pr in res.all():
        if pr.current_phase in early:
            problems.append(
                f"{po.order_number}: request {pr.request_number} is in {pr.current_phase}, "
                f"before {PURCHASE_ORDER_PHASE.value}"
            )
        total = await db.execute(
            select(func.coalesce(func.sum(PurchaseOrderItem.total_price_cents), 0)).where(
                PurchaseOrderItem.purchase_order_id == po.id
            )
        )
        items_total = total.scalar()
        if items_total != po.total_value_cents:
            problems.append(
                f"{po.order_number}: total {po.total_value_cents} != items {items_total}"
            )
    return problems


CHECKS = [
    ("Phases belong to the registry", check_phases),
    ("Transferred items are linked to a matching copy", check_transfers),
    ("At most one chosen supplier per quotation", check_chosen_suppliers),
    ("Gates passed with enough distinct approvers", check_gates),
    ("Purchase orders sit on eligible requests and add up", check_purchase_orders),
]


async def run_checks(db: AsyncSession) -> dict[str, list[str]]:
    report = defaultdict(list)
    for title, check in CHECKS:
        report[title].extend(await check(db))
    return dict(report)


async def main():
    async with AsyncSessionLocal() as db:
        print("Starting Purchase Workflow Integrity Check...")
        print("=" * 60)

        report = await run_checks(db)
        failures = 0
        for idx, (title, problems) in enumerate(report.items(), start=1):
            print(f"\n[{idx}] {title}...")
            if problems:
                failures += len(problems)
                print(f"❌ {len(problems)} violation(s):")
                for p in problems:
                    print(f"   - {p}")
            else:
                print("✅ OK")

        print("\n" + "=" * 60)
        print(f"Integrity Check Complete. {failures} violation(s).")
        return failures


if __name__ == "__main__":
    sys.exit(1 if asyncio.run(main()) else 0)
