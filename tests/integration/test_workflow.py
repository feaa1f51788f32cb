"""
Integration tests: full request lifecycles through the real services on an
in-memory SQLite database.

Tests: dual approval at A1 and A2, supplier answer validation, reconciliation
       (partial, total loss), order voiding and rebuilding, idempotent
       transitions, gate enforcement, rejections, threshold configuration,
       numbering and the integrity report.
"""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from purchase_workflow.exceptions import (
    ActionNotPermitted,
    ApprovalGateNotSatisfied,
    DuplicateApprover,
    DuplicateQuotationLine,
    InvalidTransition,
    RejectionReasonRequired,
)
from purchase_workflow.models.purchase_order import PurchaseOrderItem
from purchase_workflow.services.approval_config_service import create_configuration
from purchase_workflow.services.approval_policy import GateState, RejectionAction
from purchase_workflow.services.approval_service import list_approval_history, submit_approval
from purchase_workflow.services.event_gateway import (
    EVENT_PHASE_CHANGED,
    EVENT_REQUEST_CREATED,
    EVENT_REQUEST_UPDATED,
)
from purchase_workflow.services.phase_registry import Gate, Phase
from purchase_workflow.services.purchase_order_service import (
    get_purchase_order,
    get_purchase_order_items,
)
from purchase_workflow.services.quotation_service import get_quotation_detail
from purchase_workflow.services.reconciliation_service import select_supplier_quotation
from purchase_workflow.services.request_service import get_request, get_request_items
from purchase_workflow.services.transition_service import transition_phase
from scripts.data_integrity_check import run_checks

# 2 x 1.500,00 = 3.000,00 BRL, above the 2.500,00 default
DUAL_ITEMS = [
    {"description": "Notebook 14", "requested_quantity": 2, "estimated_unit_price_cents": 150_000},
]

# 2 x 1.000,00 + 5 x 100,00 = 2.500,00 BRL, exactly at the default
TWO_LINE_ITEMS = [
    {"product_code": "MON-24", "description": "Monitor 24", "requested_quantity": 2,
     "estimated_unit_price_cents": 100_000},
    {"description": "Teclado ABNT2", "requested_quantity": 5, "estimated_unit_price_cents": 10_000},
]


async def _reconciled(workflow, available=(True, False), unavailable_item_ids=()):
    """Request with TWO_LINE_ITEMS taken through supplier selection."""
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(
        quotation, quotation_items, prices=[90_000, 9_000], available=list(available)
    )
    result = await select_supplier_quotation(
        workflow.session, quotation.id, sq.id, list(unavailable_item_ids), workflow.buyer
    )
    return pr, quotation, sq, result


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dual_approval_needs_two_distinct_approvers(db, workflow, approver_a, approver_b):
    pr = await workflow.create_request(DUAL_ITEMS)
    pr_id = pr.id
    assert pr.total_cents == 300_000
    assert pr.requires_dual_approval is True

    await transition_phase(db, pr_id, Phase.APROVACAO_A1, workflow.requester)

    pr = await submit_approval(db, pr_id, approver_a, Gate.A1, True)
    assert pr.current_phase == Phase.APROVACAO_A1.value
    assert pr.a1_state == GateState.APPROVED_STEP1.value
    assert pr.first_approver_id == approver_a.id

    with pytest.raises(DuplicateApprover):
        await submit_approval(db, pr_id, approver_a, Gate.A1, True)

    pr = await submit_approval(db, pr_id, approver_b, Gate.A1, True)
    assert pr.current_phase == Phase.COTACAO.value
    assert pr.a1_state == GateState.APPROVED_FINAL.value
    assert pr.second_approver_id == approver_b.id

    history = await list_approval_history(db, pr_id, Gate.A1)
    assert [h.approval_step for h in history] == [1, 2]
    assert {h.approver_id for h in history} == {approver_a.id, approver_b.id}
    assert all(h.threshold_cents == 250_000 for h in history)


@pytest.mark.asyncio
async def test_single_approval_advances_immediately(db, workflow, approver_a):
    pr = await workflow.create_request(
        [{"description": "Cadeira", "requested_quantity": 1, "estimated_unit_price_cents": 80_000}]
    )
    assert pr.requires_dual_approval is False

    await transition_phase(db, pr.id, Phase.APROVACAO_A1, workflow.requester)
    pr = await submit_approval(db, pr.id, approver_a, Gate.A1, True)

    assert pr.current_phase == Phase.COTACAO.value
    assert pr.a1_state == GateState.APPROVED_SINGLE.value


@pytest.mark.asyncio
async def test_cannot_leave_gate_without_approval(db, workflow):
    pr = await workflow.create_request(DUAL_ITEMS)
    pr_id = pr.id
    await transition_phase(db, pr_id, Phase.APROVACAO_A1, workflow.requester)

    with pytest.raises(ApprovalGateNotSatisfied) as exc_info:
        await transition_phase(db, pr_id, Phase.COTACAO, workflow.requester)
    assert exc_info.value.details["gate"] == Gate.A1.value
    assert exc_info.value.request_id == str(pr_id)

    pr = await get_request(db, pr_id)
    assert pr.current_phase == Phase.APROVACAO_A1.value


@pytest.mark.asyncio
async def test_decision_outside_gate_phase_is_rejected(db, workflow, approver_a):
    pr = await workflow.create_request(DUAL_ITEMS)
    with pytest.raises(InvalidTransition):
        await submit_approval(db, pr.id, approver_a, Gate.A1, True)


@pytest.mark.asyncio
async def test_actor_without_role_cannot_decide(db, workflow, buyer):
    pr = await workflow.create_request(DUAL_ITEMS)
    await transition_phase(db, pr.id, Phase.APROVACAO_A1, workflow.requester)
    with pytest.raises(ActionNotPermitted):
        await submit_approval(db, pr.id, buyer, Gate.A1, True)


@pytest.mark.asyncio
async def test_a1_rejection_returns_for_correction_and_reopens_gate(db, workflow, approver_a):
    pr = await workflow.create_request(DUAL_ITEMS)
    pr_id = pr.id
    pr = await transition_phase(db, pr_id, Phase.APROVACAO_A1, workflow.requester)
    assert pr.a1_cycle == 1

    with pytest.raises(RejectionReasonRequired):
        await submit_approval(db, pr_id, approver_a, Gate.A1, False)

    pr = await submit_approval(db, pr_id, approver_a, Gate.A1, False, reason="Falta orçamento")
    assert pr.current_phase == Phase.SOLICITACAO.value
    assert pr.a1_state == GateState.REJECTED.value
    assert pr.rejection_reason == "Falta orçamento"

    pr = await transition_phase(db, pr_id, Phase.APROVACAO_A1, workflow.requester)
    assert pr.a1_cycle == 2
    assert pr.a1_state == GateState.PENDING.value
    assert pr.rejection_reason is None
    assert pr.first_approver_id is None

    history = await list_approval_history(db, pr_id)
    assert len(history) == 1
    assert history[0].approved is False
    assert history[0].approval_cycle == 1


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_same_phase_transition_is_a_noop(db, workflow, events):
    pr = await workflow.create_request(DUAL_ITEMS)
    version = pr.version
    events.clear()

    pr = await transition_phase(db, pr.id, Phase.SOLICITACAO, workflow.requester)

    assert pr.version == version
    assert events == []


@pytest.mark.asyncio
async def test_transition_emits_one_event_after_commit(db, workflow, events):
    pr = await workflow.create_request(DUAL_ITEMS)
    events.clear()

    await transition_phase(db, pr.id, Phase.APROVACAO_A1, workflow.requester)

    assert len(events) == 1
    assert events[0].event_type == EVENT_PHASE_CHANGED
    assert events[0].new_phase == Phase.APROVACAO_A1.value
    assert events[0].payload["from_phase"] == Phase.SOLICITACAO.value


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [Phase.COTACAO, Phase.PEDIDO_COMPRA, "fase_inexistente"])
async def test_unreachable_phase_is_rejected(db, workflow, events, target):
    pr = await workflow.create_request(DUAL_ITEMS)
    pr_id = pr.id
    events.clear()

    with pytest.raises(InvalidTransition):
        await transition_phase(db, pr_id, target, workflow.requester)

    pr = await get_request(db, pr_id)
    assert pr.current_phase == Phase.SOLICITACAO.value
    assert events == []


@pytest.mark.asyncio
async def test_cotacao_cannot_advance_without_purchase_order(db, workflow):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    pr_id = pr.id

    with pytest.raises(InvalidTransition):
        await transition_phase(db, pr_id, Phase.APROVACAO_A2, workflow.requester)


@pytest.mark.asyncio
async def test_archived_request_is_terminal(db, workflow):
    pr = await workflow.create_request(DUAL_ITEMS)
    pr_id = pr.id
    await transition_phase(db, pr_id, Phase.ARQUIVADO, workflow.requester)

    with pytest.raises(InvalidTransition):
        await transition_phase(db, pr_id, Phase.SOLICITACAO, workflow.requester)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_partial_supply_splits_into_order_and_derived_request(db, workflow, events):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(
        quotation, quotation_items, prices=[90_000, 9_000], available=[True, False]
    )
    assert sq.total_value_cents == 180_000
    events.clear()

    result = await select_supplier_quotation(db, quotation.id, sq.id, [], workflow.buyer)

    # original request moves on with the fulfilled part only
    pr = result.request
    assert pr.current_phase == Phase.APROVACAO_A2.value
    assert pr.total_cents == 180_000
    assert pr.buyer_id == workflow.buyer.id
    assert pr.a2_state == GateState.PENDING.value
    assert pr.requires_dual_approval is False

    po = result.purchase_order
    assert po.total_value_cents == 180_000
    assert po.supplier_id == sq.supplier_id
    assert [(i.quantity, i.unit_price_cents) for i in result.order_items] == [(2, 90_000)]

    derived = result.derived_request
    assert derived.current_phase == Phase.SOLICITACAO.value
    assert derived.parent_request_id == pr.id
    assert derived.requester_id == pr.requester_id
    assert derived.total_cents == 50_000
    assert derived.requires_dual_approval is False
    assert [(i.description, i.requested_quantity) for i in result.derived_items] == [
        ("Teclado ABNT2", 5)
    ]
    assert pr.derived_request_id == derived.id

    items = await get_request_items(db, pr.id)
    assert [i.is_transferred for i in items] == [False, True]
    assert items[1].transferred_to_request_id == derived.id
    assert items[0].approved_quantity == 2

    # value conservation: fulfilled (at supplier price) and transferred parts
    # together cover every original item
    assert sum(i.requested_quantity for i in items) == 2 + 5
    assert len(result.order_items) + len(result.derived_items) == len(items)

    by_request = {(e.event_type, e.request_id) for e in events}
    assert (EVENT_PHASE_CHANGED, str(pr.id)) in by_request
    assert (EVENT_REQUEST_CREATED, str(derived.id)) in by_request
    created = next(e for e in events if e.event_type == EVENT_REQUEST_CREATED)
    assert created.payload["parent_request_id"] == str(pr.id)

    report = await run_checks(db)
    assert all(not problems for problems in report.values()), report


@pytest.mark.asyncio
async def test_nothing_deliverable_keeps_request_in_quotation(db, workflow, events):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    items = await get_request_items(db, pr.id)
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(quotation, quotation_items, prices=[90_000, 9_000])
    events.clear()

    result = await select_supplier_quotation(
        db, quotation.id, sq.id, [i.id for i in items], workflow.buyer
    )

    assert result.purchase_order is None
    assert await get_purchase_order(db, pr.id) is None
    assert result.request.current_phase == Phase.COTACAO.value
    assert result.request.total_cents == 250_000
    assert len(result.derived_items) == 2
    assert result.derived_request.total_cents == 250_000
    assert sq.is_chosen is True

    assert {e.event_type for e in events} == {EVENT_REQUEST_UPDATED, EVENT_REQUEST_CREATED}


@pytest.mark.asyncio
async def test_partial_quantity_is_ordered_without_spin_off(db, workflow):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(
        quotation,
        quotation_items,
        prices=[90_000, 9_000],
        available_quantity=[1, None],
    )

    result = await select_supplier_quotation(db, quotation.id, sq.id, [], workflow.buyer)

    assert result.derived_request is None
    assert [i.quantity for i in result.order_items] == [1, 5]
    assert result.purchase_order.total_value_cents == 90_000 + 45_000
    assert result.request.total_cents == 135_000
    items = await get_request_items(db, pr.id)
    assert [i.approved_quantity for i in items] == [1, 5]


@pytest.mark.asyncio
async def test_match_failure_leaves_no_trace(db, workflow, events):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    pr_id = pr.id
    quotation, quotation_items = await workflow.open_quotation(pr)
    quotation_id = quotation.id
    # supplier only priced the first line
    sq, _ = await workflow.supplier_answer(quotation, quotation_items[:1], prices=[90_000])
    sq_id = sq.id
    events.clear()

    from purchase_workflow.exceptions import ReconciliationMatchError

    with pytest.raises(ReconciliationMatchError) as exc_info:
        await select_supplier_quotation(db, quotation_id, sq_id, [], workflow.buyer)
    assert exc_info.value.request_id == str(pr_id)

    pr = await get_request(db, pr_id)
    assert pr.current_phase == Phase.COTACAO.value
    assert pr.derived_request_id is None
    assert await get_purchase_order(db, pr_id) is None
    assert not any(i.is_transferred for i in await get_request_items(db, pr_id))
    assert events == []


@pytest.mark.asyncio
async def test_only_buyers_select_suppliers(db, workflow, requester):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(quotation, quotation_items, prices=[90_000, 9_000])

    with pytest.raises(ActionNotPermitted):
        await select_supplier_quotation(db, quotation.id, sq.id, [], requester)


@pytest.mark.asyncio
async def test_supplier_answer_pricing_a_line_twice_is_rejected(db, workflow):
    pr = await workflow.create_request(TWO_LINE_ITEMS)
    pr = await workflow.to_cotacao(pr)
    pr_id = pr.id
    quotation, quotation_items = await workflow.open_quotation(pr)
    repeated = quotation_items[0]
    repeated_id = repeated.id

    with pytest.raises(DuplicateQuotationLine) as exc_info:
        await workflow.supplier_answer(quotation, [repeated, repeated], prices=[90_000, 80_000])
    assert exc_info.value.status_code == 422
    assert exc_info.value.request_id == str(pr_id)
    assert exc_info.value.details["quotation_item_id"] == str(repeated_id)


@pytest.mark.asyncio
async def test_supplier_answer_outside_quotation_phase_is_rejected(db, workflow):
    pr, quotation, _, _ = await _reconciled(workflow)
    pr_id = pr.id
    quotation_id = quotation.id
    assert pr.current_phase == Phase.APROVACAO_A2.value
    quotation_items = (await get_quotation_detail(db, quotation_id))["items"]

    with pytest.raises(InvalidTransition) as exc_info:
        await workflow.supplier_answer(quotation, quotation_items, prices=[85_000, 8_500])
    assert exc_info.value.details["current_phase"] == Phase.APROVACAO_A2.value

    detail = await get_quotation_detail(db, quotation_id)
    assert len(detail["supplier_quotations"]) == 1
    assert (await get_request(db, pr_id)).current_phase == Phase.APROVACAO_A2.value


# ---------------------------------------------------------------------------
# A2 evaluated against the reconciled total
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_a2_needs_one_signature_when_reconciled_total_drops_below_threshold(
    db, workflow, approver_a
):
    pr = await workflow.create_request([
        {"description": "Monitor 27", "requested_quantity": 2, "estimated_unit_price_cents": 150_000},
        {"description": "Teclado ABNT2", "requested_quantity": 5, "estimated_unit_price_cents": 10_000},
    ])
    assert pr.total_cents == 350_000
    assert pr.requires_dual_approval is True
    pr = await workflow.to_cotacao(pr)
    pr_id = pr.id
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(
        quotation, quotation_items, prices=[100_000, 9_000], available=[True, False]
    )

    result = await select_supplier_quotation(db, quotation.id, sq.id, [], workflow.buyer)
    pr = result.request
    assert pr.current_phase == Phase.APROVACAO_A2.value
    assert pr.total_cents == 200_000
    assert pr.requires_dual_approval is False

    pr = await submit_approval(db, pr_id, approver_a, Gate.A2, True)
    assert pr.current_phase == Phase.PEDIDO_COMPRA.value
    assert pr.a2_state == GateState.APPROVED_FINAL.value


@pytest.mark.asyncio
async def test_a2_dual_approval_needs_two_distinct_approvers(db, workflow, approver_a, approver_b):
    pr = await workflow.create_request(DUAL_ITEMS)
    pr = await workflow.to_cotacao(pr)
    pr_id = pr.id
    quotation, quotation_items = await workflow.open_quotation(pr)
    sq, _ = await workflow.supplier_answer(quotation, quotation_items, prices=[140_000])

    result = await select_supplier_quotation(db, quotation.id, sq.id, [], workflow.buyer)
    assert result.request.total_cents == 280_000
    assert result.request.requires_dual_approval is True

    pr = await submit_approval(db, pr_id, approver_a, Gate.A2, True)
    assert pr.current_phase == Phase.APROVACAO_A2.value
    assert pr.a2_state == GateState.APPROVED_STEP1.value
    assert pr.first_approver_id == approver_a.id

    with pytest.raises(DuplicateApprover):
        await submit_approval(db, pr_id, approver_a, Gate.A2, True)

    pr = await submit_approval(db, pr_id, approver_b, Gate.A2, True)
    assert pr.current_phase == Phase.PEDIDO_COMPRA.value
    assert pr.a2_state == GateState.APPROVED_FINAL.value
    assert pr.second_approver_id == approver_b.id

    history = await list_approval_history(db, pr_id, Gate.A2)
    assert [h.approval_step for h in history] == [1, 2]
    assert {h.approver_id for h in history} == {approver_a.id, approver_b.id}
    assert all(h.approval_value_cents == 280_000 for h in history)


# ---------------------------------------------------------------------------
# Purchase order lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_regression_voids_order_and_reapproval_rebuilds_it(db, workflow, approver_a, events):
    pr, _, sq, result = await _reconciled(workflow)
    pr_id = pr.id
    first_order_id = result.purchase_order.id

    pr = await submit_approval(db, pr_id, approver_a, Gate.A2, True)
    assert pr.current_phase == Phase.PEDIDO_COMPRA.value
    assert (await get_purchase_order(db, pr_id)).id == first_order_id

    events.clear()
    pr = await transition_phase(db, pr_id, Phase.APROVACAO_A2, workflow.requester)
    assert await get_purchase_order(db, pr_id) is None
    assert pr.a2_cycle == 2
    voided_items = await db.execute(
        select(func.count(PurchaseOrderItem.id)).where(
            PurchaseOrderItem.purchase_order_id == first_order_id
        )
    )
    assert voided_items.scalar() == 0
    assert pr.a2_state == GateState.PENDING.value
    assert events[0].payload["voided_order_number"] == result.purchase_order.order_number

    pr = await submit_approval(db, pr_id, approver_a, Gate.A2, True)
    assert pr.current_phase == Phase.PEDIDO_COMPRA.value

    rebuilt = await get_purchase_order(db, pr_id)
    assert rebuilt is not None
    assert rebuilt.id != first_order_id
    assert rebuilt.supplier_quotation_id == sq.id
    assert rebuilt.total_value_cents == 180_000
    rebuilt_items = await get_purchase_order_items(db, rebuilt.id)
    assert [(i.quantity, i.unit_price_cents) for i in rebuilt_items] == [(2, 90_000)]

    report = await run_checks(db)
    assert all(not problems for problems in report.values()), report


@pytest.mark.asyncio
async def test_a2_rejection_can_archive(db, workflow, approver_a):
    pr, _, _, _ = await _reconciled(workflow)
    pr_id = pr.id

    pr = await submit_approval(
        db, pr_id, approver_a, Gate.A2, False,
        reason="Fornecedor reprovado", rejection_action=RejectionAction.ARCHIVE,
    )

    assert pr.current_phase == Phase.ARQUIVADO.value
    assert await get_purchase_order(db, pr_id) is None


@pytest.mark.asyncio
async def test_a2_rejection_returns_to_quotation(db, workflow, approver_a):
    pr, _, _, _ = await _reconciled(workflow)
    pr_id = pr.id

    pr = await submit_approval(db, pr_id, approver_a, Gate.A2, False, reason="Preço alto")

    assert pr.current_phase == Phase.COTACAO.value
    assert await get_purchase_order(db, pr_id) is None


# ---------------------------------------------------------------------------
# Configuration and numbering
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_lower_threshold_applies_to_new_requests(db, workflow, admin):
    config = await create_configuration(db, admin, value_threshold_cents=100_000, reason="Auditoria")
    assert config.is_active

    pr = await workflow.create_request(
        [{"description": "Impressora", "requested_quantity": 1, "estimated_unit_price_cents": 150_000}]
    )

    assert pr.requires_dual_approval is True
    assert pr.approval_threshold_cents == 100_000


@pytest.mark.asyncio
async def test_only_admins_change_threshold(db, requester):
    with pytest.raises(ActionNotPermitted):
        await create_configuration(db, requester, value_threshold_cents=1, reason="x")


@pytest.mark.asyncio
async def test_request_numbers_are_sequential_per_year(workflow):
    year = datetime.utcnow().year
    first = await workflow.create_request(DUAL_ITEMS)
    second = await workflow.create_request(DUAL_ITEMS)

    assert first.request_number == f"SOL-{year}-001"
    assert second.request_number == f"SOL-{year}-002"
