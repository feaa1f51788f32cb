"""
Phase transition controller.

Every phase change goes through apply_transition(), inside the caller's
atomic() block and with the request row locked. Checks run in order:

  1. the registry allows current → target           (InvalidTransition)
  2. leaving a gate forward needs it approved        (ApprovalGateNotSatisfied)
     leaving cotacao forward needs a purchase order  (InvalidTransition)
  3. regressing below pedido_compra voids the order
  4. entering pedido_compra without an order rebuilds it
  5. entering a gate reopens it with a fresh policy evaluation

then the phase is written with one audit row and one queued event.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.exceptions import ApprovalGateNotSatisfied, InvalidTransition
from purchase_workflow.models.purchase_request import PurchaseRequest
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services import approval_policy
from purchase_workflow.services.approval_config_service import resolve_threshold_source
from purchase_workflow.services.approval_policy import GateState
from purchase_workflow.services.audit_service import create_audit_log
from purchase_workflow.services.event_gateway import EVENT_PHASE_CHANGED, WorkflowEvent
from purchase_workflow.services.phase_registry import (
    Gate,
    Phase,
    PURCHASE_ORDER_PHASE,
    gate_exited,
    gate_for_phase,
    is_forward,
    is_known_phase,
    is_valid_transition,
    voids_purchase_order,
)
from purchase_workflow.services.purchase_order_service import (
    get_purchase_order,
    rebuild_purchase_order,
    void_purchase_order,
)
from purchase_workflow.services.request_service import lock_request
from purchase_workflow.services.unit_of_work import atomic

logger = structlog.get_logger()


def gate_state(pr: PurchaseRequest, gate: Gate) -> GateState:
    return GateState(pr.a1_state if gate == Gate.A1 else pr.a2_state)


def set_gate_state(pr: PurchaseRequest, gate: Gate, state: GateState) -> None:
    if gate == Gate.A1:
        pr.a1_state = state.value
    else:
        pr.a2_state = state.value


def gate_cycle(pr: PurchaseRequest, gate: Gate) -> int:
    return pr.a1_cycle if gate == Gate.A1 else pr.a2_cycle


async def _open_gate(session: AsyncSession, pr: PurchaseRequest, gate: Gate) -> None:
    """Start a new approval cycle, evaluated against the current total."""
    requirement = approval_policy.evaluate(
        pr.total_cents, await resolve_threshold_source(session)
    )
    set_gate_state(pr, gate, GateState.PENDING)
    if gate == Gate.A1:
        pr.a1_cycle += 1
    else:
        pr.a2_cycle += 1
    pr.requires_dual_approval = requirement.requires_dual_approval
    pr.approval_threshold_cents = requirement.threshold_cents
    pr.first_approver_id = None
    pr.first_approved_at = None
    pr.second_approver_id = None
    pr.second_approved_at = None
    pr.rejection_reason = None


async def apply_transition(
    session: AsyncSession,
    pr: PurchaseRequest,
    target: Phase,
    actor: Actor,
    payload: Optional[dict] = None,
) -> WorkflowEvent:
    """
    Validate and apply current → target on a locked request.

    Uses session.flush(); the caller owns the transaction and publishes the
    returned event after commit.
    """
    current = Phase(pr.current_phase)
    target = Phase(target)

    if not is_valid_transition(current, target):
        raise InvalidTransition(
            f"Cannot move from {current.value} to {target.value}",
            request_id=pr.id,
            details={"current_phase": current.value, "target_phase": target.value},
        )

    gate = gate_exited(current, target)
    if gate is not None and not approval_policy.is_approved(gate_state(pr, gate)):
        raise ApprovalGateNotSatisfied(
            f"{gate.value} approval is required before moving to {target.value}",
            request_id=pr.id,
            details={
                "gate": gate.value,
                "gate_state": gate_state(pr, gate).value,
                "requires_dual_approval": pr.requires_dual_approval,
            },
        )

    if current == Phase.COTACAO and is_forward(current, target):
        if await get_purchase_order(session, pr.id) is None:
            raise InvalidTransition(
                "Select a supplier quotation before leaving cotacao",
                request_id=pr.id,
                details={"current_phase": current.value, "target_phase": target.value},
            )

    voided = None
    if voids_purchase_order(current, target):
        voided = await void_purchase_order(session, pr)

    if target == PURCHASE_ORDER_PHASE and await get_purchase_order(session, pr.id) is None:
        await rebuild_purchase_order(session, pr, actor.id)

    entered_gate = gate_for_phase(target)
    if entered_gate is not None:
        await _open_gate(session, pr, entered_gate)

    pr.current_phase = target.value
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor.id,
        action="PHASE_TRANSITION",
        entity_type="PurchaseRequest",
        entity_id=pr.id,
        before_state={"current_phase": current.value},
        after_state={"current_phase": target.value},
        actor_email=actor.email,
    )

    logger.info(
        "phase_transitioned",
        request_id=str(pr.id),
        from_phase=current.value,
        to_phase=target.value,
        voided_order=voided,
        actor_id=str(actor.id),
    )

    event_payload = {"from_phase": current.value, "to_phase": target.value}
    if voided:
        event_payload["voided_order_number"] = voided
    if pr.parent_request_id:
        event_payload["parent_request_id"] = str(pr.parent_request_id)
    event_payload.update(payload or {})

    return WorkflowEvent(
        event_type=EVENT_PHASE_CHANGED,
        request_id=str(pr.id),
        new_phase=target.value,
        payload=event_payload,
    )


async def transition_phase(
    session: AsyncSession, request_id, target_phase: str, actor: Actor
) -> PurchaseRequest:
    """
    Move a request to `target_phase`.

    Asking for the phase the request is already in is a no-op: the current
    snapshot is returned and nothing is written or emitted.
    """
    async with atomic(session, request_id) as events:
        pr = await lock_request(session, request_id)

        if not is_known_phase(str(getattr(target_phase, "value", target_phase))):
            raise InvalidTransition(
                f"Unknown phase {target_phase}",
                request_id=pr.id,
                details={"target_phase": str(target_phase)},
            )
        target = Phase(target_phase)

        if target.value == pr.current_phase:
            logger.info(
                "phase_transition_noop",
                request_id=str(pr.id),
                phase=pr.current_phase,
            )
        else:
            events.append(await apply_transition(session, pr, target, actor))

    return pr
