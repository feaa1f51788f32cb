"""
Approval service: records gate decisions and moves the request accordingly.

Dual approval is required when the request total is strictly above the
threshold evaluated on gate entry; the second signature must come from a
different approver. An approval that closes the gate advances the phase, a
rejection sends the request to the gate's correction phase (or archives it).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.exceptions import InvalidTransition
from purchase_workflow.models.approval import ApprovalHistory
from purchase_workflow.models.purchase_request import PurchaseRequest
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services import approval_policy
from purchase_workflow.services.approval_policy import RejectionAction
from purchase_workflow.services.audit_service import create_audit_log
from purchase_workflow.services.event_gateway import EVENT_REQUEST_UPDATED, WorkflowEvent
from purchase_workflow.services.phase_registry import (
    Gate,
    GATE_CORRECTION_PHASES,
    GATE_PHASES,
    TERMINAL_PHASE,
    next_phase,
)
from purchase_workflow.services.request_service import as_uuid, get_request, lock_request
from purchase_workflow.services.transition_service import (
    apply_transition,
    gate_cycle,
    gate_state,
    set_gate_state,
)
from purchase_workflow.services.unit_of_work import atomic

logger = structlog.get_logger()


async def submit_approval(
    session: AsyncSession,
    request_id,
    actor: Actor,
    gate: Gate,
    approved: bool,
    reason: Optional[str] = None,
    rejection_action: RejectionAction = RejectionAction.RETURN,
) -> PurchaseRequest:
    gate = Gate(gate)
    rejection_action = RejectionAction(rejection_action)
    approval_policy.ensure_can_decide(actor, gate, request_id)

    async with atomic(session, request_id) as events:
        pr = await lock_request(session, request_id)

        gate_phase = GATE_PHASES[gate]
        if pr.current_phase != gate_phase.value:
            raise InvalidTransition(
                f"Request is in {pr.current_phase}, not awaiting {gate.value} approval",
                request_id=pr.id,
                details={"gate": gate.value, "current_phase": pr.current_phase},
            )

        decision = approval_policy.decide(
            state=gate_state(pr, gate),
            requires_dual_approval=pr.requires_dual_approval,
            approved=approved,
            approver_id=str(actor.id),
            first_approver_id=str(pr.first_approver_id) if pr.first_approver_id else None,
            reason=reason,
            gate=gate,
            request_id=pr.id,
        )

        now = datetime.utcnow()
        history = ApprovalHistory(
            purchase_request_id=pr.id,
            approver_type=gate.value,
            approver_id=actor.id,
            approved=approved,
            rejection_reason=None if approved else reason,
            rejection_action=None if approved else rejection_action.value,
            approval_step=decision.approval_step,
            approval_cycle=gate_cycle(pr, gate),
            requires_dual_approval=pr.requires_dual_approval,
            approval_value_cents=pr.total_cents,
            threshold_cents=pr.approval_threshold_cents or 0,
            created_at=now,
        )
        session.add(history)

        set_gate_state(pr, gate, decision.state)
        if approved and decision.approval_step == 1:
            pr.first_approver_id = actor.id
            pr.first_approved_at = now
        elif approved:
            pr.second_approver_id = actor.id
            pr.second_approved_at = now
        else:
            pr.rejection_reason = reason
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.id,
            action="APPROVAL_APPROVED" if approved else "APPROVAL_REJECTED",
            entity_type="ApprovalHistory",
            entity_id=history.id,
            after_state={
                "purchase_request_id": str(pr.id),
                "gate": gate.value,
                "step": decision.approval_step,
                "gate_state": decision.state.value,
            },
            actor_email=actor.email,
        )

        decision_payload = {
            "gate": gate.value,
            "approval_step": decision.approval_step,
            "gate_state": decision.state.value,
        }
        if decision.advances:
            events.append(await apply_transition(
                session, pr, next_phase(gate_phase), actor, payload=decision_payload
            ))
        elif decision.rejected:
            target = (
                TERMINAL_PHASE
                if rejection_action == RejectionAction.ARCHIVE
                else GATE_CORRECTION_PHASES[gate]
            )
            events.append(await apply_transition(
                session, pr, target, actor, payload=decision_payload
            ))
        else:
            events.append(WorkflowEvent(
                event_type=EVENT_REQUEST_UPDATED,
                request_id=str(pr.id),
                new_phase=pr.current_phase,
                payload=decision_payload,
            ))

    logger.info(
        "approval_recorded",
        request_id=str(pr.id),
        gate=gate.value,
        approved=approved,
        step=decision.approval_step,
        gate_state=decision.state.value,
        approver_id=str(actor.id),
        phase=pr.current_phase,
    )
    return pr


async def list_approval_history(
    session: AsyncSession, request_id, gate: Optional[Gate] = None
) -> list[ApprovalHistory]:
    q = select(ApprovalHistory).where(
        ApprovalHistory.purchase_request_id == as_uuid(request_id)
    )
    if gate is not None:
        q = q.where(ApprovalHistory.approver_type == Gate(gate).value)
    result = await session.execute(
        q.order_by(ApprovalHistory.created_at, ApprovalHistory.approval_step)
    )
    return list(result.scalars().all())


async def get_approval_status(session: AsyncSession, request_id) -> dict:
    """Gate-by-gate view of where a request stands in its approvals."""
    pr = await get_request(session, request_id)
    history = await list_approval_history(session, pr.id)

    gates = []
    for gate in Gate:
        state = gate_state(pr, gate)
        gates.append({
            "gate": gate.value,
            "state": state.value,
            "cycle": gate_cycle(pr, gate),
            "next_step": approval_policy.next_step_label(state, pr.requires_dual_approval),
        })

    return {
        "request": pr,
        "gates": gates,
        "history": history,
    }
