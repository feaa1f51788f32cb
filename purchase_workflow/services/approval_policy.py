"""
Approval policy engine: single vs dual approval and the per-gate state machine.

Rule: a request needs two sequential approvals from distinct approvers when
its total is strictly greater than the active threshold, otherwise one.

Gate states:
  pending ──approve (single)──▶ approved_single        (advances phase)
  pending ──approve (dual)────▶ approved_step1
  approved_step1 ──approve by another approver──▶ approved_final (advances)
  pending | approved_step1 ──reject──▶ rejected         (returns / archives)

Everything here is pure; persistence lives in approval_service.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from purchase_workflow.exceptions import (
    ActionNotPermitted,
    DuplicateApprover,
    InvalidTransition,
    RejectionReasonRequired,
)
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services.phase_registry import Gate


class GateState(str, Enum):
    PENDING = "pending"
    APPROVED_STEP1 = "approved_step1"
    APPROVED_SINGLE = "approved_single"
    APPROVED_FINAL = "approved_final"
    REJECTED = "rejected"


APPROVED_STATES = frozenset({GateState.APPROVED_SINGLE, GateState.APPROVED_FINAL})
OPEN_STATES = frozenset({GateState.PENDING, GateState.APPROVED_STEP1})


class RejectionAction(str, Enum):
    RETURN = "return"
    ARCHIVE = "archive"


class ThresholdSource(Protocol):
    value_threshold_cents: int


@dataclass(frozen=True)
class ThresholdConfig:
    """Stand-in configuration used when no configuration row is active."""

    value_threshold_cents: int
    effective_date: Optional[datetime] = None


@dataclass(frozen=True)
class ApprovalRequirement:
    requires_dual_approval: bool
    threshold_cents: int


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    approval_step: int

    @property
    def advances(self) -> bool:
        return self.state in APPROVED_STATES

    @property
    def rejected(self) -> bool:
        return self.state == GateState.REJECTED


def evaluate(total_cents: int, active_config: ThresholdSource) -> ApprovalRequirement:
    threshold = int(active_config.value_threshold_cents)
    return ApprovalRequirement(
        requires_dual_approval=int(total_cents) > threshold,
        threshold_cents=threshold,
    )


def is_approved(state: GateState) -> bool:
    return GateState(state) in APPROVED_STATES


def ensure_can_decide(actor: Actor, gate: Gate, request_id: Optional[str] = None) -> None:
    allowed = actor.is_approver_a1 if gate == Gate.A1 else actor.is_approver_a2
    if not allowed:
        raise ActionNotPermitted(
            f"User {actor.id} is not an {gate.value} approver",
            request_id=request_id,
            details={"gate": gate.value, "actor_id": str(actor.id)},
        )


def decide(
    state: GateState,
    requires_dual_approval: bool,
    approved: bool,
    approver_id: str,
    first_approver_id: Optional[str] = None,
    reason: Optional[str] = None,
    gate: Gate = Gate.A1,
    request_id: Optional[str] = None,
) -> GateDecision:
    """Apply one approval decision to a gate and return its next state."""
    state = GateState(state)
    if state not in OPEN_STATES:
        raise InvalidTransition(
            f"{gate.value} approval cycle is already closed ({state.value})",
            request_id=request_id,
            details={"gate": gate.value, "gate_state": state.value},
        )

    step = 2 if state == GateState.APPROVED_STEP1 else 1

    if step == 2 and first_approver_id is not None and str(first_approver_id) == str(approver_id):
        raise DuplicateApprover(
            "The second approval must come from a different approver",
            request_id=request_id,
            details={"gate": gate.value, "approval_step": 2, "approver_id": str(approver_id)},
        )

    if not approved:
        if not reason or not reason.strip():
            raise RejectionReasonRequired(
                "A rejection must state its reason",
                request_id=request_id,
                details={"gate": gate.value, "approval_step": step},
            )
        return GateDecision(state=GateState.REJECTED, approval_step=step)

    if step == 2:
        return GateDecision(state=GateState.APPROVED_FINAL, approval_step=2)

    if requires_dual_approval:
        return GateDecision(state=GateState.APPROVED_STEP1, approval_step=1)
    return GateDecision(state=GateState.APPROVED_SINGLE, approval_step=1)


def next_step_label(state: GateState, requires_dual_approval: bool) -> str:
    """Human-facing status of a gate, as shown on the approval panel."""
    state = GateState(state)
    if state in APPROVED_STATES:
        return "completed"
    if state == GateState.REJECTED:
        return "rejected"
    if state == GateState.APPROVED_STEP1:
        return "awaiting_final"
    return "awaiting_first" if requires_dual_approval else "pending"
