"""
Unit tests for purchase_workflow/services/approval_policy.py

Tests: threshold evaluation, gate state machine (single, dual, duplicate
       approver, rejection), role checks and status labels.
"""

import uuid

import pytest

from purchase_workflow.exceptions import (
    ActionNotPermitted,
    DuplicateApprover,
    InvalidTransition,
    RejectionReasonRequired,
)
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services.approval_policy import (
    GateState,
    ThresholdConfig,
    decide,
    ensure_can_decide,
    evaluate,
    next_step_label,
)
from purchase_workflow.services.phase_registry import Gate

USER_A = str(uuid.uuid4())
USER_B = str(uuid.uuid4())


# ---------------------------------------------------------------------------
# evaluate
# ---------------------------------------------------------------------------

def test_total_above_threshold_requires_dual():
    req = evaluate(300_000, ThresholdConfig(value_threshold_cents=250_000))
    assert req.requires_dual_approval is True
    assert req.threshold_cents == 250_000


def test_total_equal_to_threshold_is_single():
    req = evaluate(250_000, ThresholdConfig(value_threshold_cents=250_000))
    assert req.requires_dual_approval is False


def test_total_below_threshold_is_single():
    assert evaluate(1, ThresholdConfig(value_threshold_cents=250_000)).requires_dual_approval is False


# ---------------------------------------------------------------------------
# decide
# ---------------------------------------------------------------------------

def test_single_approval_closes_gate():
    d = decide(GateState.PENDING, False, True, USER_A)
    assert d.state == GateState.APPROVED_SINGLE
    assert d.approval_step == 1
    assert d.advances


def test_dual_first_approval_does_not_advance():
    d = decide(GateState.PENDING, True, True, USER_A)
    assert d.state == GateState.APPROVED_STEP1
    assert not d.advances


def test_dual_second_approval_by_other_user_closes_gate():
    d = decide(GateState.APPROVED_STEP1, True, True, USER_B, first_approver_id=USER_A)
    assert d.state == GateState.APPROVED_FINAL
    assert d.approval_step == 2
    assert d.advances


def test_dual_second_approval_by_same_user_is_rejected():
    with pytest.raises(DuplicateApprover) as exc_info:
        decide(GateState.APPROVED_STEP1, True, True, USER_A, first_approver_id=USER_A, gate=Gate.A1)
    assert exc_info.value.details["approval_step"] == 2
    assert not exc_info.value.retryable


def test_same_user_cannot_reject_the_second_step_either():
    with pytest.raises(DuplicateApprover):
        decide(
            GateState.APPROVED_STEP1, True, False, USER_A,
            first_approver_id=USER_A, reason="preço acima do orçado",
        )


def test_rejection_requires_reason():
    with pytest.raises(RejectionReasonRequired):
        decide(GateState.PENDING, False, False, USER_A, reason="   ")


@pytest.mark.parametrize("state", [GateState.PENDING, GateState.APPROVED_STEP1])
def test_rejection_from_any_open_state(state):
    d = decide(state, True, False, USER_B, first_approver_id=USER_A, reason="fora do escopo")
    assert d.state == GateState.REJECTED
    assert d.rejected
    assert not d.advances


@pytest.mark.parametrize("state", [
    GateState.APPROVED_SINGLE,
    GateState.APPROVED_FINAL,
    GateState.REJECTED,
])
def test_closed_gate_accepts_no_decision(state):
    with pytest.raises(InvalidTransition):
        decide(state, False, True, USER_A)


# ---------------------------------------------------------------------------
# roles and labels
# ---------------------------------------------------------------------------

def test_role_flags_are_checked_per_gate():
    a1_only = Actor(id=uuid.uuid4(), is_approver_a1=True)
    ensure_can_decide(a1_only, Gate.A1)
    with pytest.raises(ActionNotPermitted):
        ensure_can_decide(a1_only, Gate.A2)


@pytest.mark.parametrize("state,dual,label", [
    (GateState.PENDING, True, "awaiting_first"),
    (GateState.PENDING, False, "pending"),
    (GateState.APPROVED_STEP1, True, "awaiting_final"),
    (GateState.APPROVED_FINAL, True, "completed"),
    (GateState.APPROVED_SINGLE, False, "completed"),
    (GateState.REJECTED, True, "rejected"),
])
def test_next_step_label(state, dual, label):
    assert next_step_label(state, dual) == label
