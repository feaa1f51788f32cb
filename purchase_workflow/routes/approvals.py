from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.database import get_db
from purchase_workflow.middleware.auth import get_current_actor
from purchase_workflow.routes.purchase_requests import build_response, history_to_response
from purchase_workflow.schemas.approval import (
    ApprovalDecisionRequest,
    ApprovalStatusResponse,
    GateStatusResponse,
)
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.purchase_request import PurchaseRequestResponse
from purchase_workflow.services.approval_service import get_approval_status, submit_approval
from purchase_workflow.services.phase_registry import Gate

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{request_id}/{gate}", response_model=PurchaseRequestResponse)
async def decide_gate(
    request_id: str,
    gate: Gate,
    body: ApprovalDecisionRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject the request at gate A1 or A2."""
    pr = await submit_approval(
        db,
        request_id,
        actor,
        gate,
        approved=body.approved,
        reason=body.reason,
        rejection_action=body.rejection_action,
    )
    return await build_response(db, pr)


@router.get("/{request_id}/status", response_model=ApprovalStatusResponse)
async def approval_status(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    status = await get_approval_status(db, request_id)
    pr = status["request"]
    return ApprovalStatusResponse(
        request_id=str(pr.id),
        current_phase=pr.current_phase,
        total_cents=pr.total_cents,
        requires_dual_approval=pr.requires_dual_approval,
        threshold_cents=pr.approval_threshold_cents,
        first_approver_id=str(pr.first_approver_id) if pr.first_approver_id else None,
        second_approver_id=str(pr.second_approver_id) if pr.second_approver_id else None,
        gates=[GateStatusResponse(**g) for g in status["gates"]],
        history=[history_to_response(h) for h in status["history"]],
    )
