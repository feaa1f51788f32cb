from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from purchase_workflow.config import settings
from purchase_workflow.database import get_db
from purchase_workflow.middleware.auth import get_current_actor
from purchase_workflow.middleware.authorization import require_flags
from purchase_workflow.models.approval import ApprovalConfiguration
from purchase_workflow.schemas.approval import ApprovalConfigCreate, ApprovalConfigResponse
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.common import iso
from purchase_workflow.services.approval_config_service import (
    create_configuration,
    get_active_configuration,
    list_configuration_history,
)

router = APIRouter()


def _to_response(config: ApprovalConfiguration) -> ApprovalConfigResponse:
    return ApprovalConfigResponse(
        id=str(config.id),
        value_threshold_cents=config.value_threshold_cents,
        effective_date=iso(config.effective_date),
        is_active=config.is_active,
        reason=config.reason,
        created_by=str(config.created_by),
        created_at=iso(config.created_at),
    )


@router.get("/config", response_model=ApprovalConfigResponse)
async def get_config(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    config = await get_active_configuration(db)
    if config is None:
        # No row yet: the built-in default applies
        return ApprovalConfigResponse(
            value_threshold_cents=settings.DEFAULT_APPROVAL_THRESHOLD_CENTS,
            is_active=True,
            reason="default",
        )
    return _to_response(config)


@router.post("/config", response_model=ApprovalConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_config(
    body: ApprovalConfigCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_flags("is_admin")),
    db: AsyncSession = Depends(get_db),
):
    config = await create_configuration(
        db,
        actor,
        value_threshold_cents=body.value_threshold_cents,
        reason=body.reason,
        effective_date=body.effective_date,
    )
    return _to_response(config)


@router.get("/config/history", response_model=list[ApprovalConfigResponse])
async def config_history(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [_to_response(c) for c in await list_configuration_history(db)]
