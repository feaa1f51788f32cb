"""Approval threshold configuration: the active row feeds the policy engine."""

from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.config import settings
from purchase_workflow.exceptions import ActionNotPermitted
from purchase_workflow.models.approval import ApprovalConfiguration
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services.approval_policy import ThresholdConfig
from purchase_workflow.services.audit_service import create_audit_log
from purchase_workflow.services.unit_of_work import atomic

logger = structlog.get_logger()


async def get_active_configuration(
    session: AsyncSession, at: Optional[datetime] = None
) -> Optional[ApprovalConfiguration]:
    """Newest active configuration already in effect at `at` (default: now)."""
    at = at or datetime.utcnow()
    result = await session.execute(
        select(ApprovalConfiguration)
        .where(
            ApprovalConfiguration.is_active == True,  # noqa: E712
            ApprovalConfiguration.effective_date <= at,
        )
        .order_by(
            ApprovalConfiguration.effective_date.desc(),
            ApprovalConfiguration.created_at.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_threshold_source(
    session: AsyncSession,
) -> Union[ApprovalConfiguration, ThresholdConfig]:
    config = await get_active_configuration(session)
    if config is None:
        logger.warning(
            "approval_config_missing_using_default",
            threshold_cents=settings.DEFAULT_APPROVAL_THRESHOLD_CENTS,
        )
        return ThresholdConfig(value_threshold_cents=settings.DEFAULT_APPROVAL_THRESHOLD_CENTS)
    return config


async def create_configuration(
    session: AsyncSession,
    actor: Actor,
    value_threshold_cents: int,
    reason: str,
    effective_date: Optional[datetime] = None,
) -> ApprovalConfiguration:
    """
    Record a new threshold. Older rows stay as history; decisions already in
    approval_history keep the threshold they were evaluated against.
    """
    if not actor.is_admin:
        raise ActionNotPermitted(
            "Only administrators can change the approval threshold",
            details={"actor_id": str(actor.id)},
        )

    async with atomic(session):
        config = ApprovalConfiguration(
            value_threshold_cents=value_threshold_cents,
            effective_date=effective_date or datetime.utcnow(),
            is_active=True,
            reason=reason,
            created_by=actor.id,
        )
        session.add(config)
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.id,
            action="APPROVAL_CONFIG_CREATED",
            entity_type="ApprovalConfiguration",
            entity_id=config.id,
            after_state={
                "value_threshold_cents": value_threshold_cents,
                "effective_date": config.effective_date.isoformat(),
            },
            actor_email=actor.email,
        )

    logger.info(
        "approval_config_created",
        config_id=str(config.id),
        threshold_cents=value_threshold_cents,
    )
    return config


async def list_configuration_history(session: AsyncSession) -> list[ApprovalConfiguration]:
    result = await session.execute(
        select(ApprovalConfiguration).order_by(
            ApprovalConfiguration.effective_date.desc(),
            ApprovalConfiguration.created_at.desc(),
        )
    )
    return list(result.scalars().all())
