import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Boolean,
    Integer,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from purchase_workflow.database import Base


class ApprovalHistory(Base):
    """Append-only ledger of approval decisions. Rows are never updated."""

    __tablename__ = "approval_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    purchase_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id"), nullable=False
    )
    approver_type: Mapped[str] = mapped_column(String(2), nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    rejection_action: Mapped[Optional[str]] = mapped_column(String(20))
    approval_step: Mapped[int] = mapped_column(Integer, nullable=False)
    approval_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    requires_dual_approval: Mapped[bool] = mapped_column(Boolean, nullable=False)
    approval_value_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    threshold_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("approver_type IN ('A1', 'A2')", name="chk_approval_type"),
        CheckConstraint("approval_step IN (1, 2)", name="chk_approval_step"),
        Index("idx_approval_history_pr", "purchase_request_id", "approver_type"),
        Index("idx_approval_history_approver", "approver_id"),
    )


class ApprovalConfiguration(Base):
    __tablename__ = "approval_configurations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    value_threshold_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    effective_date: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("value_threshold_cents > 0", name="chk_approval_config_threshold"),
        Index("idx_approval_config_active", "is_active", "effective_date"),
    )
