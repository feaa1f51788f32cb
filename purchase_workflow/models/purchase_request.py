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
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from purchase_workflow.database import Base
from purchase_workflow.services.phase_registry import Phase

_PHASE_VALUES = ", ".join(f"'{p.value}'" for p in Phase)
_GATE_STATE_VALUES = (
    "'pending', 'approved_step1', 'approved_single', 'approved_final', 'rejected'"
)


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    request_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    cost_center_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    category: Mapped[str] = mapped_column(String(50), default="produto")
    urgency: Mapped[str] = mapped_column(String(20), default="medio")
    justification: Mapped[Optional[str]] = mapped_column(Text)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    current_phase: Mapped[str] = mapped_column(
        String(30), nullable=False, default=Phase.SOLICITACAO.value
    )

    # Approval requirement evaluated when the current gate was entered
    requires_dual_approval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    approval_threshold_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    a1_state: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    a2_state: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    a1_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    a2_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    first_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    second_approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    second_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    buyer_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    parent_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id")
    )
    derived_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id")
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(f"current_phase IN ({_PHASE_VALUES})", name="chk_pr_phase"),
        CheckConstraint(f"a1_state IN ({_GATE_STATE_VALUES})", name="chk_pr_a1_state"),
        CheckConstraint(f"a2_state IN ({_GATE_STATE_VALUES})", name="chk_pr_a2_state"),
        CheckConstraint("total_cents >= 0", name="chk_pr_total"),
        Index("idx_pr_phase", "current_phase"),
        Index("idx_pr_requester", "requester_id"),
        Index("idx_pr_parent", "parent_request_id"),
    )


class RequestItem(Base):
    __tablename__ = "request_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    purchase_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_code: Mapped[Optional[str]] = mapped_column(String(50))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    requested_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    estimated_unit_price_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    technical_specification: Mapped[Optional[str]] = mapped_column(Text)
    is_transferred: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    transferred_to_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    def mark_transferred(self, request_id: uuid.UUID) -> None:
        """Flag and link together; the pair is never set separately."""
        if request_id is None:
            raise ValueError("transferred items must reference their new request")
        self.is_transferred = True
        self.transferred_to_request_id = request_id

    @property
    def effective_quantity(self) -> int:
        return self.approved_quantity or self.requested_quantity

    __table_args__ = (
        UniqueConstraint("purchase_request_id", "line_number", name="uq_request_item_line"),
        CheckConstraint("requested_quantity > 0", name="chk_request_item_qty"),
        CheckConstraint(
            "estimated_unit_price_cents >= 0", name="chk_request_item_price"
        ),
        CheckConstraint(
            "(is_transferred AND transferred_to_request_id IS NOT NULL) OR "
            "(NOT is_transferred AND transferred_to_request_id IS NULL)",
            name="chk_request_item_transfer_link",
        ),
        Index("idx_request_items_pr", "purchase_request_id"),
    )
