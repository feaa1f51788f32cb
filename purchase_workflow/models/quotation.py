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
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from purchase_workflow.database import Base


class Quotation(Base):
    __tablename__ = "quotations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    quotation_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False
    )
    purchase_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="draft")
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime)
    terms_and_conditions: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_quotations_pr", "purchase_request_id"),
    )


class QuotationItem(Base):
    __tablename__ = "quotation_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    quotation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False
    )
    # Canonical link to the request line; description matching is only a
    # fallback for lines entered without it.
    request_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("request_items.id")
    )
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    specifications: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("quotation_id", "request_item_id", name="uq_quotation_item_request_item"),
        CheckConstraint("quantity > 0", name="chk_quotation_item_qty"),
        Index("idx_quotation_items_quotation", "quotation_id"),
    )


class SupplierQuotation(Base):
    __tablename__ = "supplier_quotations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    quotation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="received")
    total_value_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    payment_terms: Mapped[Optional[str]] = mapped_column(Text)
    delivery_terms: Mapped[Optional[str]] = mapped_column(Text)
    observations: Mapped[Optional[str]] = mapped_column(Text)
    is_chosen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    choice_reason: Mapped[Optional[str]] = mapped_column(Text)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("quotation_id", "supplier_id", name="uq_supplier_quotation"),
        # At most one chosen supplier per quotation
        Index(
            "uq_supplier_quotation_chosen",
            "quotation_id",
            unique=True,
            postgresql_where=text("is_chosen"),
            sqlite_where=text("is_chosen = 1"),
        ),
    )


class SupplierQuotationItem(Base):
    __tablename__ = "supplier_quotation_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    supplier_quotation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("supplier_quotations.id", ondelete="CASCADE"), nullable=False
    )
    quotation_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quotation_items.id"), nullable=False
    )
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    available_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    delivery_days: Mapped[Optional[int]] = mapped_column(Integer)
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    observations: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "supplier_quotation_id", "quotation_item_id", name="uq_supplier_quotation_item"
        ),
        CheckConstraint("unit_price_cents >= 0", name="chk_sq_item_unit_price"),
        CheckConstraint("total_price_cents >= 0", name="chk_sq_item_total_price"),
        Index("idx_sq_items_sq", "supplier_quotation_id"),
    )
