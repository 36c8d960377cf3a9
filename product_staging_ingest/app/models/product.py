from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    DECIMAL,
    JSON,
    TEXT,
    CheckConstraint,
    DateTime,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import StagingBase

ACTIVE_STATUS = "active"


class StagingProduct(StagingBase):
    """Denormalized snapshot of an active product, kept in sync by events."""

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint(f"status = '{ACTIVE_STATUS}'", name="ck_products_active_only"),
        Index("ix_products_synced_at", "synced_at"),
    )

    # Identity comes from the source system, never generated here
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(TEXT, nullable=True)
    long_description: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown")
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    ava_tax_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    base_price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    cost_price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)

    available_flag: Mapped[bool] = mapped_column(default=True, nullable=False)
    web_display_flag: Mapped[bool] = mapped_column(default=False, nullable=False)
    license_required_flag: Mapped[bool] = mapped_column(default=False, nullable=False)
    seat_based_pricing_flag: Mapped[bool] = mapped_column(
        default=False, nullable=False
    )
    can_be_fulfilled_flag: Mapped[bool] = mapped_column(default=False, nullable=False)
    contract_item_flag: Mapped[bool] = mapped_column(default=False, nullable=False)

    categorization: Mapped[list[Any]] = mapped_column(JSON, nullable=False)
    pricing: Mapped[list[Any]] = mapped_column(JSON, nullable=False)
    approvals: Mapped[list[Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False)

    # Sync metadata
    synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    source_version: Mapped[str] = mapped_column(String(64), nullable=False)
