"""
Module: firestock_kernel.models.inventory_check_item
Responsibility: ORM persistence for individual item verifications.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced (at the database level):
    - Exactly one of equipment_item_id / consumable_stock_id is set.
    - A target is verified at most once per check
      (uq_check_items_equipment, uq_check_items_consumable).

Rows are write-once: ORM updates and deletes raise
ImmutabilityViolationError (db/immutability.py).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from firestock_kernel.db.base import Base, UTCDateTime, UUIDString


class InventoryCheckItem(Base):
    """One verified equipment item or consumable stock within a check."""

    __tablename__ = "inventory_check_items"

    __table_args__ = (
        CheckConstraint(
            "(equipment_item_id IS NOT NULL AND consumable_stock_id IS NULL) OR "
            "(equipment_item_id IS NULL AND consumable_stock_id IS NOT NULL)",
            name="ck_check_items_single_target",
        ),
        CheckConstraint(
            "verification_status IN ('PRESENT', 'MISSING', 'PRESENT_DAMAGED', "
            "'EXPIRED', 'LOW_QUANTITY', 'SKIPPED')",
            name="ck_check_items_valid_status",
        ),
        UniqueConstraint(
            "check_id", "equipment_item_id", name="uq_check_items_equipment"
        ),
        UniqueConstraint(
            "check_id", "consumable_stock_id", name="uq_check_items_consumable"
        ),
        Index("idx_check_items_check_compartment", "check_id", "compartment_id"),
    )

    check_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_checks.id"),
        nullable=False,
    )

    compartment_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    equipment_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    consumable_stock_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    manifest_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    verification_status: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_found: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )

    quantity_expected: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )

    condition_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    verified_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    verified_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    issue_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("issues.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        target = self.equipment_item_id or self.consumable_stock_id
        return f"<InventoryCheckItem {target}: {self.verification_status}>"
