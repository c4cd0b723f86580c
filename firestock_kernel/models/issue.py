"""
Module: firestock_kernel.models.issue
Responsibility: ORM persistence for issues raised by problem verifications.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - reference_number is unique (ISS-YYYY-NNNNN).
    - Exactly one of equipment_item_id / consumable_stock_id is set.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from firestock_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class Issue(TrackedBase):
    """An equipment problem found during a check (missing, damaged, ...)."""

    __tablename__ = "issues"

    __table_args__ = (
        UniqueConstraint("reference_number", name="uq_issues_reference_number"),
        CheckConstraint(
            "(equipment_item_id IS NOT NULL AND consumable_stock_id IS NULL) OR "
            "(equipment_item_id IS NULL AND consumable_stock_id IS NOT NULL)",
            name="ck_issues_single_target",
        ),
        CheckConstraint(
            "severity IN ('CRITICAL', 'HIGH', 'MEDIUM', 'LOW')",
            name="ck_issues_valid_severity",
        ),
        Index("idx_issues_apparatus_status", "apparatus_id", "status"),
        Index("idx_issues_check", "check_id"),
    )

    reference_number: Mapped[str] = mapped_column(String(20), nullable=False)

    equipment_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    consumable_stock_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    apparatus_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    station_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    check_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    severity: Mapped[str] = mapped_column(String(10), nullable=False)

    category: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN")

    reported_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reported_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<Issue {self.reference_number}: {self.severity} {self.category}>"
