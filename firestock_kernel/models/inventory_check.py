"""
Module: firestock_kernel.models.inventory_check
Responsibility: ORM persistence for shift inventory check sessions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced (at the database level):
    - At most one IN_PROGRESS check per apparatus
      (partial unique index uq_inventory_checks_active_apparatus).
    - 0 <= verified_count <= total_items.
    - 0 <= issues_found_count <= verified_count.
    - completed_at is set iff status = COMPLETED.
    - abandoned_at is set iff status = ABANDONED.

Failure modes:
    - IntegrityError on the partial unique index when two starts race for
      the same apparatus; InventoryCheckService maps it to ConflictError.

Checks are never deleted.  Lifecycle writes are conditional UPDATEs issued
by InventoryCheckService, never attribute assignment on a loaded row.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from firestock_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

_ACTIVE = text("status = 'IN_PROGRESS'")


class InventoryCheck(TrackedBase):
    """
    One shift inventory check of one apparatus.

    Contract:
        IN_PROGRESS -> COMPLETED | ABANDONED; ABANDONED(AUTO_TIMEOUT) may
        return to IN_PROGRESS through resume.  ``version`` is bumped by
        every conditional update.
    """

    __tablename__ = "inventory_checks"

    __table_args__ = (
        CheckConstraint(
            "status IN ('IN_PROGRESS', 'COMPLETED', 'ABANDONED')",
            name="ck_inventory_checks_valid_status",
        ),
        CheckConstraint(
            "verified_count >= 0 AND verified_count <= total_items",
            name="ck_inventory_checks_verified_count",
        ),
        CheckConstraint(
            "issues_found_count >= 0 AND issues_found_count <= verified_count",
            name="ck_inventory_checks_issues_count",
        ),
        CheckConstraint(
            "(status = 'COMPLETED') = (completed_at IS NOT NULL)",
            name="ck_inventory_checks_completed_at",
        ),
        CheckConstraint(
            "(status = 'ABANDONED') = (abandoned_at IS NOT NULL)",
            name="ck_inventory_checks_abandoned_at",
        ),
        Index(
            "uq_inventory_checks_active_apparatus",
            "apparatus_id",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
        # Sweeper scan: IN_PROGRESS ordered by last activity
        Index("idx_inventory_checks_status_activity", "status", "last_activity_at"),
        Index("idx_inventory_checks_station_status", "station_id", "status"),
    )

    apparatus_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    station_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # The user who started the check; only they may resume it
    performed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    verified_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    issues_found_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Staleness anchor for the auto-abandon sweep
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )

    abandoned_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )

    abandon_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<InventoryCheck {self.id} apparatus={self.apparatus_id}: {self.status}>"
