"""
Module: firestock_kernel.selectors.check_selector
Responsibility: Read-only queries over inventory checks and their items.
Architecture position: Kernel > Selectors.

All methods return DTOs.  Callers that need a consistent view across
several calls should run them inside one transaction.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from firestock_kernel.domain.dtos import InventoryCheckInfo, InventoryCheckItemInfo
from firestock_kernel.domain.values import AbandonReason, CheckStatus, CheckTarget
from firestock_kernel.models.inventory_check import InventoryCheck
from firestock_kernel.models.inventory_check_item import InventoryCheckItem
from firestock_kernel.selectors.base import BaseSelector


class CheckSelector(BaseSelector[InventoryCheck]):
    """Queries for checks, active-check lookup, staleness scan and items."""

    def get_check(self, check_id: UUID) -> InventoryCheckInfo | None:
        model = self.session.execute(
            select(InventoryCheck)
            .where(InventoryCheck.id == check_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return InventoryCheckInfo.from_model(model) if model else None

    def find_active_for_apparatus(self, apparatus_id: UUID) -> InventoryCheckInfo | None:
        model = self.session.execute(
            select(InventoryCheck)
            .where(
                InventoryCheck.apparatus_id == apparatus_id,
                InventoryCheck.status == CheckStatus.IN_PROGRESS.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return InventoryCheckInfo.from_model(model) if model else None

    def find_active_for_station(self, station_id: UUID) -> list[InventoryCheckInfo]:
        models = self.session.execute(
            select(InventoryCheck)
            .where(
                InventoryCheck.station_id == station_id,
                InventoryCheck.status == CheckStatus.IN_PROGRESS.value,
            )
            .order_by(InventoryCheck.started_at)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [InventoryCheckInfo.from_model(m) for m in models]

    def find_stale_check_ids(self, cutoff: datetime) -> list[UUID]:
        """IN_PROGRESS checks whose last activity is strictly before ``cutoff``."""
        return list(
            self.session.execute(
                select(InventoryCheck.id)
                .where(
                    InventoryCheck.status == CheckStatus.IN_PROGRESS.value,
                    InventoryCheck.last_activity_at < cutoff,
                )
                .order_by(InventoryCheck.last_activity_at)
            ).scalars().all()
        )

    def exists_for_item(self, check_id: UUID, target: CheckTarget) -> bool:
        stmt = select(InventoryCheckItem.id).where(InventoryCheckItem.check_id == check_id)
        if target.equipment_item_id is not None:
            stmt = stmt.where(
                InventoryCheckItem.equipment_item_id == target.equipment_item_id
            )
        else:
            stmt = stmt.where(
                InventoryCheckItem.consumable_stock_id == target.consumable_stock_id
            )
        return self.session.execute(stmt.limit(1)).first() is not None

    def list_items(self, check_id: UUID) -> list[InventoryCheckItemInfo]:
        """Recorded verifications in the order they were made."""
        models = self.session.execute(
            select(InventoryCheckItem)
            .where(InventoryCheckItem.check_id == check_id)
            .order_by(InventoryCheckItem.verified_at, InventoryCheckItem.id)
        ).scalars().all()
        return [InventoryCheckItemInfo.from_model(m) for m in models]

    def count_items(self, check_id: UUID) -> tuple[int, int]:
        """(item rows, item rows with an issue) for a check."""
        row = self.session.execute(
            select(
                func.count(InventoryCheckItem.id),
                func.count(InventoryCheckItem.issue_id),
            ).where(InventoryCheckItem.check_id == check_id)
        ).one()
        return int(row[0]), int(row[1])

    def count_verified_by_compartment(self, check_id: UUID) -> dict[UUID, int]:
        rows = self.session.execute(
            select(InventoryCheckItem.compartment_id, func.count(InventoryCheckItem.id))
            .where(InventoryCheckItem.check_id == check_id)
            .group_by(InventoryCheckItem.compartment_id)
        ).all()
        return {compartment_id: int(count) for compartment_id, count in rows}

    def find_resumable(
        self, performer_id: UUID, window_start: datetime
    ) -> list[InventoryCheckInfo]:
        """
        ``performer_id``'s auto-abandoned checks abandoned at or after
        ``window_start``, most recent first.
        """
        models = self.session.execute(
            select(InventoryCheck)
            .where(
                InventoryCheck.performed_by_id == performer_id,
                InventoryCheck.status == CheckStatus.ABANDONED.value,
                InventoryCheck.abandon_reason == AbandonReason.AUTO_TIMEOUT.value,
                InventoryCheck.abandoned_at >= window_start,
            )
            .order_by(InventoryCheck.abandoned_at.desc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [InventoryCheckInfo.from_model(m) for m in models]

    def last_completed_at(self, apparatus_ids: list[UUID]) -> dict[UUID, datetime]:
        if not apparatus_ids:
            return {}
        rows = self.session.execute(
            select(InventoryCheck.apparatus_id, func.max(InventoryCheck.completed_at))
            .where(
                InventoryCheck.apparatus_id.in_(apparatus_ids),
                InventoryCheck.status == CheckStatus.COMPLETED.value,
            )
            .group_by(InventoryCheck.apparatus_id)
        ).all()
        return {apparatus_id: completed_at for apparatus_id, completed_at in rows}
