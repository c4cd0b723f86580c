"""
DTOs -- Pure domain data transfer objects for shift inventory checks.

Responsibility:
    Immutable structures crossing the kernel boundary: check and item
    snapshots (InventoryCheckInfo, InventoryCheckItemInfo), catalog shapes
    (CheckableItem, CompartmentWithItems, ApparatusDetails), verification
    input/output (VerificationOutcome, VerificationReceipt), compartment
    lock results (LockHandle, Busy, CompartmentLock) and progress views.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from firestock_kernel.domain.values import (
    AbandonReason,
    CheckProgress,
    CheckStatus,
    CheckTarget,
    VerificationStatus,
)

if TYPE_CHECKING:
    from firestock_kernel.models.inventory_check import (
        InventoryCheck as InventoryCheckModel,
    )
    from firestock_kernel.models.inventory_check_item import (
        InventoryCheckItem as InventoryCheckItemModel,
    )


# ---------------------------------------------------------------------------
# Check snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryCheckInfo:
    """
    Snapshot of an inventory check row.

    Guarantees:
        - completed_at is set iff status is COMPLETED.
        - abandoned_at is set iff status is ABANDONED.
    """

    id: UUID
    apparatus_id: UUID
    station_id: UUID
    performed_by_id: UUID
    status: CheckStatus
    total_items: int
    verified_count: int
    issues_found_count: int
    started_at: datetime
    last_activity_at: datetime
    completed_at: datetime | None = None
    abandoned_at: datetime | None = None
    abandon_reason: AbandonReason | None = None
    notes: str | None = None
    version: int = 1

    @property
    def is_in_progress(self) -> bool:
        return self.status == CheckStatus.IN_PROGRESS

    @property
    def progress(self) -> CheckProgress:
        return CheckProgress(
            total_items=self.total_items,
            verified_count=self.verified_count,
            issues_found_count=self.issues_found_count,
        )

    @classmethod
    def from_model(cls, model: InventoryCheckModel) -> InventoryCheckInfo:
        """Create an InventoryCheckInfo from an InventoryCheck ORM model."""
        return cls(
            id=model.id,
            apparatus_id=model.apparatus_id,
            station_id=model.station_id,
            performed_by_id=model.performed_by_id,
            status=CheckStatus(model.status),
            total_items=model.total_items,
            verified_count=model.verified_count,
            issues_found_count=model.issues_found_count,
            started_at=model.started_at,
            last_activity_at=model.last_activity_at,
            completed_at=model.completed_at,
            abandoned_at=model.abandoned_at,
            abandon_reason=(
                AbandonReason(model.abandon_reason) if model.abandon_reason else None
            ),
            notes=model.notes,
            version=model.version,
        )


@dataclass(frozen=True)
class InventoryCheckItemInfo:
    """Snapshot of one recorded verification (immutable once written)."""

    id: UUID
    check_id: UUID
    compartment_id: UUID
    target: CheckTarget
    verification_status: VerificationStatus
    verified_at: datetime
    verified_by_id: UUID | None = None
    manifest_entry_id: UUID | None = None
    quantity_found: Decimal | None = None
    quantity_expected: Decimal | None = None
    condition_notes: str | None = None
    issue_id: UUID | None = None

    @classmethod
    def from_model(cls, model: InventoryCheckItemModel) -> InventoryCheckItemInfo:
        return cls(
            id=model.id,
            check_id=model.check_id,
            compartment_id=model.compartment_id,
            target=CheckTarget.of(model.equipment_item_id, model.consumable_stock_id),
            verification_status=VerificationStatus(model.verification_status),
            verified_at=model.verified_at,
            verified_by_id=model.verified_by_id,
            manifest_entry_id=model.manifest_entry_id,
            quantity_found=model.quantity_found,
            quantity_expected=model.quantity_expected,
            condition_notes=model.condition_notes,
            issue_id=model.issue_id,
        )


# ---------------------------------------------------------------------------
# Catalog shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckableItem:
    """An equipment item or consumable stock expected in a compartment."""

    target: CheckTarget
    name: str
    type_name: str | None = None
    serial_number: str | None = None
    barcode: str | None = None
    manifest_entry_id: UUID | None = None
    required_quantity: Decimal | None = None
    current_quantity: Decimal | None = None
    expiration_date: date | None = None

    @property
    def is_consumable(self) -> bool:
        return self.target.consumable_stock_id is not None


@dataclass(frozen=True)
class CompartmentWithItems:
    id: UUID
    code: str
    name: str
    display_order: int
    items: tuple[CheckableItem, ...] = ()


@dataclass(frozen=True)
class ApparatusDetails:
    """Apparatus with its compartments and the items expected in each."""

    id: UUID
    unit_number: str
    station_id: UUID
    compartments: tuple[CompartmentWithItems, ...] = ()

    @property
    def total_item_count(self) -> int:
        return sum(len(c.items) for c in self.compartments)

    def compartment(self, compartment_id: UUID) -> CompartmentWithItems | None:
        for c in self.compartments:
            if c.id == compartment_id:
                return c
        return None

    def find_by_barcode(
        self, barcode: str
    ) -> tuple[CompartmentWithItems, CheckableItem] | None:
        """The compartment and item carrying ``barcode``; blank never matches."""
        if not barcode or not barcode.strip():
            return None
        wanted = barcode.strip()
        for c in sorted(self.compartments, key=lambda c: c.display_order):
            for item in c.items:
                if item.barcode == wanted:
                    return c, item
        return None


# ---------------------------------------------------------------------------
# Verification input / output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationOutcome:
    """What the user recorded for one item."""

    compartment_id: UUID
    target: CheckTarget
    status: VerificationStatus
    notes: str | None = None
    quantity_found: Decimal | None = None
    quantity_expected: Decimal | None = None
    manifest_entry_id: UUID | None = None


@dataclass(frozen=True)
class RecordedVerification:
    """Result of VerificationRecorder.record()."""

    item_id: UUID
    issue_id: UUID | None
    verified_at: datetime

    @property
    def issue_created(self) -> bool:
        return self.issue_id is not None


@dataclass(frozen=True)
class VerificationReceipt:
    """Result of InventoryCheckService.record_verification()."""

    check: InventoryCheckInfo
    item_id: UUID
    issue_id: UUID | None = None


# ---------------------------------------------------------------------------
# Compartment locks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompartmentLock:
    apparatus_id: UUID
    compartment_id: UUID
    holder_user_id: UUID
    holder_display_name: str
    acquired_at: datetime
    check_id: UUID | None = None


@dataclass(frozen=True)
class LockHandle:
    """Proof that the caller holds a compartment."""

    lock: CompartmentLock

    @property
    def apparatus_id(self) -> UUID:
        return self.lock.apparatus_id

    @property
    def compartment_id(self) -> UUID:
        return self.lock.compartment_id

    @property
    def holder_user_id(self) -> UUID:
        return self.lock.holder_user_id


@dataclass(frozen=True)
class Busy:
    """
    Compartment is held by someone else.

    Returned (not raised) by CompartmentLockManager.acquire() so the UI can
    offer "take over" without exception handling.
    """

    holder_user_id: UUID
    holder_name: str


# ---------------------------------------------------------------------------
# Progress views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompartmentCheckProgress:
    compartment_id: UUID
    compartment_code: str
    compartment_name: str
    display_order: int
    total_items: int
    verified_count: int
    current_checker_name: str | None = None

    @property
    def is_fully_checked(self) -> bool:
        return self.verified_count >= self.total_items


@dataclass(frozen=True)
class CheckableItemWithStatus:
    """A catalog item plus its verification in the current check, if any."""

    item: CheckableItem
    compartment_id: UUID
    verification_status: VerificationStatus | None = None
    verified_at: datetime | None = None
    verified_by_id: UUID | None = None

    @property
    def is_checked(self) -> bool:
        return self.verification_status is not None


@dataclass(frozen=True)
class ApparatusWithCheckStatus:
    """
    One row of the station's apparatus picker.

    ``current_checker_names`` are the holders of compartment locks in the
    active check, sorted and without duplicates.
    """

    id: UUID
    unit_number: str
    station_id: UUID
    has_active_check: bool
    active_check_id: UUID | None = None
    last_completed_at: datetime | None = None
    current_checker_names: tuple[str, ...] = ()
