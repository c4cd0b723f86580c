"""
Values -- Immutable value objects for the shift inventory check.

Responsibility:
    Status enums, the verification-status -> issue classification table,
    the CheckTarget tagged union and the CheckProgress summary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A CheckTarget references exactly one of equipment item or consumable
      stock; the union makes the "both" and "neither" states unrepresentable.
    - Every problem status maps to exactly one (severity, category) pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from firestock_kernel.exceptions import InvalidCheckTargetError


class CheckStatus(str, Enum):
    """
    Lifecycle status of an inventory check.

    Contract:
        IN_PROGRESS -> COMPLETED (terminal)
        IN_PROGRESS -> ABANDONED -> IN_PROGRESS (resume, AUTO_TIMEOUT only)
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class AbandonReason(str, Enum):
    AUTO_TIMEOUT = "AUTO_TIMEOUT"
    USER_ABANDONED = "USER_ABANDONED"


class VerificationStatus(str, Enum):
    """Outcome a firefighter records for one item."""

    PRESENT = "PRESENT"
    MISSING = "MISSING"
    PRESENT_DAMAGED = "PRESENT_DAMAGED"
    EXPIRED = "EXPIRED"
    LOW_QUANTITY = "LOW_QUANTITY"
    SKIPPED = "SKIPPED"

    @property
    def is_problem(self) -> bool:
        """True if recording this status files an issue."""
        return self in ISSUE_CLASSIFICATION


class IssueSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class IssueCategory(str, Enum):
    DAMAGE = "DAMAGE"
    MISSING = "MISSING"
    EXPIRED = "EXPIRED"
    LOW_STOCK = "LOW_STOCK"
    OTHER = "OTHER"


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class IssueClassification:
    severity: IssueSeverity
    category: IssueCategory
    title: str


ISSUE_CLASSIFICATION: dict[VerificationStatus, IssueClassification] = {
    VerificationStatus.MISSING: IssueClassification(
        IssueSeverity.HIGH, IssueCategory.MISSING, "Missing item"
    ),
    VerificationStatus.PRESENT_DAMAGED: IssueClassification(
        IssueSeverity.MEDIUM, IssueCategory.DAMAGE, "Damaged item"
    ),
    VerificationStatus.EXPIRED: IssueClassification(
        IssueSeverity.MEDIUM, IssueCategory.EXPIRED, "Expired item"
    ),
    VerificationStatus.LOW_QUANTITY: IssueClassification(
        IssueSeverity.LOW, IssueCategory.LOW_STOCK, "Low quantity"
    ),
}

PROBLEM_STATUSES: frozenset[VerificationStatus] = frozenset(ISSUE_CLASSIFICATION)


# ---------------------------------------------------------------------------
# Check target
# ---------------------------------------------------------------------------


class CheckTarget:
    """
    What a verification refers to: an equipment item or a consumable stock.

    Exactly two concrete cases exist, ``EquipmentTarget`` and
    ``ConsumableTarget``.  Use ``CheckTarget.of()`` when the caller holds two
    nullable IDs (e.g. a request body).
    """

    __slots__ = ()

    @property
    def equipment_item_id(self) -> UUID | None:
        return None

    @property
    def consumable_stock_id(self) -> UUID | None:
        return None

    @property
    def target_id(self) -> UUID:
        raise NotImplementedError

    @staticmethod
    def of(
        equipment_item_id: UUID | None = None,
        consumable_stock_id: UUID | None = None,
    ) -> CheckTarget:
        """
        Build a target from two nullable IDs.

        Raises:
            InvalidCheckTargetError: both or neither ID given.
        """
        if equipment_item_id is not None and consumable_stock_id is not None:
            raise InvalidCheckTargetError(
                "both equipment_item_id and consumable_stock_id were given"
            )
        if equipment_item_id is not None:
            return EquipmentTarget(equipment_item_id)
        if consumable_stock_id is not None:
            return ConsumableTarget(consumable_stock_id)
        raise InvalidCheckTargetError(
            "one of equipment_item_id or consumable_stock_id is required"
        )


@dataclass(frozen=True, slots=True)
class EquipmentTarget(CheckTarget):
    item_id: UUID

    @property
    def equipment_item_id(self) -> UUID:
        return self.item_id

    @property
    def target_id(self) -> UUID:
        return self.item_id

    def __str__(self) -> str:
        return f"equipment item {self.item_id}"


@dataclass(frozen=True, slots=True)
class ConsumableTarget(CheckTarget):
    stock_id: UUID

    @property
    def consumable_stock_id(self) -> UUID:
        return self.stock_id

    @property
    def target_id(self) -> UUID:
        return self.stock_id

    def __str__(self) -> str:
        return f"consumable stock {self.stock_id}"


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckProgress:
    """Counts for a check; an empty apparatus counts as fully checked."""

    total_items: int
    verified_count: int
    issues_found_count: int

    @property
    def remaining(self) -> int:
        return self.total_items - self.verified_count

    @property
    def percentage(self) -> int:
        if self.total_items == 0:
            return 100
        return (self.verified_count * 100) // self.total_items

    @property
    def is_complete(self) -> bool:
        return self.verified_count >= self.total_items
