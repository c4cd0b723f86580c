"""
VerificationRecorder -- writes one item verification into a check.

Responsibility:
    Validates a verification, files an issue for problem statuses, and
    persists the immutable InventoryCheckItem row.  The ItemVerifiedEvent is
    queued to be published after the caller commits.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Called by
    InventoryCheckService.record_verification(), which then increments the
    check's counters in the same transaction.

Invariants enforced:
    - A target is verified at most once per check.  The pre-check gives
      the common case a clean error; the unique constraints catch the race.
    - Consumable counts off by more than the policy threshold need notes.
    - Issue row and item row are written together in one savepoint; a
      duplicate leaves neither behind.

Failure modes:
    - InvalidCheckTargetError: target is not an equipment or consumable target.
    - QuantityDiscrepancyRequiresNotesError: large discrepancy, blank notes.
    - DuplicateVerificationError: target already verified in this check.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from firestock_kernel.domain.clock import Clock, SystemClock
from firestock_kernel.domain.dtos import InventoryCheckInfo, RecordedVerification
from firestock_kernel.domain.events import ItemVerifiedEvent
from firestock_kernel.domain.policy import CheckPolicy
from firestock_kernel.domain.values import (
    CheckTarget,
    ConsumableTarget,
    EquipmentTarget,
    VerificationStatus,
)
from firestock_kernel.exceptions import (
    DuplicateVerificationError,
    InvalidCheckTargetError,
    QuantityDiscrepancyRequiresNotesError,
)
from firestock_kernel.logging_config import get_logger
from firestock_kernel.models.inventory_check_item import InventoryCheckItem
from firestock_kernel.selectors.check_selector import CheckSelector
from firestock_kernel.services.after_commit import run_after_commit
from firestock_kernel.services.base import BaseService
from firestock_kernel.services.event_broadcaster import EventBroadcaster
from firestock_kernel.services.issue_service import IssueRequest, IssueService, IssueSink

logger = get_logger("services.verification_recorder")


class VerificationRecorder(BaseService[InventoryCheckItem]):
    """Records item verifications; does not touch the check's counters."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: CheckPolicy | None = None,
        issue_sink: IssueSink | None = None,
        broadcaster: EventBroadcaster | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or CheckPolicy()
        self._issues = issue_sink or IssueService(session, self._clock)
        self._broadcaster = broadcaster
        self._selector = CheckSelector(session)

    def exists_for_item(self, check_id: UUID, target: CheckTarget) -> bool:
        return self._selector.exists_for_item(check_id, target)

    def record(
        self,
        check: InventoryCheckInfo,
        compartment_id: UUID,
        target: CheckTarget,
        status: VerificationStatus,
        notes: str | None = None,
        quantity_found: Decimal | None = None,
        quantity_expected: Decimal | None = None,
        manifest_entry_id: UUID | None = None,
        verified_by: UUID | None = None,
        verified_by_name: str | None = None,
        item_name: str | None = None,
    ) -> RecordedVerification:
        """
        Persist one verification for ``check``.

        Preconditions:
            ``check`` is IN_PROGRESS; the caller re-validates that with its
            conditional counter update in the same transaction.

        Postconditions:
            An InventoryCheckItem row (and an Issue row for problem
            statuses) is flushed; an ItemVerifiedEvent is queued for
            after-commit delivery.
        """
        if not isinstance(target, (EquipmentTarget, ConsumableTarget)):
            raise InvalidCheckTargetError(f"unsupported target {target!r}")

        if isinstance(target, ConsumableTarget) and self._policy.requires_notes_for_quantity(
            quantity_found, quantity_expected
        ):
            if not (notes and notes.strip()):
                raise QuantityDiscrepancyRequiresNotesError(
                    str(quantity_found),
                    str(quantity_expected),
                    str(self._policy.quantity_discrepancy_threshold),
                )

        if self.exists_for_item(check.id, target):
            raise DuplicateVerificationError(str(check.id), str(target))

        now = self._clock.now()
        savepoint = self.session.begin_nested()
        try:
            issue_id = None
            if status.is_problem:
                issue_id = self._issues.create_issue(
                    IssueRequest(
                        target=target,
                        status=status,
                        apparatus_id=check.apparatus_id,
                        station_id=check.station_id,
                        check_id=check.id,
                        reported_by_id=verified_by or check.performed_by_id,
                        item_name=item_name,
                        notes=notes,
                    )
                )

            item = InventoryCheckItem(
                check_id=check.id,
                compartment_id=compartment_id,
                equipment_item_id=target.equipment_item_id,
                consumable_stock_id=target.consumable_stock_id,
                manifest_entry_id=manifest_entry_id,
                verification_status=status.value,
                quantity_found=quantity_found,
                quantity_expected=quantity_expected,
                condition_notes=notes,
                verified_at=now,
                verified_by_id=verified_by,
                issue_id=issue_id,
            )
            self.session.add(item)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            if self.exists_for_item(check.id, target):
                logger.info(
                    "duplicate_verification_race",
                    extra={"check_id": str(check.id), "target": str(target)},
                )
                raise DuplicateVerificationError(str(check.id), str(target)) from None
            raise

        if self._broadcaster is not None:
            event = ItemVerifiedEvent(
                apparatus_id=check.apparatus_id,
                check_id=check.id,
                compartment_id=compartment_id,
                item_id=target.target_id,
                status=status,
                verified_by_name=verified_by_name,
            )
            broadcaster = self._broadcaster
            run_after_commit(self.session, lambda: broadcaster.publish(event))

        logger.info(
            "item_verified",
            extra={
                "check_id": str(check.id),
                "item_row_id": str(item.id),
                "target": str(target),
                "verification_status": status.value,
                "issue_id": str(issue_id) if issue_id else None,
            },
        )
        return RecordedVerification(item_id=item.id, issue_id=issue_id, verified_at=now)
