"""
InventoryCheckService -- lifecycle of a shift inventory check.

Responsibility:
    Starts checks, records verifications (through VerificationRecorder)
    and moves checks between IN_PROGRESS, COMPLETED and ABANDONED.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  The caller
    (ShiftCheckOrchestrator, AutoAbandonSweeper, tests) owns commit.

Invariants enforced:
    - At most one IN_PROGRESS check per apparatus.  The read-side check
      gives a clean ConflictError; the partial unique index settles races.
    - Every lifecycle write is a compare-and-swap UPDATE guarded on the
      current status and bumps ``version``.  Of two racing writers exactly
      one matches a row; the other reloads and raises a typed error that
      names the status it found.
    - verified_count never exceeds total_items and always equals the
      number of item rows, because the increment and the item insert share
      one savepoint.
    - Lock clearing and event publication happen only after commit.

Failure modes:
    - ApparatusNotFoundError: start() for an apparatus the catalog lacks.
    - ConflictError: an IN_PROGRESS check already exists for the apparatus.
    - CheckNotFoundError / CheckNotActiveError: bad ID or terminal check.
    - DuplicateVerificationError, VerificationLimitExceededError,
      QuantityDiscrepancyRequiresNotesError, InvalidCheckTargetError:
      rejected verifications.
    - ResumeWindowExpiredError, NotResumableError, ForbiddenError: resume.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from firestock_kernel.domain.catalog import CatalogReader
from firestock_kernel.domain.clock import Clock, SystemClock
from firestock_kernel.domain.dtos import (
    ApparatusDetails,
    CheckableItem,
    InventoryCheckInfo,
    VerificationOutcome,
    VerificationReceipt,
)
from firestock_kernel.domain.events import (
    CheckAbandonedEvent,
    CheckCompletedEvent,
    CheckEvent,
    CheckResumedEvent,
)
from firestock_kernel.domain.policy import CheckPolicy
from firestock_kernel.domain.values import (
    AbandonReason,
    CheckStatus,
    CheckTarget,
)
from firestock_kernel.exceptions import (
    ApparatusNotFoundError,
    CheckNotActiveError,
    CheckNotFoundError,
    ConflictError,
    ForbiddenError,
    InvalidCheckTargetError,
    NotResumableError,
    ResumeWindowExpiredError,
    VerificationLimitExceededError,
)
from firestock_kernel.logging_config import get_logger
from firestock_kernel.models.inventory_check import InventoryCheck
from firestock_kernel.selectors.check_selector import CheckSelector
from firestock_kernel.services.after_commit import run_after_commit
from firestock_kernel.services.base import BaseService
from firestock_kernel.services.compartment_lock_manager import CompartmentLockManager
from firestock_kernel.services.event_broadcaster import EventBroadcaster
from firestock_kernel.services.issue_service import IssueSink
from firestock_kernel.services.verification_recorder import VerificationRecorder

logger = get_logger("services.inventory_check")

_IN_PROGRESS = CheckStatus.IN_PROGRESS.value
_ABANDONED = CheckStatus.ABANDONED.value
_COMPLETED = CheckStatus.COMPLETED.value


class InventoryCheckService(BaseService[InventoryCheck]):
    """
    Check session state machine.

    Usage:
        service = InventoryCheckService(session, catalog, clock=clock)
        check = service.start(apparatus_id, station_id, user_id)
        service.record_verification(check.id, outcome, verified_by=user_id)
        service.complete(check.id)
        session.commit()
    """

    def __init__(
        self,
        session: Session,
        catalog: CatalogReader,
        clock: Clock | None = None,
        policy: CheckPolicy | None = None,
        lock_manager: CompartmentLockManager | None = None,
        broadcaster: EventBroadcaster | None = None,
        issue_sink: IssueSink | None = None,
    ):
        super().__init__(session)
        self._catalog = catalog
        self._clock = clock or SystemClock()
        self._policy = policy or CheckPolicy()
        self._locks = lock_manager
        self._broadcaster = broadcaster
        self._selector = CheckSelector(session)
        self._recorder = VerificationRecorder(
            session,
            clock=self._clock,
            policy=self._policy,
            issue_sink=issue_sink,
            broadcaster=broadcaster,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_check(self, check_id: UUID) -> InventoryCheckInfo:
        check = self._selector.get_check(check_id)
        if check is None:
            raise CheckNotFoundError(str(check_id))
        return check

    def get_active_check(self, apparatus_id: UUID) -> InventoryCheckInfo | None:
        return self._selector.find_active_for_apparatus(apparatus_id)

    def _get_active(self, check_id: UUID) -> InventoryCheckInfo:
        check = self.get_check(check_id)
        if not check.is_in_progress:
            raise CheckNotActiveError(str(check_id), check.status.value)
        return check

    def _apparatus(self, apparatus_id: UUID) -> ApparatusDetails:
        details = self._catalog.get_apparatus_details(apparatus_id)
        if details is None:
            raise ApparatusNotFoundError(str(apparatus_id))
        return details

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(
        self,
        apparatus_id: UUID,
        station_id: UUID | None,
        user_id: UUID,
        notes: str | None = None,
    ) -> InventoryCheckInfo:
        """
        Open a new IN_PROGRESS check sized from the catalog.

        ``station_id`` defaults to the apparatus's station.
        """
        details = self._apparatus(apparatus_id)

        active = self._selector.find_active_for_apparatus(apparatus_id)
        if active is not None:
            raise ConflictError(str(apparatus_id), str(active.id))

        now = self._clock.now()
        check = InventoryCheck(
            apparatus_id=apparatus_id,
            station_id=station_id or details.station_id,
            performed_by_id=user_id,
            status=_IN_PROGRESS,
            total_items=details.total_item_count,
            verified_count=0,
            issues_found_count=0,
            started_at=now,
            last_activity_at=now,
            notes=notes,
            version=1,
            created_by_id=user_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(check)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self._selector.find_active_for_apparatus(apparatus_id)
            if winner is None:
                raise
            logger.info(
                "check_start_conflict",
                extra={"apparatus_id": str(apparatus_id), "active_check_id": str(winner.id)},
            )
            raise ConflictError(str(apparatus_id), str(winner.id)) from None

        info = InventoryCheckInfo.from_model(check)
        if self._locks is not None:
            # Locks of an earlier check on this apparatus must not carry over.
            locks = self._locks
            run_after_commit(self.session, lambda: locks.clear_apparatus(apparatus_id))
        logger.info(
            "check_started",
            extra={
                "check_id": str(info.id),
                "apparatus_id": str(apparatus_id),
                "total_items": info.total_items,
                "performed_by_id": str(user_id),
            },
        )
        return info

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def record_verification(
        self,
        check_id: UUID,
        outcome: VerificationOutcome,
        verified_by: UUID,
        verified_by_name: str | None = None,
    ) -> VerificationReceipt:
        """
        Record one verification and bump the check's counters atomically.

        The counter increment runs first as a conditional UPDATE
        (IN_PROGRESS and not yet full), then the recorder writes the item.
        Both share a savepoint, so a rejected verification leaves the
        check exactly as it was.
        """
        check = self._get_active(check_id)
        if check.verified_count >= check.total_items:
            raise VerificationLimitExceededError(str(check_id), check.total_items)
        catalog_item = self._catalog_item(
            check.apparatus_id, outcome.compartment_id, outcome.target
        )

        now = self._clock.now()
        issue_increment = 1 if outcome.status.is_problem else 0

        savepoint = self.session.begin_nested()
        try:
            result = self.session.execute(
                update(InventoryCheck)
                .where(
                    InventoryCheck.id == check_id,
                    InventoryCheck.status == _IN_PROGRESS,
                    InventoryCheck.verified_count < InventoryCheck.total_items,
                )
                .values(
                    verified_count=InventoryCheck.verified_count + 1,
                    issues_found_count=InventoryCheck.issues_found_count + issue_increment,
                    last_activity_at=now,
                    version=InventoryCheck.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = self.get_check(check_id)
                if not current.is_in_progress:
                    raise CheckNotActiveError(str(check_id), current.status.value)
                raise VerificationLimitExceededError(str(check_id), current.total_items)

            recorded = self._recorder.record(
                check,
                compartment_id=outcome.compartment_id,
                target=outcome.target,
                status=outcome.status,
                notes=outcome.notes,
                quantity_found=outcome.quantity_found,
                quantity_expected=outcome.quantity_expected,
                manifest_entry_id=outcome.manifest_entry_id,
                verified_by=verified_by,
                verified_by_name=verified_by_name,
                item_name=catalog_item.name,
            )
            savepoint.commit()
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise

        return VerificationReceipt(
            check=self.get_check(check_id),
            item_id=recorded.item_id,
            issue_id=recorded.issue_id,
        )

    def _catalog_item(
        self, apparatus_id: UUID, compartment_id: UUID, target: CheckTarget
    ) -> CheckableItem:
        """The catalog entry for ``target``; it must be stowed in ``compartment_id``."""
        compartment = self._apparatus(apparatus_id).compartment(compartment_id)
        if compartment is None:
            raise InvalidCheckTargetError(
                f"compartment {compartment_id} is not on apparatus {apparatus_id}"
            )
        for item in compartment.items:
            if item.target == target:
                return item
        raise InvalidCheckTargetError(
            f"{target} is not stowed in compartment {compartment.code}"
        )

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def complete(self, check_id: UUID, notes: str | None = None) -> InventoryCheckInfo:
        """
        IN_PROGRESS -> COMPLETED.  Partially verified checks may complete.

        Raises:
            CheckNotFoundError: no such check.
            CheckNotActiveError: the check is already terminal, e.g. the
                sweeper abandoned it first.
        """
        now = self._clock.now()
        values: dict = {
            "status": _COMPLETED,
            "completed_at": now,
            "version": InventoryCheck.version + 1,
        }
        if notes is not None:
            values["notes"] = notes
        result = self.session.execute(
            update(InventoryCheck)
            .where(InventoryCheck.id == check_id, InventoryCheck.status == _IN_PROGRESS)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        check = self.get_check(check_id)
        if result.rowcount != 1:
            raise CheckNotActiveError(str(check_id), check.status.value)

        self._after_terminal(check, CheckCompletedEvent(check.apparatus_id, check.id))
        logger.info(
            "check_completed",
            extra={
                "check_id": str(check.id),
                "verified_count": check.verified_count,
                "total_items": check.total_items,
                "issues_found_count": check.issues_found_count,
            },
        )
        return check

    def abandon(
        self,
        check_id: UUID,
        reason: AbandonReason | str = AbandonReason.USER_ABANDONED,
    ) -> InventoryCheckInfo:
        """
        IN_PROGRESS -> ABANDONED.  Already-terminal checks are returned as-is.
        """
        reason_value = AbandonReason(reason).value
        now = self._clock.now()
        result = self.session.execute(
            update(InventoryCheck)
            .where(InventoryCheck.id == check_id, InventoryCheck.status == _IN_PROGRESS)
            .values(
                status=_ABANDONED,
                abandoned_at=now,
                abandon_reason=reason_value,
                version=InventoryCheck.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        check = self.get_check(check_id)
        if result.rowcount != 1:
            logger.debug(
                "check_abandon_noop",
                extra={"check_id": str(check_id), "status": check.status.value},
            )
            return check

        self._after_terminal(
            check, CheckAbandonedEvent(check.apparatus_id, check.id, reason_value)
        )
        logger.info(
            "check_abandoned",
            extra={"check_id": str(check.id), "abandon_reason": reason_value},
        )
        return check

    def abandon_if_stale(self, check_id: UUID, cutoff: datetime) -> bool:
        """
        Sweeper transition: abandon with AUTO_TIMEOUT only if the check is
        still IN_PROGRESS and had no activity since ``cutoff``.

        Returns True if this call abandoned the check.
        """
        now = self._clock.now()
        result = self.session.execute(
            update(InventoryCheck)
            .where(
                InventoryCheck.id == check_id,
                InventoryCheck.status == _IN_PROGRESS,
                InventoryCheck.last_activity_at < cutoff,
            )
            .values(
                status=_ABANDONED,
                abandoned_at=now,
                abandon_reason=AbandonReason.AUTO_TIMEOUT.value,
                version=InventoryCheck.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        check = self.get_check(check_id)
        self._after_terminal(
            check,
            CheckAbandonedEvent(
                check.apparatus_id, check.id, AbandonReason.AUTO_TIMEOUT.value
            ),
        )
        logger.info(
            "check_auto_abandoned",
            extra={
                "check_id": str(check.id),
                "last_activity_at": check.last_activity_at,
                "cutoff": cutoff,
            },
        )
        return True

    def _after_terminal(self, check: InventoryCheckInfo, event: CheckEvent) -> None:
        locks = self._locks
        broadcaster = self._broadcaster
        apparatus_id = check.apparatus_id

        def _on_commit() -> None:
            if locks is not None:
                locks.clear_apparatus(apparatus_id)
            if broadcaster is not None:
                broadcaster.publish(event)

        run_after_commit(self.session, _on_commit)

    # ------------------------------------------------------------------
    # Resume / touch
    # ------------------------------------------------------------------

    def _check_resumable(self, check: InventoryCheckInfo, user_id: UUID, now: datetime) -> None:
        if (
            check.status != CheckStatus.ABANDONED
            or check.abandon_reason != AbandonReason.AUTO_TIMEOUT
        ):
            raise NotResumableError(
                str(check.id),
                check.status.value,
                check.abandon_reason.value if check.abandon_reason else None,
            )
        if check.performed_by_id != user_id:
            raise ForbiddenError(str(check.id), str(user_id), str(check.performed_by_id))
        if not self._policy.within_resume_window(check.abandoned_at, now):
            raise ResumeWindowExpiredError(
                str(check.id),
                str(check.apparatus_id),
                check.abandoned_at,
                self._policy.resume_window_minutes,
            )

    def resume(self, check_id: UUID, user_id: UUID) -> InventoryCheckInfo:
        """
        ABANDONED(AUTO_TIMEOUT) -> IN_PROGRESS for the original performer,
        within the resume window (inclusive).  Counts are kept.

        Raises:
            CheckNotFoundError, NotResumableError, ForbiddenError,
            ResumeWindowExpiredError, ConflictError (another check was
            started for the apparatus in the meantime).
        """
        now = self._clock.now()
        check = self.get_check(check_id)
        self._check_resumable(check, user_id, now)

        window_start = now - self._policy.resume_window
        savepoint = self.session.begin_nested()
        try:
            result = self.session.execute(
                update(InventoryCheck)
                .where(
                    InventoryCheck.id == check_id,
                    InventoryCheck.status == _ABANDONED,
                    InventoryCheck.abandon_reason == AbandonReason.AUTO_TIMEOUT.value,
                    InventoryCheck.performed_by_id == user_id,
                    InventoryCheck.abandoned_at >= window_start,
                )
                .values(
                    status=_IN_PROGRESS,
                    abandoned_at=None,
                    abandon_reason=None,
                    last_activity_at=now,
                    version=InventoryCheck.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            active = self._selector.find_active_for_apparatus(check.apparatus_id)
            if active is None:
                raise
            raise ConflictError(str(check.apparatus_id), str(active.id)) from None

        if result.rowcount != 1:
            # Lost a race; report what we see now.
            current = self.get_check(check_id)
            self._check_resumable(current, user_id, now)
            raise NotResumableError(
                str(check_id),
                current.status.value,
                current.abandon_reason.value if current.abandon_reason else None,
            )

        resumed = self.get_check(check_id)
        if self._broadcaster is not None:
            broadcaster = self._broadcaster
            event = CheckResumedEvent(resumed.apparatus_id, resumed.id, user_id)
            run_after_commit(self.session, lambda: broadcaster.publish(event))
        logger.info(
            "check_resumed",
            extra={"check_id": str(check_id), "resumed_by_id": str(user_id)},
        )
        return resumed

    def touch(self, check_id: UUID, user_id: UUID) -> InventoryCheckInfo:
        """
        Record activity on an IN_PROGRESS check (user re-entered it).

        Any crew member may continue a check; the bump pushes the
        auto-abandon deadline out.

        Raises:
            CheckNotFoundError, CheckNotActiveError.
        """
        now = self._clock.now()
        result = self.session.execute(
            update(InventoryCheck)
            .where(InventoryCheck.id == check_id, InventoryCheck.status == _IN_PROGRESS)
            .values(last_activity_at=now, version=InventoryCheck.version + 1)
            .execution_options(synchronize_session=False)
        )
        check = self.get_check(check_id)
        if result.rowcount != 1:
            raise CheckNotActiveError(str(check_id), check.status.value)
        logger.debug(
            "check_touched",
            extra={"check_id": str(check_id), "user_id": str(user_id)},
        )
        return check
