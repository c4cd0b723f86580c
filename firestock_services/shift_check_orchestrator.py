"""
ShiftCheckOrchestrator -- transaction-owning entry point for shift checks.

Responsibility:
    Wires the kernel collaborators (InventoryCheckService, the compartment
    lock manager, the event broadcaster) together and runs every operation
    in its own ``session_scope``.  Kernel refusals are converted to a
    ``CheckOperationResult``; anything else rolls back and propagates.

Architecture position:
    Services -- stateful orchestration over the kernel.  Created once per
    process; the lock manager and broadcaster it holds are process-wide.

Invariants enforced:
    - One transaction per operation; events and lock clearing happen only
      after that transaction commits.
    - Resume vs. auto-abandon: the owner's resume of a check that is still
      IN_PROGRESS is a touch; if the sweeper abandons it first, the resume
      is retried once against the now-ABANDONED check, which is inside the
      window by construction.  The returned result always matches the
      persisted state.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from firestock_kernel.db.engine import session_scope
from firestock_kernel.domain.catalog import CatalogReader
from firestock_kernel.domain.clock import Clock, SystemClock
from firestock_kernel.domain.dtos import (
    ApparatusWithCheckStatus,
    Busy,
    CheckableItemWithStatus,
    CompartmentCheckProgress,
    InventoryCheckInfo,
    LockHandle,
    VerificationOutcome,
)
from firestock_kernel.domain.events import CheckEvent
from firestock_kernel.domain.policy import CheckPolicy
from firestock_kernel.domain.values import (
    AbandonReason,
    CheckTarget,
    VerificationStatus,
)
from firestock_kernel.exceptions import (
    ApparatusNotFoundError,
    CheckNotActiveError,
    FirestockKernelError,
    NoActiveCheckError,
)
from firestock_kernel.logging_config import LogContext, get_logger
from firestock_kernel.selectors.check_selector import CheckSelector
from firestock_kernel.services.compartment_lock_manager import CompartmentLockManager
from firestock_kernel.services.event_broadcaster import EventBroadcaster, Subscription
from firestock_kernel.services.inventory_check_service import InventoryCheckService
from firestock_kernel.services.issue_service import IssueSink

from firestock_services._check_types import CheckOperationResult
from firestock_services.auto_abandon_sweeper import AutoAbandonSweeper

logger = get_logger("services.shift_check_orchestrator")

T = TypeVar("T")


class ShiftCheckOrchestrator:
    """
    Contract:
        Every mutating operation returns a ``CheckOperationResult``.  Read
        accessors return DTOs.  Compartment lock operations are in-memory,
        return the lock manager's values directly and are bound to the
        apparatus's IN_PROGRESS check (``NoActiveCheckError`` without one).

    Non-goals:
        - Authentication and authorization beyond "only the performer may
          resume" are the caller's concern.
        - No retry on persistence errors.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        catalog: CatalogReader,
        clock: Clock | None = None,
        policy: CheckPolicy | None = None,
        broadcaster: EventBroadcaster | None = None,
        lock_manager: CompartmentLockManager | None = None,
        issue_sink_factory: Callable[[Session], IssueSink] | None = None,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._clock = clock or SystemClock()
        self._policy = policy or CheckPolicy()
        self._broadcaster = broadcaster or EventBroadcaster()
        self._locks = lock_manager or CompartmentLockManager(
            broadcaster=self._broadcaster, clock=self._clock
        )
        self._issue_sink_factory = issue_sink_factory

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    @property
    def lock_manager(self) -> CompartmentLockManager:
        return self._locks

    @property
    def policy(self) -> CheckPolicy:
        return self._policy

    def service_for(self, session: Session) -> InventoryCheckService:
        """An InventoryCheckService bound to ``session`` and this orchestrator's collaborators."""
        return InventoryCheckService(
            session,
            self._catalog,
            clock=self._clock,
            policy=self._policy,
            lock_manager=self._locks,
            broadcaster=self._broadcaster,
            issue_sink=(
                self._issue_sink_factory(session) if self._issue_sink_factory else None
            ),
        )

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[InventoryCheckService], CheckOperationResult],
        *,
        actor_id: UUID,
        apparatus_id: UUID | None = None,
        check_id: UUID | None = None,
    ) -> CheckOperationResult:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            apparatus_id=str(apparatus_id) if apparatus_id else None,
            check_id=str(check_id) if check_id else None,
        ):
            t0 = time.monotonic()
            try:
                with session_scope(self._session_factory) as session:
                    result = work(self.service_for(session))
            except FirestockKernelError as exc:
                logger.info(
                    f"{operation}_refused",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                return CheckOperationResult.from_error(exc)
            except Exception:
                logger.error(f"{operation}_failed", exc_info=True)
                raise

            logger.info(
                f"{operation}_completed",
                extra={
                    "status": result.status.value,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _read(self, work: Callable[[InventoryCheckService], T]) -> T:
        with session_scope(self._session_factory) as session:
            return work(self.service_for(session))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_check(
        self,
        apparatus_id: UUID,
        user_id: UUID,
        station_id: UUID | None = None,
        notes: str | None = None,
    ) -> CheckOperationResult:
        return self._run(
            "start_check",
            lambda svc: CheckOperationResult.ok(
                svc.start(apparatus_id, station_id, user_id, notes=notes)
            ),
            actor_id=user_id,
            apparatus_id=apparatus_id,
        )

    def verify_item(
        self,
        check_id: UUID,
        compartment_id: UUID,
        status: VerificationStatus,
        user_id: UUID,
        *,
        target: CheckTarget | None = None,
        equipment_item_id: UUID | None = None,
        consumable_stock_id: UUID | None = None,
        notes: str | None = None,
        quantity_found: Decimal | None = None,
        quantity_expected: Decimal | None = None,
        manifest_entry_id: UUID | None = None,
        user_name: str | None = None,
    ) -> CheckOperationResult:
        """Record one verification; pass ``target`` or one of the two item IDs."""

        def _work(svc: InventoryCheckService) -> CheckOperationResult:
            resolved = target or CheckTarget.of(equipment_item_id, consumable_stock_id)
            receipt = svc.record_verification(
                check_id,
                VerificationOutcome(
                    compartment_id=compartment_id,
                    target=resolved,
                    status=VerificationStatus(status),
                    notes=notes,
                    quantity_found=quantity_found,
                    quantity_expected=quantity_expected,
                    manifest_entry_id=manifest_entry_id,
                ),
                verified_by=user_id,
                verified_by_name=user_name,
            )
            return CheckOperationResult.ok(
                receipt.check, item_id=receipt.item_id, issue_id=receipt.issue_id
            )

        return self._run("verify_item", _work, actor_id=user_id, check_id=check_id)

    def complete_check(
        self, check_id: UUID, user_id: UUID, notes: str | None = None
    ) -> CheckOperationResult:
        return self._run(
            "complete_check",
            lambda svc: CheckOperationResult.ok(svc.complete(check_id, notes=notes)),
            actor_id=user_id,
            check_id=check_id,
        )

    def abandon_check(self, check_id: UUID, user_id: UUID) -> CheckOperationResult:
        return self._run(
            "abandon_check",
            lambda svc: CheckOperationResult.ok(
                svc.abandon(check_id, AbandonReason.USER_ABANDONED)
            ),
            actor_id=user_id,
            check_id=check_id,
        )

    def resume_check(self, check_id: UUID, user_id: UUID) -> CheckOperationResult:
        """
        Resume an auto-abandoned check, or keep the owner's IN_PROGRESS
        check alive if the sweeper has not reached it yet.
        """

        def _resume_or_touch(svc: InventoryCheckService) -> CheckOperationResult:
            check = svc.get_check(check_id)
            if check.is_in_progress and check.performed_by_id == user_id:
                return CheckOperationResult.ok(svc.touch(check_id, user_id))
            return CheckOperationResult.ok(svc.resume(check_id, user_id))

        result = self._run(
            "resume_check", _resume_or_touch, actor_id=user_id, check_id=check_id
        )
        if result.error_code == CheckNotActiveError.code:
            # The sweeper won the race between our read and the touch.
            logger.info("resume_retry_after_sweep", extra={"check_id": str(check_id)})
            result = self._run(
                "resume_check",
                lambda svc: CheckOperationResult.ok(svc.resume(check_id, user_id)),
                actor_id=user_id,
                check_id=check_id,
            )
        return result

    def continue_check(self, check_id: UUID, user_id: UUID) -> CheckOperationResult:
        """A crew member re-enters an IN_PROGRESS check."""
        return self._run(
            "continue_check",
            lambda svc: CheckOperationResult.ok(svc.touch(check_id, user_id)),
            actor_id=user_id,
            check_id=check_id,
        )

    # ------------------------------------------------------------------
    # Compartment locks
    # ------------------------------------------------------------------

    def _require_active_check(self, apparatus_id: UUID) -> InventoryCheckInfo:
        check = self.get_active_check(apparatus_id)
        if check is None:
            logger.info(
                "compartment_lock_refused",
                extra={"apparatus_id": str(apparatus_id), "error_code": NoActiveCheckError.code},
            )
            raise NoActiveCheckError(str(apparatus_id))
        return check

    def start_checking_compartment(
        self,
        apparatus_id: UUID,
        compartment_id: UUID,
        user_id: UUID,
        display_name: str,
    ) -> LockHandle | Busy:
        """
        Raises:
            NoActiveCheckError: the apparatus has no IN_PROGRESS check.
        """
        check = self._require_active_check(apparatus_id)
        return self._locks.acquire(
            apparatus_id, compartment_id, user_id, display_name, check_id=check.id
        )

    def take_over_compartment(
        self,
        apparatus_id: UUID,
        compartment_id: UUID,
        user_id: UUID,
        display_name: str,
    ) -> LockHandle:
        check = self._require_active_check(apparatus_id)
        return self._locks.take_over(
            apparatus_id, compartment_id, user_id, display_name, check_id=check.id
        )

    def stop_checking_compartment(
        self, apparatus_id: UUID, compartment_id: UUID, user_id: UUID
    ) -> bool:
        return self._locks.release(apparatus_id, compartment_id, user_id)

    def release_user_locks(self, user_id: UUID) -> int:
        return self._locks.release_all_for_user(user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_check(self, check_id: UUID) -> InventoryCheckInfo | None:
        return self._read(lambda svc: CheckSelector(svc.session).get_check(check_id))

    def get_active_check(self, apparatus_id: UUID) -> InventoryCheckInfo | None:
        return self._read(lambda svc: svc.get_active_check(apparatus_id))

    def get_active_check_for_station(self, station_id: UUID) -> list[InventoryCheckInfo]:
        return self._read(
            lambda svc: CheckSelector(svc.session).find_active_for_station(station_id)
        )

    def get_compartment_progress(self, check_id: UUID) -> list[CompartmentCheckProgress]:
        """
        Per-compartment totals for a check, in display order.

        Raises:
            CheckNotFoundError, ApparatusNotFoundError.
        """

        def _work(svc: InventoryCheckService):
            check = svc.get_check(check_id)
            counts = CheckSelector(svc.session).count_verified_by_compartment(check_id)
            return check, counts

        check, counts = self._read(_work)
        details = self._catalog.get_apparatus_details(check.apparatus_id)
        if details is None:
            raise ApparatusNotFoundError(str(check.apparatus_id))
        locks = self._locks.locks_for_apparatus(check.apparatus_id, check_id=check.id)

        progress = []
        for compartment in sorted(details.compartments, key=lambda c: c.display_order):
            lock = locks.get(compartment.id)
            progress.append(
                CompartmentCheckProgress(
                    compartment_id=compartment.id,
                    compartment_code=compartment.code,
                    compartment_name=compartment.name,
                    display_order=compartment.display_order,
                    total_items=len(compartment.items),
                    verified_count=counts.get(compartment.id, 0),
                    current_checker_name=lock.holder_display_name if lock else None,
                )
            )
        return progress

    def get_items_with_status(
        self, check_id: UUID, compartment_id: UUID
    ) -> list[CheckableItemWithStatus]:
        """
        Items of one compartment: unchecked first (catalog order), then
        checked ones ordered by verification time.

        Raises:
            CheckNotFoundError, ApparatusNotFoundError.
        """

        def _work(svc: InventoryCheckService):
            check = svc.get_check(check_id)
            return check, CheckSelector(svc.session).list_items(check_id)

        check, recorded = self._read(_work)
        details = self._catalog.get_apparatus_details(check.apparatus_id)
        if details is None:
            raise ApparatusNotFoundError(str(check.apparatus_id))
        compartment = details.compartment(compartment_id)
        if compartment is None:
            return []

        by_target = {r.target: r for r in recorded}
        unchecked: list[CheckableItemWithStatus] = []
        checked: list[CheckableItemWithStatus] = []
        for item in compartment.items:
            record = by_target.get(item.target)
            if record is None:
                unchecked.append(
                    CheckableItemWithStatus(item=item, compartment_id=compartment_id)
                )
            else:
                checked.append(
                    CheckableItemWithStatus(
                        item=item,
                        compartment_id=compartment_id,
                        verification_status=record.verification_status,
                        verified_at=record.verified_at,
                        verified_by_id=record.verified_by_id,
                    )
                )
        checked.sort(key=lambda i: i.verified_at)
        return unchecked + checked

    def find_item_by_barcode(
        self, apparatus_id: UUID, barcode: str, check_id: UUID | None = None
    ) -> CheckableItemWithStatus | None:
        """
        Resolve a scanned barcode to an item on the apparatus.

        With ``check_id`` the result also carries the item's verification in
        that check, so a scan can tell "already counted" apart.

        Raises:
            ApparatusNotFoundError.
        """
        details = self._catalog.get_apparatus_details(apparatus_id)
        if details is None:
            raise ApparatusNotFoundError(str(apparatus_id))
        match = details.find_by_barcode(barcode)
        if match is None:
            return None
        compartment, item = match
        if check_id is None:
            return CheckableItemWithStatus(item=item, compartment_id=compartment.id)

        recorded = self._read(lambda svc: CheckSelector(svc.session).list_items(check_id))
        record = next((r for r in recorded if r.target == item.target), None)
        if record is None:
            return CheckableItemWithStatus(item=item, compartment_id=compartment.id)
        return CheckableItemWithStatus(
            item=item,
            compartment_id=compartment.id,
            verification_status=record.verification_status,
            verified_at=record.verified_at,
            verified_by_id=record.verified_by_id,
        )

    def get_apparatus_with_check_status(
        self, station_id: UUID
    ) -> list[ApparatusWithCheckStatus]:
        """Apparatus of a station with their active check and who is checking it."""
        apparatus = self._catalog.list_apparatus_for_station(station_id)

        def _work(svc: InventoryCheckService):
            selector = CheckSelector(svc.session)
            active = {c.apparatus_id: c for c in selector.find_active_for_station(station_id)}
            last_completed = selector.last_completed_at([a.id for a in apparatus])
            return active, last_completed

        active, last_completed = self._read(_work)
        rows = []
        for details in apparatus:
            check = active.get(details.id)
            names: tuple[str, ...] = ()
            if check is not None:
                locks = self._locks.locks_for_apparatus(details.id, check_id=check.id)
                names = tuple(sorted({lock.holder_display_name for lock in locks.values()}))
            rows.append(
                ApparatusWithCheckStatus(
                    id=details.id,
                    unit_number=details.unit_number,
                    station_id=details.station_id,
                    has_active_check=check is not None,
                    active_check_id=check.id if check else None,
                    last_completed_at=last_completed.get(details.id),
                    current_checker_names=names,
                )
            )
        return rows

    def get_resumable_checks(self, user_id: UUID) -> list[InventoryCheckInfo]:
        """
        ``user_id``'s auto-abandoned checks still inside the resume window,
        most recent first.  Drives the "resume your check?" prompt.
        """
        window_start = self._clock.now() - self._policy.resume_window
        return self._read(
            lambda svc: CheckSelector(svc.session).find_resumable(user_id, window_start)
        )

    # ------------------------------------------------------------------
    # Collaboration
    # ------------------------------------------------------------------

    def subscribe(
        self, apparatus_id: UUID, handler: Callable[[CheckEvent], None]
    ) -> Subscription:
        return self._broadcaster.subscribe(apparatus_id, handler)

    def build_sweeper(self) -> AutoAbandonSweeper:
        """A sweeper sharing this orchestrator's clock, policy and collaborators."""
        return AutoAbandonSweeper(
            self._session_factory,
            self.service_for,
            clock=self._clock,
            policy=self._policy,
        )


def build_shift_check_orchestrator(
    session_factory: Callable[[], Session],
    catalog: CatalogReader,
    config_path: Path | str | None = None,
    clock: Clock | None = None,
) -> ShiftCheckOrchestrator:
    """
    Build an orchestrator from ``firestock_config``: logging is configured
    at the configured level and the broadcaster is started.
    """
    from firestock_config import (
        build_check_policy,
        configure_check_logging,
        get_check_policy_config,
    )

    config = get_check_policy_config(config_path)
    configure_check_logging(config)
    broadcaster = EventBroadcaster()
    broadcaster.start()
    return ShiftCheckOrchestrator(
        session_factory,
        catalog,
        clock=clock,
        policy=build_check_policy(config),
        broadcaster=broadcaster,
    )
