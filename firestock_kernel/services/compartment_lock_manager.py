"""
CompartmentLockManager -- "who is checking this compartment right now".

Responsibility:
    In-memory advisory locks so two crew members do not count the same
    compartment at once.  A busy compartment is reported as a ``Busy``
    value, and a user may deliberately take it over.

Architecture position:
    Kernel > Services -- in-memory coordinator.  Injected as an instance
    (never a module-level singleton); one instance per process.

Invariants enforced:
    - At most one holder per (apparatus, compartment).
    - A lock belongs to the check it was taken in.  A lock left over from
      another check (taken late, or racing the after-commit clear) counts
      as absent and is replaced on the next acquire or take-over.
    - All mutations happen under a single mutex; events are published after
      the mutex is released.

Non-goals:
    - No TTL.  Locks end on release, take-over, or when the check ends
      (clear_apparatus).  Locks are not persisted and do not survive a
      restart.
"""

from __future__ import annotations

import threading
from uuid import UUID

from firestock_kernel.domain.clock import Clock, SystemClock
from firestock_kernel.domain.dtos import Busy, CompartmentLock, LockHandle
from firestock_kernel.domain.events import (
    CheckEvent,
    CheckTakeOverEvent,
    CompartmentLockChangedEvent,
)
from firestock_kernel.logging_config import get_logger
from firestock_kernel.services.event_broadcaster import EventBroadcaster

logger = get_logger("services.compartment_locks")


class CompartmentLockManager:
    """Thread-safe map of apparatus -> compartment -> CompartmentLock."""

    def __init__(
        self,
        broadcaster: EventBroadcaster | None = None,
        clock: Clock | None = None,
    ):
        self._broadcaster = broadcaster
        self._clock = clock or SystemClock()
        self._mutex = threading.Lock()
        self._locks: dict[UUID, dict[UUID, CompartmentLock]] = {}

    def _publish(self, events: list[CheckEvent]) -> None:
        if self._broadcaster is None:
            return
        for event in events:
            self._broadcaster.publish(event)

    @staticmethod
    def _belongs_to(lock: CompartmentLock | None, check_id: UUID | None) -> bool:
        if lock is None:
            return False
        return check_id is None or lock.check_id == check_id

    def _current(
        self,
        compartments: dict[UUID, CompartmentLock],
        compartment_id: UUID,
        check_id: UUID | None,
    ) -> CompartmentLock | None:
        # Caller holds the mutex.
        current = compartments.get(compartment_id)
        if current is not None and not self._belongs_to(current, check_id):
            logger.info(
                "stale_compartment_lock_dropped",
                extra={
                    "compartment_id": str(compartment_id),
                    "holder": str(current.holder_user_id),
                    "stale_check_id": str(current.check_id),
                },
            )
            del compartments[compartment_id]
            return None
        return current

    def acquire(
        self,
        apparatus_id: UUID,
        compartment_id: UUID,
        user_id: UUID,
        display_name: str,
        check_id: UUID | None = None,
    ) -> LockHandle | Busy:
        """
        Lock a compartment for ``user_id`` within ``check_id``.

        Returns the existing handle when the user already holds it, or
        ``Busy`` naming the current holder.
        """
        with self._mutex:
            compartments = self._locks.setdefault(apparatus_id, {})
            current = self._current(compartments, compartment_id, check_id)
            if current is not None:
                if current.holder_user_id == user_id:
                    return LockHandle(current)
                return Busy(current.holder_user_id, current.holder_display_name)
            lock = CompartmentLock(
                apparatus_id=apparatus_id,
                compartment_id=compartment_id,
                holder_user_id=user_id,
                holder_display_name=display_name,
                acquired_at=self._clock.now(),
                check_id=check_id,
            )
            compartments[compartment_id] = lock

        logger.info(
            "compartment_lock_acquired",
            extra={"compartment_id": str(compartment_id), "holder": str(user_id)},
        )
        self._publish([
            CompartmentLockChangedEvent(
                apparatus_id=apparatus_id,
                compartment_id=compartment_id,
                locked_by_name=display_name,
                is_locked=True,
            )
        ])
        return LockHandle(lock)

    def take_over(
        self,
        apparatus_id: UUID,
        compartment_id: UUID,
        new_user_id: UUID,
        new_display_name: str,
        check_id: UUID | None = None,
    ) -> LockHandle:
        """Unconditionally make ``new_user_id`` the holder."""
        with self._mutex:
            compartments = self._locks.setdefault(apparatus_id, {})
            previous = self._current(compartments, compartment_id, check_id)
            lock = CompartmentLock(
                apparatus_id=apparatus_id,
                compartment_id=compartment_id,
                holder_user_id=new_user_id,
                holder_display_name=new_display_name,
                acquired_at=self._clock.now(),
                check_id=check_id,
            )
            compartments[compartment_id] = lock

        events: list[CheckEvent] = []
        if previous is not None and previous.holder_user_id != new_user_id:
            logger.info(
                "compartment_taken_over",
                extra={
                    "compartment_id": str(compartment_id),
                    "previous_holder": str(previous.holder_user_id),
                    "holder": str(new_user_id),
                },
            )
            events.append(
                CheckTakeOverEvent(
                    apparatus_id=apparatus_id,
                    compartment_id=compartment_id,
                    previous_checker_name=previous.holder_display_name,
                    new_checker_name=new_display_name,
                )
            )
        events.append(
            CompartmentLockChangedEvent(
                apparatus_id=apparatus_id,
                compartment_id=compartment_id,
                locked_by_name=new_display_name,
                is_locked=True,
            )
        )
        self._publish(events)
        return LockHandle(lock)

    def release(self, apparatus_id: UUID, compartment_id: UUID, user_id: UUID) -> bool:
        """Release the lock if ``user_id`` holds it; no-op otherwise."""
        with self._mutex:
            compartments = self._locks.get(apparatus_id)
            current = compartments.get(compartment_id) if compartments else None
            if current is None or current.holder_user_id != user_id:
                return False
            del compartments[compartment_id]
            if not compartments:
                del self._locks[apparatus_id]

        logger.info(
            "compartment_lock_released",
            extra={"compartment_id": str(compartment_id), "holder": str(user_id)},
        )
        self._publish([
            CompartmentLockChangedEvent(
                apparatus_id=apparatus_id,
                compartment_id=compartment_id,
                locked_by_name=None,
                is_locked=False,
            )
        ])
        return True

    def clear_apparatus(self, apparatus_id: UUID) -> int:
        """Drop every lock on the apparatus (check completed or abandoned)."""
        with self._mutex:
            removed = self._locks.pop(apparatus_id, {})
        if removed:
            logger.info(
                "compartment_locks_cleared",
                extra={"apparatus_id": str(apparatus_id), "count": len(removed)},
            )
        return len(removed)

    def release_all_for_user(self, user_id: UUID) -> int:
        """Release every lock held by ``user_id`` (e.g. on disconnect)."""
        released: list[CompartmentLock] = []
        with self._mutex:
            for apparatus_id in list(self._locks):
                compartments = self._locks[apparatus_id]
                for compartment_id, lock in list(compartments.items()):
                    if lock.holder_user_id == user_id:
                        released.append(compartments.pop(compartment_id))
                if not compartments:
                    del self._locks[apparatus_id]

        self._publish([
            CompartmentLockChangedEvent(
                apparatus_id=lock.apparatus_id,
                compartment_id=lock.compartment_id,
                locked_by_name=None,
                is_locked=False,
            )
            for lock in released
        ])
        return len(released)

    def get_lock(
        self, apparatus_id: UUID, compartment_id: UUID, check_id: UUID | None = None
    ) -> CompartmentLock | None:
        with self._mutex:
            lock = self._locks.get(apparatus_id, {}).get(compartment_id)
        return lock if self._belongs_to(lock, check_id) else None

    def locks_for_apparatus(
        self, apparatus_id: UUID, check_id: UUID | None = None
    ) -> dict[UUID, CompartmentLock]:
        """Current locks by compartment; only those of ``check_id`` when given."""
        with self._mutex:
            locks = dict(self._locks.get(apparatus_id, {}))
        return {
            compartment_id: lock
            for compartment_id, lock in locks.items()
            if self._belongs_to(lock, check_id)
        }
