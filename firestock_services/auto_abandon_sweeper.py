"""
AutoAbandonSweeper -- background timeout of stale shift checks.

Contract:
    Every ``sweep_interval`` the sweeper finds IN_PROGRESS checks with no
    activity for longer than ``max_check_duration`` and abandons each with
    reason AUTO_TIMEOUT, one transaction per check.

Architecture: firestock_services.  Uses InventoryCheckService.abandon_if_stale
    so the write is conditional on the check still being IN_PROGRESS and
    still stale at the moment of the UPDATE.  A resume, touch, verification
    or completion that commits first makes the sweeper's UPDATE match no row.

Invariants enforced:
    - All timestamps from the injected Clock.
    - A failure on one check is logged and does not stop the others.
    - Graceful shutdown: the stop signal is checked between checks.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from firestock_kernel.domain.clock import Clock, SystemClock
from firestock_kernel.domain.policy import CheckPolicy
from firestock_kernel.logging_config import LogContext, get_logger
from firestock_kernel.selectors.check_selector import CheckSelector
from firestock_kernel.services.inventory_check_service import InventoryCheckService

logger = get_logger("services.auto_abandon_sweeper")


class AutoAbandonSweeper:
    """In-process polling sweeper for stale checks.

    Contract:
        - ``tick()`` runs one sweep and returns the number of checks it
          abandoned.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT distributed.  Two sweepers on one database are safe (the
          conditional update lets exactly one abandon each check) but
          wasteful.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], InventoryCheckService],
        clock: Clock | None = None,
        policy: CheckPolicy | None = None,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._clock = clock or SystemClock()
        self._policy = policy or CheckPolicy()
        self._interval = self._policy.sweep_interval.total_seconds()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Run one sweep (public for testing).

        Returns the number of checks abandoned.
        """
        cutoff = self._policy.stale_cutoff(self._clock.now())
        with LogContext.bind(correlation_id=str(uuid4())):
            session = self._session_factory()
            try:
                stale_ids = CheckSelector(session).find_stale_check_ids(cutoff)
                session.commit()
            except Exception:
                session.rollback()
                logger.exception("sweep_scan_failed")
                return 0
            finally:
                session.close()

            abandoned = 0
            for check_id in stale_ids:
                if self._stop_event.is_set():
                    break
                if self._abandon_one(check_id, cutoff):
                    abandoned += 1

            if stale_ids:
                logger.info(
                    "sweep_completed",
                    extra={"candidates": len(stale_ids), "abandoned": abandoned},
                )
            return abandoned

    def start(self) -> None:
        """Start the sweeper in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="auto-abandon-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("sweeper_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the sweeper to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sweeper_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("sweep_tick_exception")
            self._stop_event.wait(timeout=self._interval)

    def _abandon_one(self, check_id: UUID, cutoff) -> bool:
        session = self._session_factory()
        try:
            with LogContext.bind(check_id=str(check_id)):
                abandoned = self._service_factory(session).abandon_if_stale(
                    check_id, cutoff
                )
                session.commit()
                if not abandoned:
                    logger.debug("sweep_check_skipped")
                return abandoned
        except Exception:
            session.rollback()
            logger.exception("sweep_check_failed", extra={"failed_check_id": str(check_id)})
            return False
        finally:
            session.close()
