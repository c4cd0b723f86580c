"""
CheckPolicy -- timing and validation rules for shift inventory checks.

Responsibility:
    Holds the tunables (maximum check duration, resume window, sweep
    interval, quantity discrepancy threshold) and the pure predicates built
    on them.  Configuration code builds a CheckPolicy; the kernel never
    reads configuration files itself.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

AUTO_ABANDON_HOURS = 4
RESUME_WINDOW_MINUTES = 30
SWEEP_INTERVAL_SECONDS = 300
QUANTITY_DISCREPANCY_THRESHOLD = Decimal("0.20")


@dataclass(frozen=True)
class CheckPolicy:
    """
    Guarantees:
        - All durations are positive.
        - quantity_discrepancy_threshold is a ratio in [0, 1].
    """

    max_check_duration: timedelta = timedelta(hours=AUTO_ABANDON_HOURS)
    resume_window: timedelta = timedelta(minutes=RESUME_WINDOW_MINUTES)
    sweep_interval: timedelta = timedelta(seconds=SWEEP_INTERVAL_SECONDS)
    quantity_discrepancy_threshold: Decimal = QUANTITY_DISCREPANCY_THRESHOLD

    def __post_init__(self) -> None:
        for name in ("max_check_duration", "resume_window", "sweep_interval"):
            if getattr(self, name) <= timedelta(0):
                raise ValueError(f"{name} must be positive")
        if not (Decimal("0") <= self.quantity_discrepancy_threshold <= Decimal("1")):
            raise ValueError("quantity_discrepancy_threshold must be between 0 and 1")

    @property
    def resume_window_minutes(self) -> int:
        return int(self.resume_window.total_seconds() // 60)

    def stale_cutoff(self, now: datetime) -> datetime:
        """Checks with no activity since before this instant are stale."""
        return now - self.max_check_duration

    def is_stale(self, last_activity_at: datetime, now: datetime) -> bool:
        return last_activity_at < self.stale_cutoff(now)

    def resume_deadline(self, abandoned_at: datetime) -> datetime:
        """Last instant (inclusive) at which an abandoned check may be resumed."""
        return abandoned_at + self.resume_window

    def within_resume_window(self, abandoned_at: datetime, now: datetime) -> bool:
        return now <= self.resume_deadline(abandoned_at)

    def requires_notes_for_quantity(
        self,
        quantity_found: Decimal | None,
        quantity_expected: Decimal | None,
    ) -> bool:
        """
        True if the found quantity is off by more than the threshold.

        Only applies when both quantities are known and expected is positive.
        """
        if quantity_found is None or quantity_expected is None:
            return False
        if quantity_expected <= 0:
            return False
        ratio = abs(quantity_expected - quantity_found) / quantity_expected
        return ratio > self.quantity_discrepancy_threshold
