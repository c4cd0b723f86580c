"""
Session events -- ephemeral notifications fanned out per apparatus.

Events are best-effort: they are never persisted and never replayed.  A
subscriber that connects late learns the current state from the read
accessors, not from past events.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from firestock_kernel.domain.values import VerificationStatus


@dataclass(frozen=True)
class CheckEvent:
    """Base for every session event; routing key is ``apparatus_id``."""

    apparatus_id: UUID

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class ItemVerifiedEvent(CheckEvent):
    check_id: UUID
    compartment_id: UUID
    item_id: UUID
    status: VerificationStatus
    verified_by_name: str | None = None


@dataclass(frozen=True)
class CompartmentLockChangedEvent(CheckEvent):
    compartment_id: UUID
    locked_by_name: str | None
    is_locked: bool


@dataclass(frozen=True)
class CheckTakeOverEvent(CheckEvent):
    compartment_id: UUID
    previous_checker_name: str
    new_checker_name: str


@dataclass(frozen=True)
class CheckCompletedEvent(CheckEvent):
    check_id: UUID


@dataclass(frozen=True)
class CheckAbandonedEvent(CheckEvent):
    check_id: UUID
    reason: str


@dataclass(frozen=True)
class CheckResumedEvent(CheckEvent):
    check_id: UUID
    resumed_by_id: UUID
