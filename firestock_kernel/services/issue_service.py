"""
IssueService -- files issues for problem verifications.

Responsibility:
    Default ``IssueSink``: persists an Issue row in the caller's transaction
    and allocates its ``ISS-YYYY-NNNNN`` reference number from the yearly
    sequence counter.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from firestock_kernel.domain.clock import Clock, SystemClock
from firestock_kernel.domain.values import (
    ISSUE_CLASSIFICATION,
    CheckTarget,
    IssueStatus,
    VerificationStatus,
)
from firestock_kernel.logging_config import get_logger
from firestock_kernel.models.issue import Issue
from firestock_kernel.services.base import BaseService
from firestock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.issue")


@dataclass(frozen=True)
class IssueRequest:
    """Everything needed to file an issue for one problem verification."""

    target: CheckTarget
    status: VerificationStatus
    apparatus_id: UUID
    station_id: UUID
    check_id: UUID
    reported_by_id: UUID
    item_name: str | None = None
    notes: str | None = None


class IssueSink(Protocol):
    """Receives problem verifications; returns the new issue's ID."""

    def create_issue(self, request: IssueRequest) -> UUID: ...


def format_reference_number(year: int, value: int) -> str:
    return f"ISS-{year}-{value:05d}"


class IssueService(BaseService[Issue]):
    """
    SQL-backed IssueSink.

    Guarantees:
        - Only problem statuses (MISSING, PRESENT_DAMAGED, EXPIRED,
          LOW_QUANTITY) produce issues; severity and category come from
          ISSUE_CLASSIFICATION.
        - The issue is flushed before returning so a check item can
          reference it in the same transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def next_reference_number(self, now: datetime) -> str:
        value = self._sequences.next_value(SequenceService.issue_sequence_name(now.year))
        return format_reference_number(now.year, value)

    def create_issue(self, request: IssueRequest) -> UUID:
        classification = ISSUE_CLASSIFICATION.get(request.status)
        if classification is None:
            raise ValueError(f"{request.status.value} does not raise an issue")

        now = self._clock.now()
        subject = request.item_name or str(request.target)
        notes = (request.notes or "").strip()
        issue = Issue(
            reference_number=self.next_reference_number(now),
            equipment_item_id=request.target.equipment_item_id,
            consumable_stock_id=request.target.consumable_stock_id,
            apparatus_id=request.apparatus_id,
            station_id=request.station_id,
            check_id=request.check_id,
            title=f"{classification.title}: {subject}",
            description=notes or f"Reported during shift inventory check: {subject}",
            severity=classification.severity.value,
            category=classification.category.value,
            status=IssueStatus.OPEN.value,
            reported_by_id=request.reported_by_id,
            reported_at=now,
            created_by_id=request.reported_by_id,
        )
        self.session.add(issue)
        self.session.flush()

        logger.info(
            "issue_created",
            extra={
                "issue_id": str(issue.id),
                "reference_number": issue.reference_number,
                "severity": issue.severity,
                "category": issue.category,
            },
        )
        return issue.id
