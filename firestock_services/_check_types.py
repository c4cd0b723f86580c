"""
firestock_services._check_types -- result types for the shift check orchestrator.

Responsibility:
    Frozen result objects returned by ShiftCheckOrchestrator.  Expected
    refusals (conflict, duplicate, expired resume window, ...) are reported
    through ``CheckOperationStatus`` rather than raised, so UI callers can
    branch on a status instead of catching kernel exceptions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from firestock_kernel.domain.dtos import InventoryCheckInfo
from firestock_kernel.exceptions import (
    ConflictError,
    DuplicateVerificationError,
    FirestockKernelError,
    ForbiddenError,
    NotFoundError,
    NotResumableError,
    ResumeWindowExpiredError,
)


class CheckOperationStatus(str, Enum):
    """Outcome of an orchestrated shift check operation."""

    OK = "ok"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    RESUME_WINDOW_EXPIRED = "resume_window_expired"
    NOT_RESUMABLE = "not_resumable"
    FORBIDDEN = "forbidden"
    INVALID = "invalid"


# Most specific class first.
_STATUS_BY_ERROR: tuple[tuple[type[FirestockKernelError], CheckOperationStatus], ...] = (
    (ConflictError, CheckOperationStatus.CONFLICT),
    (NotFoundError, CheckOperationStatus.NOT_FOUND),
    (DuplicateVerificationError, CheckOperationStatus.DUPLICATE),
    (ResumeWindowExpiredError, CheckOperationStatus.RESUME_WINDOW_EXPIRED),
    (NotResumableError, CheckOperationStatus.NOT_RESUMABLE),
    (ForbiddenError, CheckOperationStatus.FORBIDDEN),
)


def status_for_error(exc: FirestockKernelError) -> CheckOperationStatus:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return CheckOperationStatus.INVALID


@dataclass(frozen=True)
class CheckOperationResult:
    """Result of a ShiftCheckOrchestrator operation."""

    status: CheckOperationStatus
    check: InventoryCheckInfo | None = None
    item_id: UUID | None = None
    issue_id: UUID | None = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == CheckOperationStatus.OK

    @classmethod
    def ok(
        cls,
        check: InventoryCheckInfo | None,
        item_id: UUID | None = None,
        issue_id: UUID | None = None,
    ) -> "CheckOperationResult":
        return cls(
            status=CheckOperationStatus.OK,
            check=check,
            item_id=item_id,
            issue_id=issue_id,
        )

    @classmethod
    def from_error(
        cls,
        exc: FirestockKernelError,
        check: InventoryCheckInfo | None = None,
    ) -> "CheckOperationResult":
        details = {
            k: (str(v) if v is not None else None)
            for k, v in vars(exc).items()
            if not k.startswith("_")
        }
        return cls(
            status=status_for_error(exc),
            check=check,
            error_code=exc.code,
            message=str(exc),
            details=details,
        )
