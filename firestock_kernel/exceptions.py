"""
Typed Exception Hierarchy for the Firestock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A shift check is a negotiation between several firefighters and a
background sweeper.  Most failures are not bugs, they are outcomes the UI
has to offer a choice for: "resume the existing check", "take over the
compartment", "start a fresh check".  Callers therefore need to branch on
the *kind* of failure, never on message wording.

Every exception:
  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (check_id, status, ...)

Example - RIGHT way:
    try:
        service.resume(check_id, user_id)
    except ResumeWindowExpiredError as e:
        offer_fresh_check(e.apparatus_id)
    except ForbiddenError as e:
        show_owner(e.owner_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FirestockKernelError (base)
    |
    +-- InventoryCheckError
    |   +-- ConflictError
    |   +-- NotFoundError
    |   |   +-- CheckNotFoundError
    |   |   +-- CheckNotActiveError
    |   |   +-- ApparatusNotFoundError
    |   |   +-- NoActiveCheckError
    |   +-- DuplicateVerificationError
    |   +-- VerificationLimitExceededError
    |   +-- InvalidCheckTargetError
    |   +-- QuantityDiscrepancyRequiresNotesError
    |   +-- ResumeError
    |       +-- ResumeWindowExpiredError
    |       +-- NotResumableError
    |       +-- ForbiddenError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|------------------------------------
Check        | ACTIVE_CHECK_EXISTS         | Second IN_PROGRESS check for apparatus
             | CHECK_NOT_FOUND             | Check ID doesn't exist
             | CHECK_NOT_ACTIVE            | Check exists but is not IN_PROGRESS
             | APPARATUS_NOT_FOUND         | Catalog has no such apparatus
             | NO_ACTIVE_CHECK             | Compartment lock without an active check
-------------|-----------------------------|------------------------------------
Verification | DUPLICATE_VERIFICATION      | Target already verified this session
             | VERIFICATION_LIMIT_EXCEEDED | verified_count would exceed total
             | INVALID_CHECK_TARGET        | Not exactly one of equipment/consumable
             | QUANTITY_NOTES_REQUIRED     | Large quantity discrepancy, no notes
-------------|-----------------------------|------------------------------------
Resume       | RESUME_WINDOW_EXPIRED       | Abandoned longer than the window
             | NOT_RESUMABLE               | Wrong abandon reason / wrong status
             | FORBIDDEN                   | Resume by a user other than the owner
-------------|-----------------------------|------------------------------------
Persistence  | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row

`Busy` (compartment held by someone else) is deliberately NOT an exception;
see ``firestock_kernel.domain.dtos.Busy``.
"""

from datetime import datetime


class FirestockKernelError(Exception):
    """
    Base exception for all firestock kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "FIRESTOCK_KERNEL_ERROR"


# Inventory check exceptions


class InventoryCheckError(FirestockKernelError):
    """Base exception for shift inventory check errors."""

    code: str = "INVENTORY_CHECK_ERROR"


class ConflictError(InventoryCheckError):
    """An IN_PROGRESS check already exists for the apparatus."""

    code: str = "ACTIVE_CHECK_EXISTS"

    def __init__(self, apparatus_id: str, active_check_id: str | None = None):
        self.apparatus_id = apparatus_id
        self.active_check_id = active_check_id
        super().__init__(
            f"An active inventory check already exists for apparatus {apparatus_id}"
            + (f" ({active_check_id})" if active_check_id else "")
        )


class NotFoundError(InventoryCheckError):
    """Base for operations on something that does not exist in the required state."""

    code: str = "NOT_FOUND"


class CheckNotFoundError(NotFoundError):
    """Inventory check with given ID was not found."""

    code: str = "CHECK_NOT_FOUND"

    def __init__(self, check_id: str):
        self.check_id = check_id
        super().__init__(f"Inventory check not found: {check_id}")


class CheckNotActiveError(NotFoundError):
    """
    Inventory check exists but is no longer IN_PROGRESS.

    Raised both when the status is already terminal at read time and when a
    conditional update loses a race; ``status`` is the status observed after
    the loss (e.g. COMPLETED when a user beat the sweeper).
    """

    code: str = "CHECK_NOT_ACTIVE"

    def __init__(self, check_id: str, status: str):
        self.check_id = check_id
        self.status = status
        super().__init__(f"Inventory check {check_id} is not in progress (status={status})")


class ApparatusNotFoundError(NotFoundError):
    """The catalog has no apparatus with the given ID."""

    code: str = "APPARATUS_NOT_FOUND"

    def __init__(self, apparatus_id: str):
        self.apparatus_id = apparatus_id
        super().__init__(f"Apparatus not found: {apparatus_id}")


class NoActiveCheckError(NotFoundError):
    """Compartment locks only exist inside an IN_PROGRESS check of the apparatus."""

    code: str = "NO_ACTIVE_CHECK"

    def __init__(self, apparatus_id: str):
        self.apparatus_id = apparatus_id
        super().__init__(f"No inventory check in progress for apparatus {apparatus_id}")


class DuplicateVerificationError(InventoryCheckError):
    """The target was already verified in this check."""

    code: str = "DUPLICATE_VERIFICATION"

    def __init__(self, check_id: str, target: str):
        self.check_id = check_id
        self.target = target
        super().__init__(f"{target} has already been verified in check {check_id}")


class VerificationLimitExceededError(InventoryCheckError):
    """Recording another item would make verified_count exceed total_items."""

    code: str = "VERIFICATION_LIMIT_EXCEEDED"

    def __init__(self, check_id: str, total_items: int):
        self.check_id = check_id
        self.total_items = total_items
        super().__init__(
            f"Check {check_id} already has all {total_items} items verified"
        )


class InvalidCheckTargetError(InventoryCheckError):
    """
    A check target must reference exactly one equipment item or consumable
    stock, stowed in the named compartment of the checked apparatus.
    """

    code: str = "INVALID_CHECK_TARGET"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid check target: {reason}")


class QuantityDiscrepancyRequiresNotesError(InventoryCheckError):
    """Consumable count differs from the expected quantity by more than the threshold."""

    code: str = "QUANTITY_NOTES_REQUIRED"

    def __init__(self, quantity_found: str, quantity_expected: str, threshold: str):
        self.quantity_found = quantity_found
        self.quantity_expected = quantity_expected
        self.threshold = threshold
        super().__init__(
            f"A quantity discrepancy above {threshold} requires condition notes "
            f"(found {quantity_found}, expected {quantity_expected})"
        )


class ResumeError(InventoryCheckError):
    """Base exception for failed resume attempts."""

    code: str = "RESUME_ERROR"


class ResumeWindowExpiredError(ResumeError):
    """The abandoned check is outside the resume window; start a fresh check."""

    code: str = "RESUME_WINDOW_EXPIRED"

    def __init__(
        self,
        check_id: str,
        apparatus_id: str,
        abandoned_at: datetime,
        window_minutes: int,
    ):
        self.check_id = check_id
        self.apparatus_id = apparatus_id
        self.abandoned_at = abandoned_at
        self.window_minutes = window_minutes
        super().__init__(
            f"Check {check_id} was abandoned at {abandoned_at.isoformat()} "
            f"and can no longer be resumed ({window_minutes} minute window)"
        )


class NotResumableError(ResumeError):
    """The check is not in a resumable state (wrong status or abandon reason)."""

    code: str = "NOT_RESUMABLE"

    def __init__(self, check_id: str, status: str, abandon_reason: str | None):
        self.check_id = check_id
        self.status = status
        self.abandon_reason = abandon_reason
        super().__init__(
            f"Check {check_id} cannot be resumed "
            f"(status={status}, abandon_reason={abandon_reason})"
        )


class ForbiddenError(ResumeError):
    """Only the user who started the check may resume it."""

    code: str = "FORBIDDEN"

    def __init__(self, check_id: str, user_id: str, owner_id: str):
        self.check_id = check_id
        self.user_id = user_id
        self.owner_id = owner_id
        super().__init__(
            f"User {user_id} may not resume check {check_id} started by {owner_id}"
        )



# Persistence exceptions


class ImmutabilityViolationError(FirestockKernelError):
    """
    Attempted to modify or delete an append-only record.

    Recorded verifications are never updated or deleted; inventory checks
    are never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
