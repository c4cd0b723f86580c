"""Kernel services: flush-only persistence services and in-memory coordinators."""

from firestock_kernel.services.after_commit import run_after_commit
from firestock_kernel.services.base import BaseService
from firestock_kernel.services.compartment_lock_manager import CompartmentLockManager
from firestock_kernel.services.event_broadcaster import EventBroadcaster, Subscription
from firestock_kernel.services.inventory_check_service import InventoryCheckService
from firestock_kernel.services.issue_service import IssueRequest, IssueService, IssueSink
from firestock_kernel.services.sequence_service import SequenceService
from firestock_kernel.services.verification_recorder import VerificationRecorder

__all__ = [
    "BaseService",
    "CompartmentLockManager",
    "EventBroadcaster",
    "InventoryCheckService",
    "IssueRequest",
    "IssueService",
    "IssueSink",
    "SequenceService",
    "Subscription",
    "VerificationRecorder",
    "run_after_commit",
]
