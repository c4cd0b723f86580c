"""
firestock_services -- transaction-owning orchestration for shift checks.

The kernel services are flush-only; this package owns sessions and
commits.  ``ShiftCheckOrchestrator`` is the entry point for request
handlers and ``AutoAbandonSweeper`` runs the background timeout.
"""

from firestock_services._check_types import (
    CheckOperationResult,
    CheckOperationStatus,
)
from firestock_services.auto_abandon_sweeper import AutoAbandonSweeper
from firestock_services.shift_check_orchestrator import (
    ShiftCheckOrchestrator,
    build_shift_check_orchestrator,
)

__all__ = [
    "AutoAbandonSweeper",
    "CheckOperationResult",
    "CheckOperationStatus",
    "ShiftCheckOrchestrator",
    "build_shift_check_orchestrator",
]
