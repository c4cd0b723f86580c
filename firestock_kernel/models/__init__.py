"""ORM models for the firestock kernel."""

from firestock_kernel.models.inventory_check import InventoryCheck
from firestock_kernel.models.inventory_check_item import InventoryCheckItem
from firestock_kernel.models.issue import Issue
from firestock_kernel.models.sequence_counter import SequenceCounter

__all__ = [
    "InventoryCheck",
    "InventoryCheckItem",
    "Issue",
    "SequenceCounter",
]
