"""Read-only query selectors."""

from firestock_kernel.selectors.base import BaseSelector
from firestock_kernel.selectors.check_selector import CheckSelector

__all__ = ["BaseSelector", "CheckSelector"]
