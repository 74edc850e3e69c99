"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.level_selector import LevelSelector
from approval_kernel.selectors.request_selector import RequestSelector

__all__ = [
    "LevelSelector",
    "RequestSelector",
]
