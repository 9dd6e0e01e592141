"""Read-only query selectors."""

from materials_kernel.selectors.base import BaseSelector
from materials_kernel.selectors.ledger_selector import (
    BalanceMismatch,
    LedgerSelector,
    MovementHistory,
    MovementRecord,
)
from materials_kernel.selectors.location_selector import LocationSelector
from materials_kernel.selectors.request_selector import RequestSelector

__all__ = [
    "BalanceMismatch",
    "BaseSelector",
    "LedgerSelector",
    "LocationSelector",
    "MovementHistory",
    "MovementRecord",
    "RequestSelector",
]
