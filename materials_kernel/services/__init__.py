"""
Kernel services (imperative shell).

Services flush within the caller's transaction and never commit.
"""

from materials_kernel.services.base import BaseService, translate_storage_errors
from materials_kernel.services.request_state_machine import RequestStateMachine
from materials_kernel.services.stock_ledger import StockLedgerService

__all__ = [
    "BaseService",
    "RequestStateMachine",
    "StockLedgerService",
    "translate_storage_errors",
]
