"""
materials_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the kernel: dispatch and split allocation,
    the per-action workflow orchestrator, keyed locking, retry, and the
    event/notification channel.

Architecture position:
    Services -- the only layer that commits transactions.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        materials_services/ -> materials_kernel/  (allowed)
        materials_services/ -> materials_config/  (allowed)
        materials_kernel/   -> materials_services/ (FORBIDDEN)
"""

from materials_services.allocator import DispatchAllocator
from materials_services.events import (
    DomainEvent,
    EntryMoved,
    EntrySplit,
    EventBus,
    LowStockDetected,
    MaterialsDispatched,
    ProcurementRequired,
    ReceiptAcknowledged,
    RequestApproved,
    RequestForwarded,
    RequestRejected,
    RequestSubmitted,
    StockShortageReported,
)
from materials_services.locking import KeyedLockRegistry
from materials_services.notifications import (
    LoggingNotificationSink,
    NotificationRouter,
    NotificationSink,
    ProcurementForwarder,
    ProcurementHandoff,
)
from materials_services.retry import run_with_retry
from materials_services.workflow_orchestrator import DispatchOutcome, WorkflowOrchestrator

__all__ = [
    "DispatchAllocator",
    "DispatchOutcome",
    "DomainEvent",
    "EntryMoved",
    "EntrySplit",
    "EventBus",
    "KeyedLockRegistry",
    "LoggingNotificationSink",
    "LowStockDetected",
    "MaterialsDispatched",
    "NotificationRouter",
    "NotificationSink",
    "ProcurementForwarder",
    "ProcurementHandoff",
    "ProcurementRequired",
    "ReceiptAcknowledged",
    "RequestApproved",
    "RequestForwarded",
    "RequestRejected",
    "RequestSubmitted",
    "StockShortageReported",
    "WorkflowOrchestrator",
    "run_with_retry",
]
