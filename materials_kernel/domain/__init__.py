"""
Pure domain layer.

This module contains value objects, DTOs and the request workflow graphs
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from materials_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from materials_kernel.domain.dtos import (
    DispatchLineSpec,
    DispatchLineView,
    DispatchView,
    LocationEntryView,
    MaterialView,
    RequestItemSpec,
    RequestItemView,
    RequestView,
    StorageLocationView,
    WorkflowStep,
)
from materials_kernel.domain.identity import (
    Actor,
    IdentityContext,
    Role,
    StaticIdentityContext,
)
from materials_kernel.domain.values import (
    Availability,
    LineShortage,
    MovementDirection,
    MovementFilter,
    MovementMeta,
    MovementResult,
    NegativeBalance,
    ShortageReport,
    SplitAllocation,
)
from materials_kernel.domain.workflow import (
    Action,
    DistributorStatus,
    ProductionStatus,
    RequestFamily,
    StandardStatus,
    Transition,
    Workflow,
    can_transition,
    resolve_transition,
    validate_path,
)

__all__ = [
    "Action",
    "Actor",
    "Availability",
    "Clock",
    "DeterministicClock",
    "DispatchLineSpec",
    "DispatchLineView",
    "DispatchView",
    "DistributorStatus",
    "IdentityContext",
    "LineShortage",
    "LocationEntryView",
    "MaterialView",
    "MovementDirection",
    "MovementFilter",
    "MovementMeta",
    "MovementResult",
    "NegativeBalance",
    "ProductionStatus",
    "RequestFamily",
    "RequestItemSpec",
    "RequestItemView",
    "RequestView",
    "Role",
    "ShortageReport",
    "SplitAllocation",
    "StandardStatus",
    "StaticIdentityContext",
    "StorageLocationView",
    "SystemClock",
    "Transition",
    "Workflow",
    "WorkflowStep",
    "can_transition",
    "resolve_transition",
    "validate_path",
]
