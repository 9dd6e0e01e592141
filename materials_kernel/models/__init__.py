"""Persistent models for the materials kernel."""

from materials_kernel.models.dispatch import Dispatch, DispatchLine, DispatchStatus
from materials_kernel.models.location import (
    LocationEntry,
    LocationMovement,
    LocationMovementKind,
    StorageLocation,
)
from materials_kernel.models.material import Material, MaterialStatus, StockBalance
from materials_kernel.models.movement import StockMovement
from materials_kernel.models.request import MaterialRequest, RequestItem, WorkflowRecord

__all__ = [
    "Dispatch",
    "DispatchLine",
    "DispatchStatus",
    "LocationEntry",
    "LocationMovement",
    "LocationMovementKind",
    "Material",
    "MaterialRequest",
    "MaterialStatus",
    "RequestItem",
    "StockBalance",
    "StockMovement",
    "StorageLocation",
    "WorkflowRecord",
]
