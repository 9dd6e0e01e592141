"""Kernel utilities."""

from materials_kernel.utils.idempotency import (
    dispatch_key,
    movement_key,
    parse_movement_key,
    receipt_key,
)

__all__ = [
    "dispatch_key",
    "movement_key",
    "parse_movement_key",
    "receipt_key",
]
