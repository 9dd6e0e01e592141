"""
Idempotency key generation utilities.

Every movement that a workflow action posts carries a key derived from the
entity that caused it, so re-driving the action (after a transient storage
failure) is detected as a duplicate instead of posting twice.

Format: ``<stage>:<entity_id>:<line_no>:<direction>``
"""

from uuid import UUID


def movement_key(
    stage: str,
    entity_id: UUID | str,
    line_no: int,
    direction: str,
) -> str:
    """
    Build the idempotency key for one line of a dispatch or receipt.

    Example:
        >>> movement_key("dispatch", "5f0c...", 1, "out")
        "dispatch:5f0c...:1:out"
    """
    return f"{stage}:{entity_id}:{line_no}:{direction}"


def dispatch_key(dispatch_id: UUID | str, line_no: int) -> str:
    return movement_key("dispatch", dispatch_id, line_no, "out")


def receipt_key(dispatch_id: UUID | str, line_no: int) -> str:
    return movement_key("receipt", dispatch_id, line_no, "in")


def parse_movement_key(key: str) -> tuple[str, str, int, str]:
    """
    Parse a movement key into (stage, entity_id, line_no, direction).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":")
    if len(parts) != 4 or not parts[2].isdigit():
        raise ValueError(f"Invalid movement key format: {key}")
    return parts[0], parts[1], int(parts[2]), parts[3]
