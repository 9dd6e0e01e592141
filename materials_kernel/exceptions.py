"""
Typed Exception Hierarchy for the Materials Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from MaterialsKernelError:

    MaterialsKernelError (base)
    |
    +-- QuantityError
    |   +-- InvalidQuantityError
    |   +-- QuantityMismatchError
    |       +-- OverDispatchError
    |
    +-- WorkflowError
    |   +-- IllegalTransitionError
    |   +-- InvalidRequestError
    |
    +-- NotFoundError
    |   +-- MaterialNotFoundError
    |   +-- RequestNotFoundError
    |   +-- DispatchNotFoundError
    |   +-- LocationEntryNotFoundError
    |   +-- LocationNotFoundError
    |
    +-- MaterialError
    |   +-- InactiveMaterialError
    |   +-- MaterialCodeExistsError
    |
    +-- LedgerError
    |   +-- DuplicateMovementError
    |
    +-- DispatchError
    |   +-- DispatchAlreadyReceivedError
    |
    +-- LocationError
    |   +-- LocationCapacityExceededError
    |   +-- LocationCodeExistsError
    |
    +-- StorageError
    |   +-- StorageUnavailableError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Quantity        | INVALID_QUANTITY            | Quantity <= 0 or negative allocation
                | QUANTITY_MISMATCH           | Split children do not sum to parent
                | OVER_DISPATCH               | Cumulative dispatch exceeds approved
----------------|-----------------------------|-----------------------------------------
Workflow        | ILLEGAL_TRANSITION          | Action not allowed from state / role
                | INVALID_REQUEST             | Malformed request (no items, ...)
----------------|-----------------------------|-----------------------------------------
Not found       | MATERIAL_NOT_FOUND          | Material id unknown
                | REQUEST_NOT_FOUND           | Request id unknown
                | DISPATCH_NOT_FOUND          | Dispatch id unknown
                | LOCATION_ENTRY_NOT_FOUND    | Inventory entry id unknown
                | LOCATION_NOT_FOUND          | Storage location code unknown
----------------|-----------------------------|-----------------------------------------
Material        | MATERIAL_INACTIVE           | Posting against a deactivated material
                | MATERIAL_CODE_EXISTS        | Duplicate material code
----------------|-----------------------------|-----------------------------------------
Ledger          | DUPLICATE_MOVEMENT          | Idempotency key already used
----------------|-----------------------------|-----------------------------------------
Dispatch        | DISPATCH_ALREADY_RECEIVED   | Second receipt acknowledgment
----------------|-----------------------------|-----------------------------------------
Location        | LOCATION_CAPACITY_EXCEEDED  | Target location is full
                | LOCATION_CODE_EXISTS        | Duplicate location code
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_UNAVAILABLE         | Backing store unreachable (retryable)
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification (retryable)
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATCH SPECIFIC EXCEPTIONS:

    try:
        orchestrator.approve(actor, request_id)
    except IllegalTransitionError as e:
        notify_user(f"Request is {e.from_state}, cannot {e.action}")

2. USE STRUCTURED DATA (not message parsing):

    except QuantityMismatchError as e:
        return {"error": e.code, "expected": e.expected, "actual": e.actual}

3. RETRY ONLY WHAT IS RETRYABLE:

    StorageUnavailableError and OptimisticLockError carry
    ``retryable = True``. The orchestrator retries them a bounded number of
    times; every other error is surfaced to the caller unchanged.

4. SHORTAGE IS NOT AN ERROR:

    Insufficient stock is reported as a ShortageReport value and the
    ``stock_shortage`` request state, never as an exception.

===============================================================================
"""

from decimal import Decimal


class MaterialsKernelError(Exception):
    """
    Base exception for all materials kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "MATERIALS_KERNEL_ERROR"
    retryable: bool = False


# Quantity-related exceptions


class QuantityError(MaterialsKernelError):
    """Base exception for quantity errors."""

    code: str = "QUANTITY_ERROR"


class InvalidQuantityError(QuantityError):
    """Quantity is zero, negative, or not a number."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, field: str = "quantity"):
        self.quantity = quantity
        self.field = field
        super().__init__(f"Invalid {field}: {quantity!r} (must be a positive number)")


class QuantityMismatchError(QuantityError):
    """Quantities that must agree do not agree within tolerance."""

    code: str = "QUANTITY_MISMATCH"

    def __init__(
        self,
        expected: Decimal,
        actual: Decimal,
        tolerance: Decimal,
        message: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.tolerance = tolerance
        super().__init__(
            message
            or f"Quantity mismatch: expected {expected}, got {actual} "
            f"(tolerance {tolerance})"
        )


class OverDispatchError(QuantityMismatchError):
    """Cumulative dispatched quantity would exceed the approved quantity."""

    code: str = "OVER_DISPATCH"

    def __init__(
        self,
        request_id: str,
        material_id: str,
        approved: Decimal,
        already_dispatched: Decimal,
        requested: Decimal,
    ):
        self.request_id = request_id
        self.material_id = material_id
        self.approved = approved
        self.already_dispatched = already_dispatched
        self.requested = requested
        super().__init__(
            expected=approved,
            actual=already_dispatched + requested,
            tolerance=Decimal("0"),
            message=(
                f"Cannot dispatch {requested} of material {material_id} on "
                f"request {request_id}: {already_dispatched} of {approved} "
                "already dispatched"
            ),
        )


# Workflow-related exceptions


class WorkflowError(MaterialsKernelError):
    """Base exception for request workflow errors."""

    code: str = "WORKFLOW_ERROR"


class IllegalTransitionError(WorkflowError):
    """The action is not an edge out of the current state for this role."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        family: str,
        from_state: str | None,
        action: str,
        role: str | None = None,
        request_id: str | None = None,
        reason: str | None = None,
    ):
        self.family = family
        self.from_state = from_state
        self.action = action
        self.role = role
        self.request_id = request_id
        self.reason = reason or "no such transition"
        super().__init__(
            f"Illegal transition on {family} request {request_id or '<new>'}: "
            f"'{action}' from '{from_state}' by role {role}: {self.reason}"
        )


class InvalidRequestError(WorkflowError):
    """The request payload is malformed."""

    code: str = "INVALID_REQUEST"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid request: {reason}")


# Not-found exceptions


class NotFoundError(MaterialsKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: object):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class MaterialNotFoundError(NotFoundError):
    code: str = "MATERIAL_NOT_FOUND"
    entity_type: str = "Material"


class RequestNotFoundError(NotFoundError):
    code: str = "REQUEST_NOT_FOUND"
    entity_type: str = "Request"


class DispatchNotFoundError(NotFoundError):
    code: str = "DISPATCH_NOT_FOUND"
    entity_type: str = "Dispatch"


class LocationEntryNotFoundError(NotFoundError):
    code: str = "LOCATION_ENTRY_NOT_FOUND"
    entity_type: str = "LocationEntry"


class LocationNotFoundError(NotFoundError):
    code: str = "LOCATION_NOT_FOUND"
    entity_type: str = "StorageLocation"


# Material-related exceptions


class MaterialError(MaterialsKernelError):
    """Base exception for material registry errors."""

    code: str = "MATERIAL_ERROR"


class InactiveMaterialError(MaterialError):
    """Material has been deactivated and cannot take new movements."""

    code: str = "MATERIAL_INACTIVE"

    def __init__(self, material_id: str, material_code: str):
        self.material_id = material_id
        self.material_code = material_code
        super().__init__(f"Material {material_code} ({material_id}) is inactive")


class MaterialCodeExistsError(MaterialError):
    code: str = "MATERIAL_CODE_EXISTS"

    def __init__(self, material_code: str):
        self.material_code = material_code
        super().__init__(f"Material code already registered: {material_code}")


# Ledger-related exceptions


class LedgerError(MaterialsKernelError):
    """Base exception for stock ledger errors."""

    code: str = "LEDGER_ERROR"


class DuplicateMovementError(LedgerError):
    """A movement with this idempotency key already exists."""

    code: str = "DUPLICATE_MOVEMENT"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Movement already posted: {idempotency_key}")


# Dispatch-related exceptions


class DispatchError(MaterialsKernelError):
    """Base exception for dispatch errors."""

    code: str = "DISPATCH_ERROR"


class DispatchAlreadyReceivedError(DispatchError):
    """The dispatch has already been acknowledged as received."""

    code: str = "DISPATCH_ALREADY_RECEIVED"

    def __init__(self, dispatch_id: str, received_by: str | None = None):
        self.dispatch_id = dispatch_id
        self.received_by = received_by
        super().__init__(
            f"Dispatch {dispatch_id} already received"
            + (f" by {received_by}" if received_by else "")
        )


# Location-related exceptions


class LocationError(MaterialsKernelError):
    """Base exception for storage location errors."""

    code: str = "LOCATION_ERROR"


class LocationCapacityExceededError(LocationError):
    code: str = "LOCATION_CAPACITY_EXCEEDED"

    def __init__(self, location: str, capacity: int, occupied: int):
        self.location = location
        self.capacity = capacity
        self.occupied = occupied
        super().__init__(
            f"Location {location} is full: {occupied} of {capacity} entries"
        )


class LocationCodeExistsError(LocationError):
    code: str = "LOCATION_CODE_EXISTS"

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"Location already registered: {location}")


# Storage-related exceptions


class StorageError(MaterialsKernelError):
    """Base exception for backing store errors."""

    code: str = "STORAGE_ERROR"


class StorageUnavailableError(StorageError):
    """The backing store could not be reached or failed transiently."""

    code: str = "STORAGE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage unavailable during {operation}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(MaterialsKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(MaterialsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    StockMovement and WorkflowRecord are append-only; a Dispatch is
    immutable once received.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
