"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.  Also owns the single translation point from
    SQLAlchemy flush failures to kernel exceptions.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The caller (the workflow
    orchestrator or a test harness) owns commit/rollback, which is what
    makes "movement + balance + dispatch" one atomic unit.

Failure modes (after translation):
    - OptimisticLockError: a version column did not match (StaleDataError)
      or a concurrent writer took the same unique slot (IntegrityError).
    - DuplicateMovementError: the idempotency key was taken concurrently.
    - StorageUnavailableError: the backend failed (OperationalError).
"""

from abc import ABC
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from materials_kernel.domain.clock import Clock, SystemClock
from materials_kernel.exceptions import (
    DuplicateMovementError,
    OptimisticLockError,
    StorageUnavailableError,
)
from materials_kernel.logging_config import get_logger

logger = get_logger("services.base")


@contextmanager
def translate_storage_errors(
    operation: str,
    entity_type: str = "entity",
    entity_id: object = None,
    idempotency_key: str | None = None,
) -> Iterator[None]:
    """Map SQLAlchemy failures raised inside the block to kernel errors."""
    try:
        yield
    except StaleDataError:
        logger.warning(
            "optimistic_lock_conflict",
            extra={"operation": operation, "entity_type": entity_type,
                   "entity_id": str(entity_id)},
        )
        raise OptimisticLockError(entity_type, str(entity_id)) from None
    except IntegrityError as exc:
        if idempotency_key is not None and "idempotency" in str(exc.orig).lower():
            raise DuplicateMovementError(idempotency_key) from exc
        logger.warning(
            "concurrent_insert_conflict",
            extra={"operation": operation, "entity_type": entity_type,
                   "entity_id": str(entity_id), "detail": str(exc.orig)},
        )
        raise OptimisticLockError(entity_type, str(entity_id)) from exc
    except (OperationalError, DBAPIError) as exc:
        raise StorageUnavailableError(operation, str(exc.orig)) from exc


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/report queries -- those belong in
          ``materials_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _flush(
        self,
        operation: str,
        entity_type: str = "entity",
        entity_id: object = None,
        idempotency_key: str | None = None,
    ) -> None:
        with translate_storage_errors(
            operation, entity_type, entity_id, idempotency_key
        ):
            self.session.flush()
