"""
materials_services.locking -- per-key in-process mutual exclusion.

Responsibility:
    Serializes actions that touch the same material, request, dispatch,
    inventory entry or location inside one process.  Each key has its own
    lock; an action takes all of its keys in sorted order, so two actions
    with overlapping key sets cannot deadlock, and actions on disjoint keys
    never wait on each other.

Architecture position:
    Services -- used only by the workflow orchestrator.  Cross-process
    exclusion is the database's job (version columns, FOR UPDATE).

Key format:
    ``material:<uuid>``, ``request:<uuid>``, ``dispatch:<uuid>``,
    ``entry:<uuid>``, ``location:<code>``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from uuid import UUID

from materials_kernel.logging_config import get_logger

logger = get_logger("services.locking")


def material_key(material_id: UUID | str) -> str:
    return f"material:{material_id}"


def request_key(request_id: UUID | str) -> str:
    return f"request:{request_id}"


def dispatch_key(dispatch_id: UUID | str) -> str:
    return f"dispatch:{dispatch_id}"


def entry_key(entry_id: UUID | str) -> str:
    return f"entry:{entry_id}"


def location_key(code: str) -> str:
    return f"location:{code}"


class KeyedLockRegistry:
    """One lock per key, created on demand and dropped when unused.

    Thread-safe.  Locks are not re-entrant: a thread must not enter
    ``hold`` again for a key it already holds.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, number of threads holding or waiting]
        self._entries: dict[str, list] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[tuple[str, ...]]:
        """Acquire every key in sorted order; release in reverse on exit."""
        ordered = tuple(sorted(set(keys)))
        held: list[tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                held.append((key, lock))
            logger.debug("keyed_locks_acquired", extra={"lock_keys": list(ordered)})
            yield ordered
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)

    def active_keys(self) -> frozenset[str]:
        """Keys currently held or waited on (diagnostics and tests)."""
        with self._guard:
            return frozenset(self._entries)
