"""
Identity types (``materials_kernel.domain.identity``).

Responsibility
--------------
The narrow identity contract consumed by the kernel.  Authentication
happens elsewhere; the kernel only receives ``{user_id, display_name,
role}`` for the current actor, records it on every mutation, and checks
the role token against the transition being attempted.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class Role(str, Enum):
    """Role tokens issued by the identity provider."""

    WAREHOUSE_STAFF = "WarehouseStaff"
    HEAD_OF_OPERATIONS = "HeadOfOperations"
    MAIN_DIRECTOR = "MainDirector"
    PRODUCTION_MANAGER = "ProductionManager"
    FINISHED_GOODS_STORE_MANAGER = "FinishedGoodsStoreManager"
    PACKING_AREA_MANAGER = "PackingAreaManager"
    DISTRIBUTOR_REPRESENTATIVE = "DistributorRepresentative"
    DIRECT_REPRESENTATIVE = "DirectRepresentative"
    DIRECT_SHOP = "DirectShop"


@dataclass(frozen=True)
class Actor:
    """The identity attached to every mutation.

    Contract: frozen.  ``role`` is coerced to ``Role`` so unknown tokens
    fail at the boundary instead of deep inside a transition check.
    """

    user_id: str
    display_name: str
    role: Role

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Actor user_id must be non-empty")
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))


@runtime_checkable
class IdentityContext(Protocol):
    """Supplies the actor performing the current action."""

    def current_actor(self) -> Actor:
        ...


class StaticIdentityContext:
    """IdentityContext that always returns the same actor (scripts, tests)."""

    def __init__(self, actor: Actor):
        self._actor = actor

    def current_actor(self) -> Actor:
        return self._actor
