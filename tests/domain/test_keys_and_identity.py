"""
Movement idempotency keys and the identity contract.

Pure tests, no database.
"""

from uuid import uuid4

import pytest

from materials_kernel.domain.identity import (
    Actor,
    IdentityContext,
    Role,
    StaticIdentityContext,
)
from materials_kernel.utils.idempotency import (
    dispatch_key,
    movement_key,
    parse_movement_key,
    receipt_key,
)


class TestMovementKeys:

    def test_dispatch_and_receipt_keys_differ_by_stage_and_direction(self):
        dispatch_id = uuid4()
        assert dispatch_key(dispatch_id, 2) == f"dispatch:{dispatch_id}:2:out"
        assert receipt_key(dispatch_id, 2) == f"receipt:{dispatch_id}:2:in"

    def test_parse_inverts_build(self):
        dispatch_id = uuid4()
        key = movement_key("dispatch", dispatch_id, 3, "out")
        assert parse_movement_key(key) == ("dispatch", str(dispatch_id), 3, "out")

    @pytest.mark.parametrize("bad", [
        "dispatch:abc:1",
        "dispatch:abc:one:out",
        "dispatch:abc:1:out:extra",
        "",
    ])
    def test_malformed_keys_rejected(self, bad):
        with pytest.raises(ValueError):
            parse_movement_key(bad)


class TestIdentity:

    def test_role_token_coerced(self):
        actor = Actor(user_id="pm-1", display_name="Line Manager", role="ProductionManager")
        assert actor.role is Role.PRODUCTION_MANAGER

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            Actor(user_id="x-1", display_name="X", role="Janitor")

    def test_empty_user_id_rejected(self):
        with pytest.raises(ValueError):
            Actor(user_id="", display_name="Nobody", role=Role.DIRECT_SHOP)

    def test_static_context_returns_fixed_actor(self):
        actor = Actor(user_id="ws-1", display_name="Store", role=Role.WAREHOUSE_STAFF)
        context = StaticIdentityContext(actor)

        assert isinstance(context, IdentityContext)
        assert context.current_actor() is actor
