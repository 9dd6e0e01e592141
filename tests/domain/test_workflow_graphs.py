"""
Tests for the request workflow graphs (materials_kernel/domain/workflow.py).

Covers:
- can_transition(): role/state/action capability per family
- resolve_transition(): terminal states, wrong roles, guard selection
- resolve_submission(): submit roles per family
- validate_path(): walks through each graph
- Workflow construction rejects malformed graphs
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from materials_kernel.domain.identity import Actor, Role
from materials_kernel.domain.values import LineShortage
from materials_kernel.domain.workflow import (
    DISTRIBUTOR_WORKFLOW,
    PRODUCTION_DIRECT_WORKFLOW,
    STANDARD_WORKFLOW,
    Action,
    DistributorStatus,
    ProductionStatus,
    RequestFamily,
    StandardStatus,
    Transition,
    Workflow,
    can_transition,
    resolve_submission,
    resolve_transition,
    validate_path,
)
from materials_kernel.exceptions import IllegalTransitionError


def _short_line():
    return LineShortage(
        line_no=1,
        material_id=uuid4(),
        requested=Decimal("30"),
        current_balance=Decimal("20"),
        shortfall=Decimal("10"),
    )


class TestStandardGraph:

    def test_ho_forwards_pending_request(self):
        assert can_transition(
            Role.HEAD_OF_OPERATIONS, RequestFamily.STANDARD,
            StandardStatus.PENDING_HO.value, Action.FORWARD.value,
        )

    def test_md_cannot_forward(self):
        assert not can_transition(
            Role.MAIN_DIRECTOR, RequestFamily.STANDARD,
            StandardStatus.PENDING_HO.value, Action.FORWARD.value,
        )

    def test_md_approves_forwarded_request(self):
        t = resolve_transition(
            "standard", StandardStatus.FORWARDED_TO_MD.value, "approve", Role.MAIN_DIRECTOR
        )
        assert t.to_state == StandardStatus.MD_APPROVED.value

    def test_ho_cannot_approve_forwarded_request(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            resolve_transition(
                "standard", StandardStatus.FORWARDED_TO_MD.value, "approve",
                Role.HEAD_OF_OPERATIONS,
            )
        assert "role not permitted" in exc_info.value.reason

    @pytest.mark.parametrize("state,role,target", [
        (StandardStatus.PENDING_HO.value, Role.HEAD_OF_OPERATIONS, StandardStatus.HO_REJECTED.value),
        (StandardStatus.FORWARDED_TO_MD.value, Role.MAIN_DIRECTOR, StandardStatus.MD_REJECTED.value),
    ])
    def test_rejection_targets(self, state, role, target):
        t = resolve_transition("standard", state, "reject", role)
        assert t.to_state == target
        assert not t.posts_movements

    @pytest.mark.parametrize("terminal", [s.value for s in (
        StandardStatus.MD_APPROVED, StandardStatus.MD_REJECTED, StandardStatus.HO_REJECTED,
    )])
    def test_terminal_states_accept_nothing(self, terminal):
        for action in Action:
            for role in Role:
                assert not can_transition(role, "standard", terminal, action.value)
        with pytest.raises(IllegalTransitionError) as exc_info:
            resolve_transition("standard", terminal, "approve", Role.MAIN_DIRECTOR)
        assert "terminal" in exc_info.value.reason

    def test_submit_roles(self):
        assert resolve_submission("standard", Role.WAREHOUSE_STAFF) == "pending_ho"
        assert resolve_submission("standard", Role.PACKING_AREA_MANAGER) == "pending_ho"
        with pytest.raises(IllegalTransitionError):
            resolve_submission("standard", Role.DISTRIBUTOR_REPRESENTATIVE)


class TestProductionGraph:

    def test_dispatch_without_shortages_goes_to_dispatched(self):
        t = resolve_transition(
            "production_direct", "pending_warehouse", "dispatch",
            Role.WAREHOUSE_STAFF, context={"shortages": ()},
        )
        assert t.to_state == ProductionStatus.DISPATCHED.value
        assert t.posts_movements

    def test_dispatch_with_shortages_goes_to_stock_shortage(self):
        t = resolve_transition(
            "production_direct", "pending_warehouse", "dispatch",
            Role.WAREHOUSE_STAFF, context={"shortages": (_short_line(),)},
        )
        assert t.to_state == ProductionStatus.STOCK_SHORTAGE.value
        assert not t.posts_movements

    def test_retry_from_stock_shortage(self):
        t = resolve_transition(
            "production_direct", "stock_shortage", "dispatch",
            Role.WAREHOUSE_STAFF, context={"shortages": ()},
        )
        assert t.to_state == ProductionStatus.DISPATCHED.value

    def test_missing_context_fails_closed(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            resolve_transition(
                "production_direct", "pending_warehouse", "dispatch", Role.WAREHOUSE_STAFF
            )
        assert "guard not satisfied" in exc_info.value.reason

    def test_production_manager_cannot_dispatch(self):
        assert not can_transition(
            Role.PRODUCTION_MANAGER, "production_direct", "pending_warehouse", "dispatch"
        )

    def test_only_production_manager_acknowledges_receipt(self):
        assert can_transition(
            Role.PRODUCTION_MANAGER, "production_direct", "dispatched", "acknowledge_receipt"
        )
        assert not can_transition(
            Role.WAREHOUSE_STAFF, "production_direct", "dispatched", "acknowledge_receipt"
        )

    def test_received_is_terminal(self):
        assert PRODUCTION_DIRECT_WORKFLOW.is_terminal("received")
        assert PRODUCTION_DIRECT_WORKFLOW.actions_from("received") == frozenset()


class TestDistributorGraph:

    def test_ho_and_md_both_approve(self):
        for role in (Role.HEAD_OF_OPERATIONS, Role.MAIN_DIRECTOR):
            t = resolve_transition("distributor", "Pending", "approve", role)
            assert t.to_state == DistributorStatus.APPROVED.value

    def test_partial_dispatch_stays_approved(self):
        t = resolve_transition(
            "distributor", "Approved", "dispatch",
            Role.FINISHED_GOODS_STORE_MANAGER,
            context={"remaining": {1: Decimal("5"), 2: Decimal("0")}},
        )
        assert t.to_state == DistributorStatus.APPROVED.value

    def test_full_dispatch_goes_to_dispatched(self):
        t = resolve_transition(
            "distributor", "Approved", "dispatch",
            Role.FINISHED_GOODS_STORE_MANAGER,
            context={"remaining": {1: Decimal("0"), 2: Decimal("0")}},
        )
        assert t.to_state == DistributorStatus.DISPATCHED.value

    def test_dispatch_without_remaining_context_fails_closed(self):
        with pytest.raises(IllegalTransitionError):
            resolve_transition(
                "distributor", "Approved", "dispatch", Role.FINISHED_GOODS_STORE_MANAGER
            )

    def test_rejected_request_cannot_be_dispatched(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            resolve_transition(
                "distributor", "Rejected", "dispatch", Role.FINISHED_GOODS_STORE_MANAGER,
                context={"remaining": {1: Decimal("0")}},
            )
        assert "terminal" in exc_info.value.reason

    @pytest.mark.parametrize("role", [
        Role.DISTRIBUTOR_REPRESENTATIVE, Role.DIRECT_REPRESENTATIVE, Role.DIRECT_SHOP,
    ])
    def test_submit_roles(self, role):
        assert resolve_submission("distributor", role) == "Pending"

    def test_unknown_role_token_is_refused(self):
        assert not can_transition("Janitor", "distributor", "Pending", "approve")
        with pytest.raises(IllegalTransitionError):
            resolve_transition("distributor", "Pending", "approve", "Janitor")


class TestValidatePath:

    def test_full_standard_path(self):
        assert validate_path("standard", ["pending_ho", "forwarded_to_md", "md_approved"])

    def test_skipping_a_step_is_invalid(self):
        assert not validate_path("standard", ["pending_ho", "md_approved"])

    def test_path_must_start_at_initial_state(self):
        assert not validate_path("production_direct", ["dispatched", "received"])
        assert not validate_path("production_direct", [])

    def test_shortage_retry_path(self):
        assert validate_path("production_direct", [
            "pending_warehouse", "stock_shortage", "stock_shortage", "dispatched", "received",
        ])

    def test_distributor_partial_then_full(self):
        assert validate_path("distributor", ["Pending", "Approved", "Approved", "Dispatched"])


class TestWorkflowConstruction:

    def test_all_graphs_are_well_formed(self):
        for workflow in (STANDARD_WORKFLOW, PRODUCTION_DIRECT_WORKFLOW, DISTRIBUTOR_WORKFLOW):
            assert workflow.initial_state in workflow.states
            for state in workflow.terminal_states:
                assert workflow.actions_from(state) == frozenset()

    def test_transition_from_terminal_state_is_rejected(self):
        with pytest.raises(ValueError, match="terminal"):
            Workflow(
                name="broken",
                family=RequestFamily.STANDARD,
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", "reopen", frozenset({Role.MAIN_DIRECTOR})),),
                terminal_states=("b",),
                submit_roles=frozenset(),
            )

    def test_unknown_state_is_rejected(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="broken",
                family=RequestFamily.STANDARD,
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "z", "go", frozenset({Role.MAIN_DIRECTOR})),),
                terminal_states=(),
                submit_roles=frozenset(),
            )


class TestActor:

    def test_role_token_is_coerced(self):
        actor = Actor(user_id="u-1", display_name="U", role="MainDirector")
        assert actor.role is Role.MAIN_DIRECTOR

    def test_unknown_role_token_raises(self):
        with pytest.raises(ValueError):
            Actor(user_id="u-1", display_name="U", role="Janitor")

    def test_empty_user_id_raises(self):
        with pytest.raises(ValueError):
            Actor(user_id="", display_name="U", role=Role.MAIN_DIRECTOR)
