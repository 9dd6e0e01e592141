"""
Tests for StockLedgerService -- append-only movements and cached balances.

Covers:
- register_material(): opening balance, duplicate code, deactivation
- post_movement(): in/out, positive-quantity check, clamp at zero,
  per-location balances, seq numbering, idempotency keys, reorder signal
- get_balance() == recompute_balance() after arbitrary postings
- verify_balances(): detects a tampered cached balance
- list_movements(): newest first, filters, paging, restartable iteration
- Storage error translation: stale balance row -> OptimisticLockError
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, text

from materials_kernel.domain.values import MovementDirection, MovementFilter, MovementMeta
from materials_kernel.exceptions import (
    DuplicateMovementError,
    InactiveMaterialError,
    InvalidQuantityError,
    MaterialCodeExistsError,
    MaterialNotFoundError,
    OptimisticLockError,
)
from materials_kernel.models.material import StockBalance
from materials_kernel.models.movement import StockMovement


class TestMaterialRegistry:

    def test_register_with_opening_balance(self, ledger, register_material):
        material = register_material(opening=100, code="RM-001")

        assert material.code == "RM-001"
        assert material.home_location == "warehouse"
        assert ledger.get_balance(material.id) == Decimal("100")
        [movement] = ledger.list_movements(material.id).to_list()
        assert movement.reason == "opening_balance"
        assert movement.direction == MovementDirection.IN
        assert movement.actor_id == "ws-1"

    def test_register_without_opening_balance_has_no_movements(self, ledger, register_material):
        material = register_material()
        assert ledger.get_balance(material.id) == Decimal("0")
        assert ledger.list_movements(material.id).first() is None

    def test_duplicate_code_rejected(self, register_material):
        register_material(code="RM-DUP")
        with pytest.raises(MaterialCodeExistsError):
            register_material(code="RM-DUP")

    def test_negative_reorder_level_rejected(self, register_material):
        with pytest.raises(InvalidQuantityError):
            register_material(reorder_level=-1)

    def test_unknown_material(self, ledger):
        with pytest.raises(MaterialNotFoundError):
            ledger.get_material(uuid4())

    def test_deactivated_material_refuses_postings(self, ledger, register_material, warehouse_staff):
        material = register_material(opening=10)
        ledger.deactivate_material(material.id, warehouse_staff)

        with pytest.raises(InactiveMaterialError):
            ledger.post_movement(material.id, "in", 5)
        # History and balance survive deactivation.
        assert ledger.get_balance(material.id) == Decimal("10")


class TestPostMovement:

    def test_in_then_out(self, ledger, register_material):
        material = register_material(opening=50)

        result = ledger.post_movement(material.id, MovementDirection.OUT, Decimal("20"))

        assert result.balance_before == Decimal("50")
        assert result.balance_after == Decimal("30")
        assert result.seq == 2
        assert not result.was_clamped
        assert ledger.get_balance(material.id) == Decimal("30")

    @pytest.mark.parametrize(
        "bad", [0, -5, "abc", Decimal("NaN"), True, Decimal("0.0000000004"), Decimal("1E+40")]
    )
    def test_non_positive_quantity_rejected_and_nothing_written(self, ledger, register_material, bad):
        material = register_material(opening=10)
        with pytest.raises(InvalidQuantityError):
            ledger.post_movement(material.id, "in", bad)
        assert len(ledger.list_movements(material.id).to_list()) == 1
        assert ledger.get_balance(material.id) == Decimal("10")

    def test_quantity_rounded_to_nine_places(self, ledger, register_material):
        material = register_material()

        result = ledger.post_movement(material.id, "in", Decimal("0.0000000016"))

        assert result.balance_after == Decimal("0.000000002")
        assert ledger.list_movements(material.id).first().quantity == Decimal("0.000000002")
        assert ledger.get_balance(material.id) == ledger.recompute_balance(material.id)

    def test_out_larger_than_balance_clamps_at_zero(self, ledger, register_material, captured_logs):
        material = register_material(opening=20)

        result = ledger.post_movement(material.id, "out", 30)

        assert result.balance_after == Decimal("0")
        assert result.was_clamped
        assert result.negative_balance.clamped_quantity == Decimal("10")
        assert result.negative_balance.balance_before == Decimal("20")
        assert ledger.get_balance(material.id) == Decimal("0")
        assert ledger.recompute_balance(material.id) == Decimal("0")

        movement = ledger.list_movements(material.id).first()
        assert movement.quantity == Decimal("30")
        assert movement.clamped_quantity == Decimal("10")

        warnings = [r for r in captured_logs() if r["message"] == "negative_balance_clamped"]
        assert len(warnings) == 1
        assert warnings[0]["level"] == "WARNING"
        assert Decimal(warnings[0]["clamped_quantity"]) == Decimal("10")

    def test_in_after_clamp_starts_from_zero(self, ledger, register_material):
        material = register_material(opening=5)
        ledger.post_movement(material.id, "out", 8)
        ledger.post_movement(material.id, "in", 4)

        assert ledger.get_balance(material.id) == Decimal("4")
        assert ledger.recompute_balance(material.id) == Decimal("4")

    def test_balances_are_per_location(self, ledger, register_material):
        material = register_material(opening=40)
        ledger.post_movement(material.id, "out", 15)
        ledger.post_movement(material.id, "in", 15, MovementMeta(location="production_floor"))

        assert ledger.get_balance(material.id) == Decimal("25")
        assert ledger.get_balance(material.id, "production_floor") == Decimal("15")
        assert ledger.get_balance(material.id, "nowhere") == Decimal("0")
        assert ledger.balances_by_location(material.id) == {
            "production_floor": Decimal("15"),
            "warehouse": Decimal("25"),
        }

    def test_balances_by_location_unknown_material(self, ledger):
        with pytest.raises(MaterialNotFoundError):
            ledger.balances_by_location(uuid4())

    def test_seq_is_per_location_and_gapless(self, ledger, register_material):
        material = register_material(opening=10)
        seqs = [ledger.post_movement(material.id, "in", 1).seq for _ in range(3)]
        other = ledger.post_movement(material.id, "in", 1, MovementMeta(location="bay-2"))

        assert seqs == [2, 3, 4]
        assert other.seq == 1

    def test_materials_are_independent(self, ledger, register_material):
        a = register_material(opening=10)
        b = register_material(opening=10)
        ledger.post_movement(a.id, "out", 7)

        assert ledger.get_balance(a.id) == Decimal("3")
        assert ledger.get_balance(b.id) == Decimal("10")

    def test_idempotency_key_rejects_second_posting(self, ledger, register_material):
        material = register_material(opening=10)
        meta = MovementMeta(idempotency_key="dispatch:abc:1:out")
        ledger.post_movement(material.id, "out", 3, meta)

        with pytest.raises(DuplicateMovementError) as exc_info:
            ledger.post_movement(material.id, "out", 3, meta)

        assert exc_info.value.idempotency_key == "dispatch:abc:1:out"
        assert ledger.get_balance(material.id) == Decimal("7")

    def test_system_actor_recorded_when_none_given(self, ledger, register_material):
        material = register_material()
        ledger.post_movement(material.id, "in", 2)
        movement = ledger.list_movements(material.id).first()
        assert movement.actor_id == "system"

    def test_reorder_signal_only_for_out_at_home_location(self, ledger, register_material):
        material = register_material(opening=100, reorder_level=20)

        assert not ledger.post_movement(material.id, "out", 70).below_reorder_level
        assert ledger.post_movement(material.id, "out", 10).below_reorder_level
        assert not ledger.post_movement(material.id, "in", 1).below_reorder_level
        assert not ledger.post_movement(
            material.id, "out", 1, MovementMeta(location="elsewhere")
        ).below_reorder_level

    def test_movement_posted_logged(self, ledger, register_material, captured_logs):
        material = register_material()
        ledger.post_movement(material.id, "in", Decimal("2.5"))

        posted = [r for r in captured_logs() if r["message"] == "movement_posted"]
        assert posted[-1]["material_id"] == str(material.id)
        assert Decimal(posted[-1]["balance_after"]) == Decimal("2.5")


class TestReproducibility:

    def test_cached_equals_replay_after_mixed_postings(self, ledger, register_material):
        material = register_material(opening=10)
        for direction, qty in [("out", 4), ("out", 9), ("in", 3), ("out", 1), ("in", 12)]:
            ledger.post_movement(material.id, direction, qty)

        assert ledger.get_balance(material.id) == ledger.recompute_balance(material.id)
        assert ledger.get_balance(material.id) == Decimal("14")
        assert ledger.verify_balances(material.id) == []

    def test_verify_balances_detects_tampered_cache(self, session, ledger, register_material, captured_logs):
        material = register_material(opening=10)
        session.flush()
        session.execute(
            text("UPDATE stock_balances SET quantity = 99 WHERE material_id = :m"),
            {"m": str(material.id)},
        )

        [mismatch] = ledger.verify_balances(material.id)

        assert mismatch.material_id == material.id
        assert mismatch.cached == Decimal("99")
        assert mismatch.replayed == Decimal("10")
        assert any(r["message"] == "balance_mismatch_detected" for r in captured_logs())


class TestHistory:

    def test_newest_first(self, ledger, register_material, deterministic_clock):
        material = register_material(opening=10)
        deterministic_clock.advance(5)
        ledger.post_movement(material.id, "out", 2)
        deterministic_clock.advance(5)
        ledger.post_movement(material.id, "in", 1)

        seqs = [m.seq for m in ledger.list_movements(material.id)]
        assert seqs == [3, 2, 1]

    def test_filters(self, ledger, register_material):
        material = register_material(opening=10)
        request_id = uuid4()
        ledger.post_movement(material.id, "out", 2, MovementMeta(request_id=request_id))
        ledger.post_movement(material.id, "in", 2, MovementMeta(location="bay-1"))

        outs = ledger.list_movements(
            material.id, MovementFilter(direction=MovementDirection.OUT)
        ).to_list()
        assert [m.request_id for m in outs] == [request_id]

        at_bay = ledger.list_movements(material.id, MovementFilter(location="bay-1")).to_list()
        assert len(at_bay) == 1

        for_request = ledger.list_movements(
            material.id, MovementFilter(request_id=request_id)
        ).to_list()
        assert len(for_request) == 1

    def test_paging_is_finite_and_restartable(self, ledger, register_material):
        material = register_material()
        for _ in range(7):
            ledger.post_movement(material.id, "in", 1)

        history = ledger.list_movements(material.id, MovementFilter(page_size=3))
        first_walk = [m.seq for m in history]
        second_walk = [m.seq for m in history]

        assert first_walk == [7, 6, 5, 4, 3, 2, 1]
        assert second_walk == first_walk

    def test_page_boundaries_across_timestamps(self, ledger, register_material, deterministic_clock):
        material = register_material()
        for _ in range(5):
            ledger.post_movement(material.id, "in", 1)
            deterministic_clock.advance(1)
        ledger.post_movement(material.id, "in", 1)

        walk = [m.seq for m in ledger.list_movements(material.id, MovementFilter(page_size=2))]

        assert walk == [6, 5, 4, 3, 2, 1]

    def test_invalid_page_size(self):
        with pytest.raises(ValueError):
            MovementFilter(page_size=0)


class TestStorageErrors:

    def test_stale_balance_row_becomes_optimistic_lock_error(self, session, ledger, register_material):
        material = register_material(opening=10)
        balance = session.execute(
            select(StockBalance).where(StockBalance.material_id == material.id)
        ).scalar_one()
        # Another writer bumps the version behind the ORM's back.
        session.execute(
            text("UPDATE stock_balances SET version = version + 1 WHERE id = :id"),
            {"id": str(balance.id)},
        )
        balance.quantity = Decimal("11")

        with pytest.raises(OptimisticLockError):
            ledger._flush("test", "StockBalance", balance.id)

    def test_movement_rows_match_balance_count(self, session, ledger, register_material):
        material = register_material(opening=1)
        ledger.post_movement(material.id, "in", 1)
        count = session.execute(
            select(StockBalance.movement_count).where(StockBalance.material_id == material.id)
        ).scalar_one()
        rows = session.execute(
            select(StockMovement).where(StockMovement.material_id == material.id)
        ).scalars().all()
        assert count == len(rows) == 2
