"""
Tests for structured logging (materials_kernel/logging_config.py).

Covers:
- JSON line envelope, Decimal quantities and UUIDs in extra fields
- Kernel errors logged with exc_info contribute code, retryable flag and
  their structured attributes
- LogContext binding: nesting, restore, per-thread isolation
- configure_logging installs exactly one handler
- The ids of an orchestrator action appear on every line it logs
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from materials_kernel.domain.dtos import RequestItemSpec
from materials_kernel.exceptions import DispatchAlreadyReceivedError, OptimisticLockError
from materials_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def json_lines():
    """Install a StringIO handler via configure_logging; return a reader."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    configure_logging(handler=handler, level="DEBUG")

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _read


class TestJsonLines:

    def test_envelope(self, json_lines):
        get_logger("services.stock_ledger").info("movement_posted")

        [line] = json_lines()
        assert line["message"] == "movement_posted"
        assert line["level"] == "INFO"
        assert line["logger"] == "materials_kernel.services.stock_ledger"
        assert line["ts"].endswith("+00:00")

    def test_quantities_and_ids_serialized_as_strings(self, json_lines):
        material_id = uuid4()
        get_logger("test").info(
            "movement_posted",
            extra={"material_id": material_id, "quantity": Decimal("12.500"), "seq": 3},
        )

        [line] = json_lines()
        assert line["material_id"] == str(material_id)
        assert line["quantity"] == "12.500"
        assert line["seq"] == 3

    def test_kernel_error_fields(self, json_lines):
        try:
            raise DispatchAlreadyReceivedError("d-1", "Line Manager")
        except DispatchAlreadyReceivedError:
            get_logger("test").warning("receipt_rejected", exc_info=True)

        [line] = json_lines()
        assert line["exc_code"] == "DISPATCH_ALREADY_RECEIVED"
        assert line["exc_retryable"] is False
        assert line["exc_dispatch_id"] == "d-1"
        assert line["exc_received_by"] == "Line Manager"
        assert "traceback" in line

    def test_retryable_flag(self, json_lines):
        try:
            raise OptimisticLockError("StockBalance", "b-1")
        except OptimisticLockError:
            get_logger("test").info("action_retry_scheduled", exc_info=True)

        [line] = json_lines()
        assert line["exc_retryable"] is True
        assert line["exc_entity_type"] == "StockBalance"

    def test_foreign_exception_has_no_code(self, json_lines):
        try:
            raise ConnectionError("smtp refused")
        except ConnectionError:
            get_logger("test").error("notification_delivery_failed", exc_info=True)

        [line] = json_lines()
        assert line["exc_type"] == "ConnectionError"
        assert line["exc_message"] == "smtp refused"
        assert "exc_code" not in line

    def test_level_filtering(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream), level="WARNING")
        logger = get_logger("test")
        logger.info("movement_posted")
        logger.warning("negative_balance_clamped")

        lines = [json.loads(l) for l in stream.getvalue().splitlines()]
        assert [l["message"] for l in lines] == ["negative_balance_clamped"]

    def test_formatter_on_foreign_handler(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        logger = logging.getLogger("materials_kernel.adhoc")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            with LogContext.bind(material_id="m-9"):
                logger.info("stock_checked")
        finally:
            logger.removeHandler(handler)

        line = json.loads(stream.getvalue().splitlines()[0])
        assert line["material_id"] == "m-9"


class TestLogContext:

    def test_bind_nests_and_restores(self):
        LogContext.set(request_id="r-outer")
        with LogContext.bind(request_id="r-inner", dispatch_id="d-1"):
            assert LogContext.get_all() == {"request_id": "r-inner", "dispatch_id": "d-1"}
        assert LogContext.get_all() == {"request_id": "r-outer"}

    def test_uuid_values_stored_as_text(self):
        entry_id = uuid4()
        with LogContext.bind(entry_id=entry_id):
            assert LogContext.get_all()["entry_id"] == str(entry_id)

    def test_none_and_unknown_fields_ignored(self):
        with LogContext.bind(actor_id=None, location="rack-a", material_id="m-1"):
            assert LogContext.get_all() == {"material_id": "m-1"}

    def test_clear(self):
        LogContext.set(correlation_id="c", actor_id="ws-1")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_threads_do_not_share_context(self):
        def in_worker(request_id):
            with LogContext.bind(request_id=request_id):
                return LogContext.get_all()

        with LogContext.bind(actor_id="main"):
            with ThreadPoolExecutor(max_workers=2) as pool:
                seen = list(pool.map(in_worker, ["r-1", "r-2"]))
            assert LogContext.get_all() == {"actor_id": "main"}

        assert [s["request_id"] for s in seen] == ["r-1", "r-2"]


class TestConfigureLogging:

    def test_first_handler_wins(self):
        first = logging.StreamHandler(StringIO())
        second = logging.StreamHandler(StringIO())
        configure_logging(handler=first)
        configure_logging(handler=second)

        handlers = logging.getLogger("materials_kernel").handlers
        assert first in handlers
        assert second not in handlers

    def test_reset_removes_only_installed_handler(self):
        installed = logging.StreamHandler(StringIO())
        other = logging.StreamHandler(StringIO())
        root = logging.getLogger("materials_kernel")
        configure_logging(handler=installed)
        root.addHandler(other)
        try:
            reset_logging()
            assert installed not in root.handlers
            assert other in root.handlers
        finally:
            root.removeHandler(other)


class TestActionIds:

    def test_dispatch_and_receipt_lines_carry_action_ids(
        self, orchestrator, stock_material, production_manager, warehouse_staff, captured_logs,
    ):
        material = stock_material(opening=50)
        request = orchestrator.submit_request(
            "production_direct", production_manager,
            [RequestItemSpec(material_id=material.id, quantity=20)],
        )

        dispatch = orchestrator.dispatch(request.id, warehouse_staff).dispatch
        orchestrator.acknowledge_receipt(dispatch.id, production_manager)

        lines = captured_logs()
        created = next(l for l in lines if l["message"] == "dispatch_created")
        postings = [l for l in lines if l["message"] == "movement_posted"]
        out_line = next(l for l in postings if l["direction"] == "out")
        in_line = next(l for l in postings if l["direction"] == "in" and l["location"] == "production_floor")

        assert out_line["request_id"] == str(request.id)
        assert out_line["actor_id"] == "ws-1"
        assert out_line["correlation_id"] == created["correlation_id"]
        assert in_line["dispatch_id"] == str(dispatch.id)
        assert in_line["actor_id"] == "pm-1"
        assert in_line["correlation_id"] != out_line["correlation_id"]
