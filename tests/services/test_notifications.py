"""
Tests for notification routing and the procurement hand-off.

Covers:
- recipients_for(): who hears about each event type
- A failing sink is logged and does not stop delivery to other recipients
- ProcurementForwarder receives only ProcurementRequired
- End to end: an orchestrator action reaches the sink after commit
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from materials_kernel.domain.dtos import RequestItemSpec
from materials_services.events import (
    EventBus,
    LowStockDetected,
    MaterialsDispatched,
    ProcurementRequired,
    RequestApproved,
    RequestRejected,
    RequestSubmitted,
)
from materials_services.notifications import (
    LoggingNotificationSink,
    NotificationRouter,
    NotificationSink,
    ProcurementForwarder,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self, fail_for=()):
        self.sent = []
        self._fail_for = set(fail_for)

    def notify(self, recipient, message, payload):
        if recipient in self._fail_for:
            raise ConnectionError("smtp refused")
        self.sent.append((recipient, message, payload))


class RecordingHandoff:
    def __init__(self, fail=False):
        self.received = []
        self._fail = fail

    def handoff(self, event):
        if self._fail:
            raise TimeoutError("procurement system down")
        self.received.append(event)


def _submitted(family="standard"):
    return RequestSubmitted(
        occurred_at=NOW, request_id=uuid4(), family=family, request_type="raw_material",
        status="pending_ho", requester_id="ws-1", line_count=1,
    )


class TestRecipients:

    def test_sinks_satisfy_protocol(self):
        assert isinstance(RecordingSink(), NotificationSink)
        assert isinstance(LoggingNotificationSink(), NotificationSink)

    def test_production_submission_reaches_warehouse(self):
        router = NotificationRouter(RecordingSink())
        recipients = [r for r, _ in router.recipients_for(_submitted("production_direct"))]
        assert recipients == ["role:WarehouseStaff", "role:HeadOfOperations"]

    def test_standard_submission_reaches_head_of_operations(self):
        router = NotificationRouter(RecordingSink())
        assert [r for r, _ in router.recipients_for(_submitted())] == ["role:HeadOfOperations"]

    def test_distributor_approval_reaches_finished_goods(self):
        event = RequestApproved(
            occurred_at=NOW, request_id=uuid4(), family="distributor",
            status="Approved", requester_id="dr-1", actor_id="ho-1",
        )
        recipients = [r for r, _ in NotificationRouter(RecordingSink()).recipients_for(event)]
        assert recipients == ["user:dr-1", "role:FinishedGoodsStoreManager"]

    def test_director_rejection_also_tells_head_of_operations(self):
        event = RequestRejected(
            occurred_at=NOW, request_id=uuid4(), family="standard", status="md_rejected",
            requester_id="ws-1", actor_id="md-1", actor_role="MainDirector", comment=None,
        )
        recipients = [r for r, _ in NotificationRouter(RecordingSink()).recipients_for(event)]
        assert recipients == ["user:ws-1", "role:HeadOfOperations"]

    def test_partial_dispatch_message(self):
        event = MaterialsDispatched(
            occurred_at=NOW, request_id=uuid4(), dispatch_id=uuid4(), family="distributor",
            status="Approved", requester_id="dr-1", destination_location="external",
            total_quantity=Decimal("5"), fully_dispatched=False,
        )
        [(recipient, message)] = NotificationRouter(RecordingSink()).recipients_for(event)
        assert recipient == "user:dr-1"
        assert message == "Part of your request was dispatched"

    def test_low_stock_names_material(self):
        event = LowStockDetected(
            occurred_at=NOW, material_id=uuid4(), material_code="RM-9",
            location="warehouse", balance=Decimal("1"), reorder_level=Decimal("5"),
        )
        messages = {m for _, m in NotificationRouter(RecordingSink()).recipients_for(event)}
        assert messages == {"Low stock: RM-9"}

    def test_procurement_event_has_no_direct_recipients(self):
        event = ProcurementRequired(
            occurred_at=NOW, request_id=uuid4(), request_type="raw_material", items=()
        )
        assert NotificationRouter(RecordingSink()).recipients_for(event) == []


class TestDelivery:

    def test_failing_recipient_does_not_block_others(self, captured_logs):
        sink = RecordingSink(fail_for={"role:WarehouseStaff"})
        router = NotificationRouter(sink)

        router.route(_submitted("production_direct"))

        assert [r for r, _, _ in sink.sent] == ["role:HeadOfOperations"]
        failures = [r for r in captured_logs() if r["message"] == "notification_delivery_failed"]
        assert failures[0]["recipient"] == "role:WarehouseStaff"
        assert failures[0]["exc_type"] == "ConnectionError"

    def test_payload_carries_ids_as_strings(self):
        sink = RecordingSink()
        event = _submitted()
        NotificationRouter(sink).route(event)

        [(_, _, payload)] = sink.sent
        assert payload["event_type"] == "RequestSubmitted"
        assert payload["request_id"] == str(event.request_id)

    def test_forwarder_only_sees_procurement_events(self):
        bus = EventBus()
        handoff = RecordingHandoff()
        ProcurementForwarder(handoff).attach(bus)

        bus.publish(_submitted())
        procurement = ProcurementRequired(
            occurred_at=NOW, request_id=uuid4(), request_type="raw_material", items=()
        )
        bus.publish(procurement)

        assert handoff.received == [procurement]

    def test_forwarder_failure_logged(self, captured_logs):
        bus = EventBus()
        ProcurementForwarder(RecordingHandoff(fail=True)).attach(bus)

        bus.publish(ProcurementRequired(
            occurred_at=NOW, request_id=uuid4(), request_type="raw_material", items=()
        ))

        assert any(r["message"] == "procurement_handoff_failed" for r in captured_logs())

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(None, seen.append)
        unsubscribe()
        bus.publish(_submitted())
        assert seen == []


class TestEndToEnd:

    def test_approval_notifies_and_hands_off(
        self, orchestrator, stock_material, warehouse_staff, head_of_operations, main_director,
    ):
        sink = RecordingSink()
        handoff = RecordingHandoff()
        NotificationRouter(sink).attach(orchestrator.bus)
        ProcurementForwarder(handoff).attach(orchestrator.bus)
        material = stock_material(opening=1)

        request = orchestrator.submit_request(
            "standard", warehouse_staff, [RequestItemSpec(material_id=material.id, quantity=40)]
        )
        orchestrator.forward_to_director(request.id, head_of_operations)
        orchestrator.approve(request.id, main_director)

        recipients = [r for r, _, _ in sink.sent]
        assert "role:MainDirector" in recipients
        assert recipients.count("user:ws-1") == 2
        [procurement] = handoff.received
        assert procurement.request_id == request.id
        assert procurement.items[0].requested_quantity == Decimal("40")
