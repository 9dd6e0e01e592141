"""
materials_services.notifications -- outbound notification and procurement hand-off.

Responsibility:
    Turns committed domain events into messages for the people who must
    act next, and forwards ``ProcurementRequired`` to the procurement
    collaborator.  Both sinks are narrow protocols; delivery is best-effort.

Recipients:
    ``role:<RoleToken>`` addresses everyone holding a role,
    ``user:<user_id>`` addresses one person (usually the requester).

Failure modes:
    Delivery failures are logged (``notification_delivery_failed`` /
    ``procurement_handoff_failed``) and never raised.  The action that
    produced the event has already committed.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from materials_kernel.domain.identity import Role
from materials_kernel.domain.workflow import RequestFamily
from materials_kernel.logging_config import get_logger
from materials_services.events import (
    DomainEvent,
    EventBus,
    LowStockDetected,
    MaterialsDispatched,
    ProcurementRequired,
    ReceiptAcknowledged,
    RequestApproved,
    RequestForwarded,
    RequestRejected,
    RequestSubmitted,
    StockShortageReported,
)

logger = get_logger("services.notifications")


def role_recipient(role: Role) -> str:
    return f"role:{role.value}"


def user_recipient(user_id: str) -> str:
    return f"user:{user_id}"


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, recipient: str, message: str, payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class ProcurementHandoff(Protocol):
    def handoff(self, event: ProcurementRequired) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: one ``notification_sent`` log line per message."""

    def notify(self, recipient: str, message: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification_sent",
            extra={"recipient": recipient, "notice": message, "payload": payload},
        )


class NotificationRouter:
    """Maps events to recipients and hands each message to the sink."""

    def __init__(self, sink: NotificationSink):
        self._sink = sink

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(None, self.route)

    def recipients_for(self, event: DomainEvent) -> list[tuple[str, str]]:
        """(recipient, message) pairs for an event; empty when nobody cares."""
        if isinstance(event, RequestSubmitted):
            if event.family == RequestFamily.PRODUCTION_DIRECT.value:
                return [
                    (role_recipient(Role.WAREHOUSE_STAFF), "New production request to fill"),
                    (role_recipient(Role.HEAD_OF_OPERATIONS), "Production request submitted"),
                ]
            return [(role_recipient(Role.HEAD_OF_OPERATIONS), "New request awaiting approval")]

        if isinstance(event, RequestForwarded):
            return [
                (role_recipient(Role.MAIN_DIRECTOR), "Request forwarded for final approval"),
                (user_recipient(event.requester_id), "Your request was forwarded to the director"),
            ]

        if isinstance(event, RequestApproved):
            out = [(user_recipient(event.requester_id), "Your request was approved")]
            if event.family == RequestFamily.STANDARD.value:
                out.append((role_recipient(Role.HEAD_OF_OPERATIONS), "Request approved by director"))
            elif event.family == RequestFamily.DISTRIBUTOR.value:
                out.append((
                    role_recipient(Role.FINISHED_GOODS_STORE_MANAGER),
                    "Approved request ready for dispatch",
                ))
            return out

        if isinstance(event, RequestRejected):
            out = [(user_recipient(event.requester_id), "Your request was rejected")]
            if event.actor_role == Role.MAIN_DIRECTOR.value and event.family == RequestFamily.STANDARD.value:
                out.append((role_recipient(Role.HEAD_OF_OPERATIONS), "Request rejected by director"))
            return out

        if isinstance(event, StockShortageReported):
            return [
                (user_recipient(event.requester_id), "Request held: insufficient stock"),
                (role_recipient(Role.HEAD_OF_OPERATIONS), "Stock shortage reported"),
            ]

        if isinstance(event, MaterialsDispatched):
            message = (
                "Materials dispatched"
                if event.fully_dispatched
                else "Part of your request was dispatched"
            )
            return [(user_recipient(event.requester_id), message)]

        if isinstance(event, ReceiptAcknowledged):
            return [(role_recipient(Role.WAREHOUSE_STAFF), "Dispatch received")]

        if isinstance(event, LowStockDetected):
            return [
                (role_recipient(Role.HEAD_OF_OPERATIONS), f"Low stock: {event.material_code}"),
                (role_recipient(Role.WAREHOUSE_STAFF), f"Low stock: {event.material_code}"),
            ]

        return []

    def route(self, event: DomainEvent) -> None:
        payload = _payload(event)
        for recipient, message in self.recipients_for(event):
            try:
                self._sink.notify(recipient, message, payload)
            except Exception:
                logger.exception(
                    "notification_delivery_failed",
                    extra={"recipient": recipient, "event_type": event.event_type},
                )


class ProcurementForwarder:
    """Subscribes to ``ProcurementRequired`` and calls the hand-off."""

    def __init__(self, handoff: ProcurementHandoff):
        self._handoff = handoff

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(ProcurementRequired, self.forward)

    def forward(self, event: DomainEvent) -> None:
        try:
            self._handoff.handoff(event)
        except Exception:
            logger.exception(
                "procurement_handoff_failed",
                extra={"request_id": str(getattr(event, "request_id", ""))},
            )
        else:
            logger.info(
                "procurement_handed_off",
                extra={"request_id": str(getattr(event, "request_id", ""))},
            )


def _payload(event: DomainEvent) -> dict[str, Any]:
    payload: dict[str, Any] = {"event_type": event.event_type}
    for key in ("request_id", "dispatch_id", "family", "status", "material_id", "location"):
        value = getattr(event, key, None)
        if value is not None:
            payload[key] = str(value)
    return payload
