from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("app.notifications")


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    event: str
    recipient_ids: list[int]
    subject: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationChannel:
    configured: bool = False

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        raise NotImplementedError


class LogChannel(NotificationChannel):
    """Delivery is owned by an external dispatcher; this channel hands off via the log stream."""

    configured = True

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        logger.info(
            "notification_dispatched",
            extra={
                "event": message.event,
                "recipient_ids": list(message.recipient_ids),
                "subject": message.subject,
                "data": message.data,
            },
        )
        return {"mode": "log", "sent": len(message.recipient_ids)}


_channel: NotificationChannel = LogChannel()


def set_channel(channel: NotificationChannel) -> None:
    global _channel
    _channel = channel


def dispatch(message: NotificationMessage) -> dict[str, Any]:
    recipients = [item for item in message.recipient_ids if item is not None]
    if not recipients:
        return {"mode": "no_recipients", "sent": 0}
    try:
        return _channel.send(message)
    except Exception as exc:
        logger.exception(
            "notification_send_failed",
            extra={"event": message.event, "recipient_ids": recipients},
        )
        return {"mode": "send_exception", "sent": 0, "error": str(exc)[:500]}


def notify_wfh_submitted(*, approval_id: int, employee_id: int, manager_id: int | None, urgency: str) -> None:
    if manager_id is None:
        return
    dispatch(
        NotificationMessage(
            event="wfh_submitted",
            recipient_ids=[manager_id],
            subject="WFH request awaiting decision",
            body=f"Employee {employee_id} submitted a {urgency} WFH request.",
            data={"approval_id": approval_id, "employee_id": employee_id, "urgency": urgency},
        )
    )


def notify_wfh_auto_approved(*, approval_id: int, employee_id: int, manager_id: int | None) -> None:
    dispatch(
        NotificationMessage(
            event="wfh_auto_approved",
            recipient_ids=[item for item in (employee_id, manager_id) if item is not None],
            subject="Emergency WFH auto-approved",
            body="Emergency WFH request was approved automatically and is open for manager review.",
            data={"approval_id": approval_id, "employee_id": employee_id},
        )
    )


def notify_wfh_decision(*, approval_id: int, employee_id: int, status: str, comment: str | None) -> None:
    dispatch(
        NotificationMessage(
            event="wfh_decided",
            recipient_ids=[employee_id],
            subject=f"WFH request {status}",
            body=comment or f"Your WFH request was {status}.",
            data={"approval_id": approval_id, "status": status},
        )
    )


def notify_resource_released(
    *,
    employee_id: int,
    resource_type: str,
    booking_id: int,
    minutes_overdue: int,
) -> None:
    dispatch(
        NotificationMessage(
            event="resource_auto_released",
            recipient_ids=[employee_id],
            subject=f"Your {resource_type} booking was released",
            body=f"Released after {minutes_overdue} minutes without arrival.",
            data={"resource_type": resource_type, "booking_id": booking_id, "minutes_overdue": minutes_overdue},
        )
    )
