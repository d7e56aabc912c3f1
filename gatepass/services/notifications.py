"""
Notification events emitted by the pass workflow and the expiry sweeps.

Events are handed to a ``NotificationDispatcher`` after the transition that
produced them has committed. Dispatch is fire-and-forget: a failing
dispatcher is logged and never surfaces to the caller.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.notification_outbox import NotificationOutbox
from .directory import get_principal


logger = logging.getLogger("notifications")

EVENT_KINDS = (
    "submitted",
    "approved",
    "rejected",
    "fully_approved",
    "used",
    "expired",
    "expiring_soon",
    "overdue",
    "reminder",
)

DEFAULT_PRIORITY = {
    "submitted": "medium",
    "approved": "medium",
    "rejected": "high",
    "fully_approved": "high",
    "used": "medium",
    "expired": "high",
    "expiring_soon": "high",
    "overdue": "urgent",
    "reminder": "low",
}


@dataclass(frozen=True)
class NotificationEvent:
    recipient_id: str
    kind: str
    pass_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    priority: str = "medium"


@dataclass
class NotificationContent:
    title: str
    message: str


def make_event(recipient_id: str, kind: str, pass_id: Optional[str], **payload: Any) -> NotificationEvent:
    if kind not in EVENT_KINDS:
        raise ValueError(f"Unknown notification kind {kind!r}")
    return NotificationEvent(
        recipient_id=recipient_id,
        kind=kind,
        pass_id=pass_id,
        payload=payload,
        priority=DEFAULT_PRIORITY[kind],
    )


def _format_ts(ts: Any) -> str:
    if not isinstance(ts, datetime.datetime):
        return str(ts) if ts else "-"
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc).strftime("%d %b %Y %H:%M UTC")


def build_notification_content(event: NotificationEvent) -> NotificationContent:
    p = event.payload
    code = p.get("pass_code") or event.pass_id or "-"
    stage = "HOD" if p.get("stage") == "hod" else "mentor"
    if event.kind == "submitted":
        return NotificationContent(
            "New Gate Pass Request",
            f"{p.get('student_name') or 'A student'} requested a {p.get('category', '')} gate pass {code}.",
        )
    if event.kind == "approved":
        return NotificationContent("Gate Pass Approved", f"Your gate pass {code} was approved by your {stage}.")
    if event.kind == "rejected":
        return NotificationContent(
            "Gate Pass Rejected",
            f"Your gate pass {code} was rejected by your {stage}. Reason: {p.get('reason') or 'No reason provided'}",
        )
    if event.kind == "fully_approved":
        return NotificationContent(
            "Gate Pass Ready",
            f"Your gate pass {code} is fully approved and valid until {_format_ts(p.get('expires_at'))}.",
        )
    if event.kind == "used":
        return NotificationContent("Gate Pass Used", f"Your gate pass {code} was used for exit at {_format_ts(p.get('used_at'))}.")
    if event.kind == "expired":
        return NotificationContent("Gate Pass Expired", f"Your gate pass {code} has expired and is no longer valid for use.")
    if event.kind == "expiring_soon":
        return NotificationContent(
            "Gate Pass Expiring Soon",
            f"Your gate pass {code} will expire in {p.get('minutes_left')} minutes. Use it soon!",
        )
    if event.kind == "overdue":
        return NotificationContent(
            "Gate Pass Overdue",
            f"Gate pass {code} was due back at {_format_ts(p.get('return_time'))} and no return has been recorded.",
        )
    return NotificationContent("Pending Pass Approval", f"Gate pass {code} is still waiting for your approval.")


class NotificationDispatcher:
    """Base for event sinks; subclasses override ``emit``."""

    def emit(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class OutboxDispatcher(NotificationDispatcher):
    """Persist events as in-app notifications queued for delivery."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _channel_for(self, recipient_id: str) -> tuple[str, Optional[str]]:
        recipient = get_principal(self.db, recipient_id)
        if recipient is not None and recipient.email and settings.smtp_host:
            return "EMAIL", recipient.email
        return "LOG", recipient_id

    def emit(self, event: NotificationEvent) -> None:
        content = build_notification_content(event)
        channel, target = self._channel_for(event.recipient_id)
        row = NotificationOutbox(
            kind=event.kind,
            recipient_id=event.recipient_id,
            pass_id=event.pass_id,
            priority=event.priority,
            title=content.title,
            message=content.message,
            payload={k: _format_ts(v) if isinstance(v, datetime.datetime) else v for k, v in event.payload.items()},
            channel=channel,
            target=target,
            status="PENDING",
            attempts=0,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


def emit_after_commit(dispatcher: NotificationDispatcher, events: Iterable[NotificationEvent]) -> int:
    emitted = 0
    for event in events:
        try:
            dispatcher.emit(event)
            emitted += 1
        except Exception as exc:
            logger.warning(
                "Notification emit failed kind=%s recipient=%s pass=%s err=%s",
                event.kind,
                event.recipient_id,
                event.pass_id,
                exc,
            )
    return emitted
