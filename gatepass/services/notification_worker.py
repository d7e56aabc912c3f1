"""
Outbox worker for delivering notifications with retries.
"""

from __future__ import annotations

import datetime
import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.notification_outbox import NotificationOutbox


logger = logging.getLogger("notification_worker")


class NotificationProvider:
    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        raise NotImplementedError


class LogProvider(NotificationProvider):
    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        logging.getLogger("notifications").info(
            "Log notification to=%s kind=%s priority=%s title=%s message=%s",
            outbox.target or outbox.recipient_id,
            outbox.kind,
            outbox.priority,
            outbox.title,
            outbox.message,
        )
        return None


class EmailSMTPProvider(NotificationProvider):
    """
    SMTP email provider.

    For MailHog:
        SMTP_HOST=127.0.0.1
        SMTP_PORT=1025
        SMTP_STARTTLS=false
    """

    def __init__(self) -> None:
        self.host = settings.smtp_host
        self.port = int(settings.smtp_port or 587)
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.sender = settings.smtp_from or self.user or "gatepass@localhost"

        raw_tls = os.getenv("SMTP_STARTTLS", "").lower().strip()
        if raw_tls in {"0", "false", "no"}:
            self.starttls = False
        elif raw_tls in {"1", "true", "yes"}:
            self.starttls = True
        else:
            self.starttls = False if self.port == 1025 else True

        logger.info("SMTP config loaded host=%s port=%s starttls=%s", self.host, self.port, self.starttls)

    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        if not self.host:
            raise RuntimeError("SMTP_HOST is not configured")
        if not outbox.target:
            raise RuntimeError("Email target is empty")
        msg = EmailMessage()
        msg["Subject"] = outbox.title
        msg["From"] = self.sender
        msg["To"] = outbox.target
        msg.set_content(outbox.message)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=8) as server:
                server.ehlo()
                if self.starttls:
                    server.starttls()
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
            return None
        except Exception as exc:
            raise RuntimeError(f"SMTP send failed: {exc}") from exc


@dataclass
class ProviderSet:
    log: NotificationProvider
    email: NotificationProvider

    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        if outbox.channel == "LOG":
            return self.log.send(outbox)
        if outbox.channel == "EMAIL":
            return self.email.send(outbox)
        raise RuntimeError(f"Unsupported channel: {outbox.channel}")


def build_providers() -> ProviderSet:
    if not (settings.smtp_host or "").strip():
        logger.warning("SMTP_HOST missing; email notifications will be logged only.")
        email: NotificationProvider = LogProvider()
    else:
        email = EmailSMTPProvider()
    logger.info("Providers selected: email=%s", type(email).__name__)
    return ProviderSet(log=LogProvider(), email=email)


def backoff_seconds(attempt: int) -> int:
    schedule = [60, 300, 900, 3600, 21600]
    idx = min(max(attempt - 1, 0), len(schedule) - 1)
    return schedule[idx]


def process_outbox_batch(
    db: Session,
    *,
    providers: Optional[ProviderSet] = None,
    max_attempts: int = 5,
    batch_size: int = 50,
) -> int:
    providers = providers or build_providers()
    now = datetime.datetime.now(datetime.timezone.utc)

    query = (
        db.query(NotificationOutbox)
        .filter(
            NotificationOutbox.status.in_(["PENDING", "RETRYING"]),
            or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now),
        )
        .order_by(NotificationOutbox.created_at.asc())
        .limit(batch_size)
    )
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    rows = query.all()
    processed = 0

    for row in rows:
        # Claim the row so a crashed send is retried later instead of immediately.
        try:
            row.attempts = int(row.attempts or 0) + 1
            row.status = "RETRYING"
            row.next_retry_at = now + datetime.timedelta(seconds=30)
            db.add(row)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.warning("Failed to mark outbox retrying id=%s err=%s", row.id, exc)
            continue

        try:
            providers.send(row)
            row.status = "SENT"
            row.sent_at = datetime.datetime.now(datetime.timezone.utc)
            row.last_error = None
            row.next_retry_at = None
        except Exception as exc:
            row.last_error = str(exc)
            logger.warning(
                "Notification send failed id=%s channel=%s target=%s pass_id=%s attempts=%s err=%s",
                row.id,
                row.channel,
                row.target,
                row.pass_id,
                row.attempts,
                exc,
            )
            if row.attempts >= max_attempts:
                row.status = "FAILED"
                row.next_retry_at = None
            else:
                row.status = "RETRYING"
                row.next_retry_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
                    seconds=backoff_seconds(row.attempts)
                )

        try:
            db.add(row)
            db.commit()
            processed += 1
        except Exception as exc:
            db.rollback()
            logger.warning("Failed to update outbox id=%s err=%s", row.id, exc)

    return processed
