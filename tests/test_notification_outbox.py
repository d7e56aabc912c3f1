import datetime

import pytest

from gatepass.models.notification_outbox import NotificationOutbox
from gatepass.services.notification_worker import (
    NotificationProvider,
    ProviderSet,
    backoff_seconds,
    process_outbox_batch,
)
from gatepass.services.notifications import (
    NotificationDispatcher,
    OutboxDispatcher,
    build_notification_content,
    emit_after_commit,
    make_event,
)


class _RecordingProvider(NotificationProvider):
    def __init__(self):
        self.sent = []

    def send(self, outbox):
        self.sent.append((outbox.channel, outbox.target, outbox.title))
        return None


class _FailingProvider(NotificationProvider):
    def send(self, outbox):
        raise RuntimeError("smtp down")


def _row(db, **overrides) -> NotificationOutbox:
    fields = dict(
        kind="submitted",
        recipient_id="mentor-1",
        pass_id="pass-1",
        priority="medium",
        title="New Gate Pass Request",
        message="Asha requested a medical gate pass GP-1.",
        channel="LOG",
        target="mentor-1",
        status="PENDING",
        attempts=0,
    )
    fields.update(overrides)
    row = NotificationOutbox(**fields)
    db.add(row)
    db.commit()
    return row


def test_make_event_rejects_unknown_kind():
    with pytest.raises(ValueError):
        make_event("stu-1", "birthday", None)


def test_event_priorities():
    assert make_event("stu-1", "overdue", "p").priority == "urgent"
    assert make_event("stu-1", "expiring_soon", "p").priority == "high"
    assert make_event("stu-1", "reminder", "p").priority == "low"
    assert make_event("stu-1", "submitted", "p").priority == "medium"


def test_notification_content_per_kind():
    expires = datetime.datetime(2026, 10, 18, 10, 0, tzinfo=datetime.timezone.utc)
    content = build_notification_content(make_event("stu-1", "fully_approved", "p", pass_code="GP-9", expires_at=expires))
    assert content.title == "Gate Pass Ready"
    assert "GP-9" in content.message
    assert "18 Oct 2026 10:00 UTC" in content.message

    content = build_notification_content(make_event("stu-1", "rejected", "p", pass_code="GP-9", stage="hod", reason=None))
    assert "HOD" in content.message
    assert "No reason provided" in content.message

    content = build_notification_content(make_event("stu-1", "expiring_soon", "p", pass_code="GP-9", minutes_left=7))
    assert "7 minutes" in content.message


def test_outbox_dispatcher_picks_email_only_when_smtp_configured(db, people, monkeypatch):
    dispatcher = OutboxDispatcher(db)
    dispatcher.emit(make_event(people["mentor"], "submitted", "pass-1", pass_code="GP-1"))
    row = db.query(NotificationOutbox).one()
    assert row.channel == "LOG"
    assert row.target == people["mentor"]

    from gatepass.core.config import settings

    monkeypatch.setattr(settings, "smtp_host", "127.0.0.1")
    dispatcher.emit(make_event(people["mentor"], "reminder", "pass-1", pass_code="GP-1"))
    dispatcher.emit(make_event(people["hod"], "reminder", "pass-1", pass_code="GP-1"))
    rows = {r.recipient_id + ":" + r.kind: r for r in db.query(NotificationOutbox).all()}
    assert rows[people["mentor"] + ":reminder"].channel == "EMAIL"
    assert rows[people["mentor"] + ":reminder"].target == "rao@example.edu"
    # HOD has no e-mail address on file.
    assert rows[people["hod"] + ":reminder"].channel == "LOG"


def test_emit_after_commit_swallows_failures():
    class _Broken:
        def __init__(self):
            self.calls = 0

        def emit(self, event):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")

    broken = _Broken()
    events = [make_event("a", "used", "p"), make_event("b", "used", "p")]
    assert emit_after_commit(broken, events) == 1
    assert broken.calls == 2


def test_worker_marks_sent(db):
    row = _row(db)
    log = _RecordingProvider()
    processed = process_outbox_batch(db, providers=ProviderSet(log=log, email=_FailingProvider()))
    assert processed == 1
    db.refresh(row)
    assert row.status == "SENT"
    assert row.attempts == 1
    assert row.sent_at is not None
    assert log.sent == [("LOG", "mentor-1", "New Gate Pass Request")]


def test_worker_retries_with_backoff_then_fails(db):
    row = _row(db, channel="EMAIL", target="rao@example.edu")
    providers = ProviderSet(log=_RecordingProvider(), email=_FailingProvider())
    process_outbox_batch(db, providers=providers, max_attempts=2)
    db.refresh(row)
    assert row.status == "RETRYING"
    assert row.attempts == 1
    assert "smtp down" in row.last_error
    assert row.next_retry_at is not None

    # Not due yet: skipped.
    assert process_outbox_batch(db, providers=providers, max_attempts=2) == 0

    row.next_retry_at = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(seconds=1)
    db.commit()
    process_outbox_batch(db, providers=providers, max_attempts=2)
    db.refresh(row)
    assert row.status == "FAILED"
    assert row.attempts == 2
    assert row.next_retry_at is None


def test_unsupported_channel_is_a_send_failure(db):
    row = _row(db, channel="SMS")
    process_outbox_batch(db, providers=ProviderSet(log=_RecordingProvider(), email=_RecordingProvider()), max_attempts=1)
    db.refresh(row)
    assert row.status == "FAILED"
    assert "Unsupported channel" in row.last_error


def test_backoff_schedule():
    assert backoff_seconds(1) == 60
    assert backoff_seconds(2) == 300
    assert backoff_seconds(5) == 21600
    assert backoff_seconds(50) == 21600


def test_dispatcher_base_requires_emit_override():
    with pytest.raises(NotImplementedError):
        NotificationDispatcher().emit(make_event("stu-1", "used", "p"))
    assert emit_after_commit(NotificationDispatcher(), [make_event("stu-1", "used", "p")]) == 0
