"""
Time-driven sweeps over gate passes.

Each tick runs four bounded sweeps: auto-expiry, expiry warnings, overdue
returns and pending-approval reminders. Every per-pass change goes through
``pass_workflow.apply_transition`` so a sweep racing with a request on the
same pass re-checks its condition against the committed row; a pass that
no longer qualifies is skipped.
"""

from __future__ import annotations

import datetime
import logging
import math
import os
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import SessionLocal
from ..core.errors import ConflictError, GatePassError, log_exception
from ..models.gate_pass import GatePass
from .directory import security_principal_ids
from .notifications import NotificationDispatcher, make_event
from .pass_workflow import Transition, apply_transition, ensure_utc, expire_pass


logger = logging.getLogger("expiry_scheduler")


@dataclass
class SweepReport:
    expired: int = 0
    warned: int = 0
    overdue: int = 0
    reminded: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.expired + self.warned + self.overdue + self.reminded


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _run_each(
    db: Session,
    pass_ids: list[str],
    fn: Callable[[str], object],
    label: str,
    report: SweepReport,
) -> int:
    done = 0
    for pass_id in pass_ids:
        try:
            fn(pass_id)
            done += 1
        except GatePassError as exc:
            report.skipped += 1
            logger.info("Sweep %s skipped pass=%s reason=%s", label, pass_id, exc.message)
        except SQLAlchemyError as exc:
            db.rollback()
            report.skipped += 1
            log_exception(logger, "Sweep pass failed", extra={"sweep": label, "pass": pass_id}, exc=exc)
    return done


def sweep_expired(
    db: Session,
    *,
    now: datetime.datetime,
    batch_size: int,
    report: SweepReport,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> int:
    rows = (
        db.query(GatePass.id)
        .filter(
            GatePass.status == "approved",
            GatePass.is_used.is_(False),
            GatePass.expires_at.isnot(None),
            GatePass.expires_at < now,
        )
        .order_by(GatePass.expires_at.asc())
        .limit(batch_size)
        .all()
    )
    done = _run_each(
        db,
        [r.id for r in rows],
        lambda pid: expire_pass(db, pid, dispatcher=dispatcher, now=now),
        "expire",
        report,
    )
    report.expired += done
    return done


def _warning_step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
    expires_at = ensure_utc(gate_pass.expires_at) if gate_pass.expires_at else None
    if (
        gate_pass.status != "approved"
        or gate_pass.is_used
        or gate_pass.expiry_warning_sent_at is not None
        or expires_at is None
        or expires_at < ts
    ):
        raise ConflictError("Pass no longer needs an expiry warning")
    minutes_left = max(1, math.ceil((expires_at - ts).total_seconds() / 60))
    gate_pass.expiry_warning_sent_at = ts
    event = make_event(
        gate_pass.student_id,
        "expiring_soon",
        gate_pass.id,
        pass_code=gate_pass.pass_code,
        minutes_left=minutes_left,
        expires_at=expires_at,
    )
    return Transition(None, events=[event])


def sweep_expiry_warnings(
    db: Session,
    *,
    now: datetime.datetime,
    batch_size: int,
    report: SweepReport,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> int:
    horizon = now + datetime.timedelta(minutes=settings.expiry_warning_min)
    rows = (
        db.query(GatePass.id)
        .filter(
            GatePass.status == "approved",
            GatePass.is_used.is_(False),
            GatePass.expiry_warning_sent_at.is_(None),
            GatePass.expires_at >= now,
            GatePass.expires_at <= horizon,
        )
        .order_by(GatePass.expires_at.asc())
        .limit(batch_size)
        .all()
    )
    done = _run_each(
        db,
        [r.id for r in rows],
        lambda pid: apply_transition(db, pid, _warning_step, dispatcher=dispatcher, now=now),
        "warn",
        report,
    )
    report.warned += done
    return done


def sweep_overdue(
    db: Session,
    *,
    now: datetime.datetime,
    batch_size: int,
    report: SweepReport,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> int:
    rows = (
        db.query(GatePass.id)
        .filter(
            GatePass.status == "used",
            GatePass.entry_time.is_(None),
            GatePass.overdue_alerted_at.is_(None),
            GatePass.return_time < now,
        )
        .order_by(GatePass.return_time.asc())
        .limit(batch_size)
        .all()
    )
    if not rows:
        return 0
    guards = security_principal_ids(db)

    def step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
        if (
            gate_pass.status != "used"
            or gate_pass.entry_time is not None
            or gate_pass.overdue_alerted_at is not None
            or ensure_utc(gate_pass.return_time) >= ts
        ):
            raise ConflictError("Pass is no longer overdue")
        gate_pass.overdue_alerted_at = ts
        payload = {"pass_code": gate_pass.pass_code, "return_time": ensure_utc(gate_pass.return_time)}
        events = [make_event(gate_pass.student_id, "overdue", gate_pass.id, **payload)]
        events.extend(make_event(guard_id, "overdue", gate_pass.id, **payload) for guard_id in guards)
        return Transition(None, events=events)

    done = _run_each(
        db,
        [r.id for r in rows],
        lambda pid: apply_transition(db, pid, step, dispatcher=dispatcher, now=now),
        "overdue",
        report,
    )
    report.overdue += done
    return done


def _mentor_reminder_step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
    if gate_pass.status != "pending" or gate_pass.mentor_reminder_sent_at is not None:
        raise ConflictError("Mentor decision no longer pending")
    gate_pass.mentor_reminder_sent_at = ts
    event = make_event(gate_pass.mentor_id, "reminder", gate_pass.id, pass_code=gate_pass.pass_code, stage="mentor")
    return Transition(None, events=[event])


def _hod_reminder_step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
    if gate_pass.status != "mentor_approved" or gate_pass.hod_reminder_sent_at is not None:
        raise ConflictError("HOD decision no longer pending")
    gate_pass.hod_reminder_sent_at = ts
    event = make_event(gate_pass.hod_id, "reminder", gate_pass.id, pass_code=gate_pass.pass_code, stage="hod")
    return Transition(None, events=[event])


def sweep_reminders(
    db: Session,
    *,
    now: datetime.datetime,
    batch_size: int,
    report: SweepReport,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> int:
    cutoff = now - datetime.timedelta(minutes=settings.reminder_after_min)
    mentor_rows = (
        db.query(GatePass.id)
        .filter(
            GatePass.status == "pending",
            GatePass.mentor_reminder_sent_at.is_(None),
            GatePass.created_at <= cutoff,
        )
        .order_by(GatePass.created_at.asc())
        .limit(batch_size)
        .all()
    )
    done = _run_each(
        db,
        [r.id for r in mentor_rows],
        lambda pid: apply_transition(db, pid, _mentor_reminder_step, dispatcher=dispatcher, now=now),
        "remind-mentor",
        report,
    )
    remaining = batch_size - len(mentor_rows)
    if remaining > 0:
        hod_rows = (
            db.query(GatePass.id)
            .filter(
                GatePass.status == "mentor_approved",
                GatePass.hod_reminder_sent_at.is_(None),
                GatePass.mentor_decided_at <= cutoff,
            )
            .order_by(GatePass.mentor_decided_at.asc())
            .limit(remaining)
            .all()
        )
        done += _run_each(
            db,
            [r.id for r in hod_rows],
            lambda pid: apply_transition(db, pid, _hod_reminder_step, dispatcher=dispatcher, now=now),
            "remind-hod",
            report,
        )
    report.reminded += done
    return done


def run_sweeps(
    db: Session,
    *,
    now: Optional[datetime.datetime] = None,
    batch_size: Optional[int] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> SweepReport:
    """Run one scheduler tick. Expiry runs before warnings so an expired pass is never warned."""
    now = ensure_utc(now) if now else _utcnow()
    batch_size = batch_size or settings.sweep_batch_size
    report = SweepReport()
    sweep_expired(db, now=now, batch_size=batch_size, report=report, dispatcher=dispatcher)
    sweep_expiry_warnings(db, now=now, batch_size=batch_size, report=report, dispatcher=dispatcher)
    sweep_overdue(db, now=now, batch_size=batch_size, report=report, dispatcher=dispatcher)
    sweep_reminders(db, now=now, batch_size=batch_size, report=report, dispatcher=dispatcher)
    if report.total or report.skipped:
        logger.info(
            "Sweep tick expired=%s warned=%s overdue=%s reminded=%s skipped=%s",
            report.expired,
            report.warned,
            report.overdue,
            report.reminded,
            report.skipped,
        )
    return report


def run_expiry_scheduler(stop_event: threading.Event, session_factory=SessionLocal) -> None:
    interval_sec = int(os.getenv("EXPIRY_SWEEP_INTERVAL_SEC", str(settings.expiry_sweep_interval_sec)))
    interval_sec = max(10, interval_sec)
    logger.info("Expiry scheduler started (interval=%ss)", interval_sec)
    while not stop_event.is_set():
        try:
            with session_factory() as db:
                run_sweeps(db)
        except Exception as exc:
            logger.exception("Expiry scheduler cycle failed: %s", exc)
        stop_event.wait(interval_sec)
    logger.info("Expiry scheduler stopped")
