"""
Approval workflow for gate passes.

Lifecycle: ``pending -> mentor_approved -> approved -> used``, with
``rejected`` reachable from the two approval stages and ``expired`` from
``approved``. ``used``, ``expired`` and ``rejected`` are terminal.

Every mutation goes through ``apply_transition``: the record is reloaded,
all preconditions are checked against that fresh copy, fields and the
history entry are written in one commit guarded by the row version, and
notification events are emitted only after the commit succeeded. A commit
that loses a race against another writer is rolled back and the whole step
is re-run against the newer row.
"""

from __future__ import annotations

import datetime
import logging
import secrets
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import settings
from ..core.errors import ConflictError, GatePassError, NotFoundError, PolicyError, ValidationError
from ..models.gate_pass import GatePass, GatePassHistory
from .directory import find_department_hod, find_mentor, get_principal
from .notifications import (
    NotificationDispatcher,
    NotificationEvent,
    OutboxDispatcher,
    emit_after_commit,
    make_event,
)
from .pass_artifacts import enqueue_qr_render
from .pass_codec import PassWindow, build_verification_token, derive_security_code


logger = logging.getLogger("pass_workflow")

PASS_STATUSES = ("pending", "mentor_approved", "approved", "used", "expired", "rejected")
ACTIVE_STATUSES = ("pending", "mentor_approved", "approved")
TERMINAL_STATUSES = frozenset({"used", "expired", "rejected"})
APPROVAL_STATUSES = ("pending", "approved", "rejected")
CATEGORIES = ("medical", "family", "academic", "personal", "emergency", "other")
PRIORITIES = ("low", "medium", "high", "emergency")
DECISIONS = ("approve", "reject")
VERIFY_ACTIONS = ("exit", "entry")
MAX_COMMENT_LENGTH = 300
MAX_COMMIT_ATTEMPTS = 3


@dataclass
class Transition:
    """Outcome of one workflow step, applied by ``apply_transition``."""

    action: Optional[str]  # history action; None for bookkeeping-only updates
    actor_id: Optional[str] = None
    comments: Optional[str] = None
    events: list[NotificationEvent] = field(default_factory=list)
    after_commit: list[Callable[[], object]] = field(default_factory=list)


Step = Callable[[GatePass, datetime.datetime], Transition]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def derive_status(mentor_status: str, hod_status: str, *, is_used: bool, expired: bool) -> str:
    if mentor_status == "rejected" or hod_status == "rejected":
        return "rejected"
    if is_used:
        return "used"
    if expired:
        return "expired"
    if mentor_status == "approved" and hod_status == "approved":
        return "approved"
    if mentor_status == "approved":
        return "mentor_approved"
    return "pending"


def sync_status(gate_pass: GatePass) -> str:
    gate_pass.status = derive_status(
        gate_pass.mentor_status,
        gate_pass.hod_status,
        is_used=bool(gate_pass.is_used),
        expired=gate_pass.expired_at is not None,
    )
    return gate_pass.status


def _check_comments(comments: Optional[str]) -> Optional[str]:
    if comments is None:
        return None
    comments = comments.strip()
    if len(comments) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comments cannot exceed {MAX_COMMENT_LENGTH} characters")
    return comments or None


def _pass_ref(gate_pass: GatePass) -> dict:
    return {"pass_code": gate_pass.pass_code, "category": gate_pass.category}


def apply_transition(
    db: Session,
    pass_id: str,
    step: Step,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime.datetime] = None,
) -> GatePass:
    """Run ``step`` against the freshest row and commit it with a version check.

    ``step`` must raise a ``GatePassError`` before touching the record when a
    precondition fails; it returns the history action and the events to emit.
    """
    dispatcher = dispatcher or OutboxDispatcher(db)
    for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
        gate_pass = db.get(GatePass, pass_id, populate_existing=True)
        if gate_pass is None:
            raise NotFoundError(f"Gate pass {pass_id} not found")
        ts = ensure_utc(now) if now else _utcnow()
        try:
            transition = step(gate_pass, ts)
        except GatePassError:
            db.rollback()
            raise
        if transition.action:
            gate_pass.history.append(
                GatePassHistory(
                    seq=gate_pass.version + 1,
                    action=transition.action,
                    actor_id=transition.actor_id,
                    comments=transition.comments,
                    created_at=ts,
                )
            )
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.info("Concurrent update on pass=%s attempt=%s; re-checking", pass_id, attempt)
            continue
        if transition.action:
            logger.info(
                "Pass transition pass=%s action=%s status=%s actor=%s",
                pass_id,
                transition.action,
                gate_pass.status,
                transition.actor_id,
            )
        emit_after_commit(dispatcher, transition.events)
        for followup in transition.after_commit:
            try:
                followup()
            except Exception as exc:
                db.rollback()
                logger.warning("Post-commit task failed pass=%s err=%s", pass_id, exc)
        return gate_pass
    raise ConflictError("Gate pass was modified concurrently; retry the operation")


def create_pass(
    db: Session,
    *,
    student_id: str,
    departure_time: datetime.datetime,
    return_time: datetime.datetime,
    reason: str,
    destination: str,
    category: str,
    emergency_contact: Optional[dict] = None,
    priority: str = "medium",
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime.datetime] = None,
) -> GatePass:
    ts = ensure_utc(now) if now else _utcnow()
    departure = ensure_utc(departure_time)
    returning = ensure_utc(return_time)
    if departure <= ts:
        raise ValidationError("Departure time must be in the future")
    if returning <= departure:
        raise ValidationError("Return time must be after departure time")
    if category not in CATEGORIES:
        raise ValidationError(f"Invalid category {category!r}", details={"allowed": list(CATEGORIES)})
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority {priority!r}", details={"allowed": list(PRIORITIES)})
    reason = (reason or "").strip()
    destination = (destination or "").strip()
    if not reason or not destination:
        raise ValidationError("Reason and destination are required")

    student = get_principal(db, student_id)
    if student is None or student.role != "student":
        raise PolicyError("Only registered students can request gate passes")
    outstanding = (
        db.query(func.count(GatePass.id))
        .filter(GatePass.student_id == student_id, GatePass.status.in_(ACTIVE_STATUSES))
        .scalar()
        or 0
    )
    if outstanding >= settings.max_active_passes:
        raise PolicyError(
            f"You cannot have more than {settings.max_active_passes} pending gate passes at a time",
            details={"outstanding": outstanding},
        )
    mentor = find_mentor(db, student)
    if mentor is None:
        raise PolicyError("You must have an assigned mentor to request gate passes")
    hod = find_department_hod(db, student.department)
    if hod is None:
        raise PolicyError("No HOD found for your department")

    gate_pass = GatePass(
        student_id=student.id,
        mentor_id=mentor.id,
        hod_id=hod.id,
        reason=reason,
        destination=destination,
        category=category,
        priority=priority,
        emergency_contact=emergency_contact,
        departure_time=departure,
        return_time=returning,
        mentor_status="pending",
        hod_status="pending",
        is_used=False,
        created_at=ts,
    )
    sync_status(gate_pass)
    gate_pass.history.append(GatePassHistory(seq=1, action="created", actor_id=student.id, created_at=ts))
    db.add(gate_pass)
    db.commit()
    logger.info("Pass created pass=%s student=%s mentor=%s hod=%s", gate_pass.id, student.id, mentor.id, hod.id)

    emit_after_commit(
        dispatcher or OutboxDispatcher(db),
        [
            make_event(
                mentor.id,
                "submitted",
                gate_pass.id,
                student_name=student.name,
                reason=gate_pass.reason,
                **_pass_ref(gate_pass),
            )
        ],
    )
    return gate_pass


def mentor_decide(
    db: Session,
    pass_id: str,
    *,
    actor_id: str,
    decision: str,
    comments: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime.datetime] = None,
) -> GatePass:
    if decision not in DECISIONS:
        raise ValidationError("Action must be approve or reject")
    comments = _check_comments(comments)

    def step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
        if gate_pass.mentor_id != actor_id:
            raise PolicyError("You can only decide gate passes of your mentees")
        if gate_pass.mentor_status != "pending":
            raise ConflictError(
                "This gate pass has already been processed",
                terminal=True,
                details={"mentor_status": gate_pass.mentor_status},
            )
        approved = decision == "approve"
        gate_pass.mentor_status = "approved" if approved else "rejected"
        gate_pass.mentor_decided_at = ts
        gate_pass.mentor_comments = comments
        gate_pass.mentor_decided_by = actor_id
        sync_status(gate_pass)
        ref = _pass_ref(gate_pass)
        if approved:
            student = get_principal(db, gate_pass.student_id)
            events = [
                make_event(gate_pass.student_id, "approved", gate_pass.id, stage="mentor", **ref),
                make_event(
                    gate_pass.hod_id,
                    "submitted",
                    gate_pass.id,
                    student_name=student.name if student else None,
                    reason=gate_pass.reason,
                    **ref,
                ),
            ]
            return Transition("mentor_approved", actor_id, comments, events)
        events = [
            make_event(gate_pass.student_id, "rejected", gate_pass.id, stage="mentor", reason=comments, **ref),
        ]
        return Transition("mentor_rejected", actor_id, comments, events)

    return apply_transition(db, pass_id, step, dispatcher=dispatcher, now=now)


def hod_decide(
    db: Session,
    pass_id: str,
    *,
    actor_id: str,
    decision: str,
    comments: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime.datetime] = None,
) -> GatePass:
    if decision not in DECISIONS:
        raise ValidationError("Action must be approve or reject")
    comments = _check_comments(comments)

    def step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
        if gate_pass.mentor_status != "approved":
            raise PolicyError(
                "mentor approval required",
                terminal=gate_pass.mentor_status == "rejected",
                details={"mentor_status": gate_pass.mentor_status},
            )
        if gate_pass.hod_id != actor_id:
            raise PolicyError("You can only decide gate passes of your department")
        if gate_pass.hod_status != "pending":
            raise ConflictError(
                "This gate pass has already been processed",
                terminal=True,
                details={"hod_status": gate_pass.hod_status},
            )
        approved = decision == "approve"
        gate_pass.hod_status = "approved" if approved else "rejected"
        gate_pass.hod_decided_at = ts
        gate_pass.hod_comments = comments
        gate_pass.hod_decided_by = actor_id
        ref = _pass_ref(gate_pass)
        if not approved:
            sync_status(gate_pass)
            events = [make_event(gate_pass.student_id, "rejected", gate_pass.id, stage="hod", reason=comments, **ref)]
            return Transition("hod_rejected", actor_id, comments, events)

        gate_pass.expires_at = ts + datetime.timedelta(minutes=settings.pass_validity_min)
        sync_status(gate_pass)
        secret = settings.gatepass_code_secret
        gate_pass.security_code = derive_security_code(gate_pass.id, secret)
        gate_pass.qr_token = build_verification_token(
            pass_id=gate_pass.id,
            student_id=gate_pass.student_id,
            category=gate_pass.category,
            window=PassWindow(
                departure_time=ensure_utc(gate_pass.departure_time),
                return_time=ensure_utc(gate_pass.return_time),
            ),
            status=gate_pass.status,
            code=gate_pass.security_code,
            secret=secret,
            now=ts,
            ttl_hours=settings.qr_token_ttl_hours,
        )
        events = [
            make_event(gate_pass.student_id, "fully_approved", gate_pass.id, expires_at=gate_pass.expires_at, **ref),
        ]
        pid = gate_pass.id
        return Transition("hod_approved", actor_id, comments, events, after_commit=[lambda: enqueue_qr_render(db, pid)])

    return apply_transition(db, pass_id, step, dispatcher=dispatcher, now=now)


def resolve_pass(db: Session, identifier: str) -> GatePass:
    """Find a pass by id, then pass code, then verification token."""
    identifier = (identifier or "").strip()
    if not identifier:
        raise NotFoundError("Gate pass not found")
    gate_pass = db.get(GatePass, identifier)
    if gate_pass is None:
        gate_pass = db.query(GatePass).filter(GatePass.pass_code == identifier).first()
    if gate_pass is None:
        gate_pass = db.query(GatePass).filter(GatePass.unique_token == identifier).first()
    if gate_pass is None:
        raise NotFoundError("Invalid gate pass ID or token")
    return gate_pass


def _check_security_code(gate_pass: GatePass, provided: Optional[str]) -> None:
    if provided is None or not provided.strip():
        return
    expected = (gate_pass.security_code or "").upper().encode("utf-8")
    if not secrets.compare_digest(expected, provided.strip().upper().encode("utf-8")):
        raise ValidationError("The security code does not match")


def verify_pass(
    db: Session,
    identifier: str,
    *,
    actor_id: str,
    action: str = "exit",
    security_code: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime.datetime] = None,
) -> GatePass:
    if action not in VERIFY_ACTIONS:
        raise ValidationError("Action must be exit or entry")
    pass_id = resolve_pass(db, identifier).id

    def step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
        if action == "entry":
            if not gate_pass.is_used:
                raise PolicyError(
                    f"Entry can only be recorded after exit; this gate pass is {gate_pass.status}",
                    details={"status": gate_pass.status},
                )
            _check_security_code(gate_pass, security_code)
            gate_pass.entry_time = ts
            return Transition(None, actor_id)

        if gate_pass.is_used:
            raise ConflictError("This gate pass has already been used for exit", terminal=True)
        if gate_pass.status != "approved":
            raise PolicyError(
                f"This gate pass is {gate_pass.status}",
                terminal=gate_pass.status in TERMINAL_STATUSES,
                details={"status": gate_pass.status},
            )
        if gate_pass.expires_at is None or ts > ensure_utc(gate_pass.expires_at):
            raise PolicyError("This gate pass has expired", terminal=True, details={"status": "expired"})
        _check_security_code(gate_pass, security_code)
        gate_pass.is_used = True
        gate_pass.used_at = ts
        gate_pass.used_by = actor_id
        sync_status(gate_pass)
        events = [make_event(gate_pass.student_id, "used", gate_pass.id, used_at=ts, **_pass_ref(gate_pass))]
        return Transition("used", actor_id, None, events)

    return apply_transition(db, pass_id, step, dispatcher=dispatcher, now=now)


def expire_pass(
    db: Session,
    pass_id: str,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime.datetime] = None,
) -> GatePass:
    def step(gate_pass: GatePass, ts: datetime.datetime) -> Transition:
        if gate_pass.status != "approved" or gate_pass.is_used:
            raise ConflictError(f"Gate pass is {gate_pass.status}; nothing to expire", terminal=True)
        if gate_pass.expires_at is None or ensure_utc(gate_pass.expires_at) >= ts:
            raise PolicyError("Gate pass has not reached its expiry time")
        gate_pass.expired_at = ts
        sync_status(gate_pass)
        events = [make_event(gate_pass.student_id, "expired", gate_pass.id, expired_at=ts, **_pass_ref(gate_pass))]
        return Transition("expired", None, None, events)

    return apply_transition(db, pass_id, step, dispatcher=dispatcher, now=now)
