"""
Gate pass endpoints: request, approve, verify and QR retrieval.
"""

from __future__ import annotations

import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import case
from sqlalchemy.orm import Session

from ...core.auth import UserContext, get_current_user, require_roles
from ...core.config import settings
from ...core.db import get_db
from ...core.errors import NotFoundError, ValidationError
from ...core.pagination import DEFAULT_PAGE_SIZE, clamp_page_size, set_pagination_headers
from ...models.gate_pass import GatePass
from ...schemas.gate_pass import DecisionIn, GatePassCreate, GatePassOut, QrOut, ScanIn, VerifyIn
from ...services.pass_artifacts import get_qr_artifact
from ...services.pass_codec import verify_token
from ...services import pass_workflow


router = APIRouter(prefix="/api/v1/passes", tags=["passes"])

CODE_VIEWER_ROLES = {"security", "admin"}
SECURITY_VISIBLE_STATUSES = ("approved", "used", "expired")
PRIORITY_RANK = {"emergency": 0, "high": 1, "medium": 2, "low": 3}


def _can_view(gate_pass: GatePass, user: UserContext) -> bool:
    if user.role == "admin":
        return True
    if user.role == "student":
        return gate_pass.student_id == user.user_id
    if user.role == "mentor":
        return gate_pass.mentor_id == user.user_id
    if user.role == "hod":
        return gate_pass.hod_id == user.user_id
    if user.role == "security":
        return gate_pass.status in SECURITY_VISIBLE_STATUSES
    return False


def _to_out(gate_pass: GatePass, user: UserContext) -> GatePassOut:
    out = GatePassOut.model_validate(gate_pass)
    owner = user.role == "student" and gate_pass.student_id == user.user_id
    if not owner and user.role not in CODE_VIEWER_ROLES:
        out.security_code = None
    return out


def _scoped_query(db: Session, user: UserContext):
    query = db.query(GatePass)
    if user.role == "student":
        return query.filter(GatePass.student_id == user.user_id)
    if user.role == "mentor":
        return query.filter(GatePass.mentor_id == user.user_id)
    if user.role == "hod":
        return query.filter(GatePass.hod_id == user.user_id)
    if user.role == "security":
        return query.filter(GatePass.status.in_(SECURITY_VISIBLE_STATUSES))
    return query


def _get_visible(db: Session, pass_id: str, user: UserContext) -> GatePass:
    gate_pass = db.get(GatePass, pass_id)
    if gate_pass is None:
        raise NotFoundError("Gate pass not found")
    if not _can_view(gate_pass, user):
        raise HTTPException(status_code=403, detail="Forbidden")
    return gate_pass


@router.post("", response_model=GatePassOut, status_code=201)
def create_gate_pass(
    payload: GatePassCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("student")),
) -> GatePassOut:
    gate_pass = pass_workflow.create_pass(
        db,
        student_id=user.user_id,
        departure_time=payload.departure_time,
        return_time=payload.return_time,
        reason=payload.reason,
        destination=payload.destination,
        category=payload.category,
        priority=payload.priority,
        emergency_contact=payload.emergency_contact.model_dump() if payload.emergency_contact else None,
    )
    return _to_out(gate_pass, user)


@router.get("", response_model=list[GatePassOut])
def list_gate_passes(
    response: Response,
    status: str | None = Query(None),
    category: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list[GatePassOut]:
    page_size = clamp_page_size(page_size)
    query = _scoped_query(db, user)
    if status:
        if status not in pass_workflow.PASS_STATUSES:
            raise ValidationError(f"Unknown status {status!r}")
        query = query.filter(GatePass.status == status)
    if category:
        query = query.filter(GatePass.category == category)
    total = query.count()
    items = (
        query.order_by(GatePass.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return [_to_out(gp, user) for gp in items]


@router.get("/for-approval", response_model=list[GatePassOut])
def passes_for_approval(
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("mentor", "hod")),
) -> list[GatePassOut]:
    if user.role == "mentor":
        query = db.query(GatePass).filter(GatePass.mentor_id == user.user_id, GatePass.status == "pending")
    else:
        query = db.query(GatePass).filter(GatePass.hod_id == user.user_id, GatePass.status == "mentor_approved")
    urgency = case(PRIORITY_RANK, value=GatePass.priority, else_=len(PRIORITY_RANK))
    items = query.order_by(urgency.asc(), GatePass.created_at.asc()).all()
    return [_to_out(gp, user) for gp in items]


@router.get("/active", response_model=list[GatePassOut])
def active_passes(
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("security", "admin")),
) -> list[GatePassOut]:
    now = datetime.datetime.now(datetime.timezone.utc)
    items = (
        db.query(GatePass)
        .filter(
            GatePass.status == "approved",
            GatePass.is_used.is_(False),
            GatePass.expires_at >= now,
        )
        .order_by(GatePass.expires_at.asc())
        .all()
    )
    return [_to_out(gp, user) for gp in items]


@router.post("/scan", response_model=GatePassOut)
def scan_qr(
    payload: ScanIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("security")),
) -> GatePassOut:
    check = verify_token(payload.token, settings.gatepass_code_secret)
    if not check.valid:
        raise ValidationError("QR code is not valid", details={"reason": check.reason})
    gate_pass = pass_workflow.verify_pass(
        db,
        check.claims.pass_id,
        actor_id=user.user_id,
        action=payload.action,
        security_code=check.claims.security_code,
    )
    return _to_out(gate_pass, user)


@router.get("/{pass_id}", response_model=GatePassOut)
def get_gate_pass(
    pass_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> GatePassOut:
    return _to_out(_get_visible(db, pass_id, user), user)


@router.post("/{pass_id}/mentor-approve", response_model=GatePassOut)
def mentor_approve(
    pass_id: str,
    payload: DecisionIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("mentor")),
) -> GatePassOut:
    gate_pass = pass_workflow.mentor_decide(
        db, pass_id, actor_id=user.user_id, decision=payload.action, comments=payload.comments
    )
    return _to_out(gate_pass, user)


@router.post("/{pass_id}/hod-approve", response_model=GatePassOut)
def hod_approve(
    pass_id: str,
    payload: DecisionIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("hod")),
) -> GatePassOut:
    gate_pass = pass_workflow.hod_decide(
        db, pass_id, actor_id=user.user_id, decision=payload.action, comments=payload.comments
    )
    return _to_out(gate_pass, user)


@router.post("/{identifier}/verify", response_model=GatePassOut)
def verify_gate_pass(
    identifier: str,
    payload: VerifyIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("security")),
) -> GatePassOut:
    gate_pass = pass_workflow.verify_pass(
        db,
        identifier,
        actor_id=user.user_id,
        action=payload.action,
        security_code=payload.security_code,
    )
    return _to_out(gate_pass, user)


@router.get("/{pass_id}/qr", response_model=QrOut)
def get_gate_pass_qr(
    pass_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("student", "security", "admin")),
) -> QrOut:
    gate_pass = _get_visible(db, pass_id, user)
    if not gate_pass.qr_token:
        raise NotFoundError("QR code is available only after full approval")
    artifact = get_qr_artifact(db, gate_pass.id)
    return QrOut(
        pass_id=gate_pass.id,
        pass_code=gate_pass.pass_code,
        token=gate_pass.qr_token,
        expires_at=gate_pass.expires_at,
        image_status=artifact.status if artifact else "PENDING",
        image=artifact.content if artifact and artifact.status == "DONE" else None,
    )
