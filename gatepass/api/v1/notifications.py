"""
In-app notification endpoints for the calling principal.
"""

from __future__ import annotations

import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ...core.auth import UserContext, get_current_user, require_roles
from ...core.db import get_db
from ...core.pagination import clamp_page_size, set_pagination_headers
from ...models.notification_outbox import NotificationOutbox
from ...schemas.notifications import NotificationDeliveryOut, NotificationOut


router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationOut])
def list_my_notifications(
    response: Response,
    unread: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list[NotificationOut]:
    page_size = clamp_page_size(page_size)
    query = db.query(NotificationOutbox).filter(NotificationOutbox.recipient_id == user.user_id)
    if unread:
        query = query.filter(NotificationOutbox.read_at.is_(None))
    total = query.count()
    items = (
        query.order_by(NotificationOutbox.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return items


@router.get("/unread-count")
def unread_count(
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    count = (
        db.query(NotificationOutbox)
        .filter(NotificationOutbox.recipient_id == user.user_id, NotificationOutbox.read_at.is_(None))
        .count()
    )
    return {"count": count}


@router.patch("/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    now = datetime.datetime.now(datetime.timezone.utc)
    count = (
        db.query(NotificationOutbox)
        .filter(NotificationOutbox.recipient_id == user.user_id, NotificationOutbox.read_at.is_(None))
        .update({NotificationOutbox.read_at: now}, synchronize_session=False)
    )
    db.commit()
    return {"message": "All notifications marked as read", "count": count}


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> NotificationOut:
    row = db.get(NotificationOutbox, notification_id)
    if row is None or row.recipient_id != user.user_id:
        raise HTTPException(status_code=404, detail="Notification not found")
    if row.read_at is None:
        row.read_at = datetime.datetime.now(datetime.timezone.utc)
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


@router.get("/deliveries", response_model=list[NotificationDeliveryOut])
def list_deliveries(
    response: Response,
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_roles("admin")),
) -> list[NotificationDeliveryOut]:
    page_size = clamp_page_size(page_size)
    query = db.query(NotificationOutbox)
    if status:
        query = query.filter(NotificationOutbox.status == status.upper())
    total = query.count()
    items = (
        query.order_by(NotificationOutbox.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return items
