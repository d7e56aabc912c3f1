"""
Health endpoint: database reachability and queue backlogs.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...models.notification_outbox import NotificationOutbox
from ...models.pass_artifact import PassArtifact


router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    db_ok = True
    outbox_backlog = None
    artifact_backlog = None
    try:
        db.execute(text("SELECT 1"))
        outbox_backlog = (
            db.query(func.count(NotificationOutbox.id))
            .filter(NotificationOutbox.status.in_(["PENDING", "RETRYING"]))
            .scalar()
        )
        artifact_backlog = (
            db.query(func.count(PassArtifact.id))
            .filter(PassArtifact.status.in_(["PENDING", "RETRYING"]))
            .scalar()
        )
    except SQLAlchemyError:
        db.rollback()
        db_ok = False

    scheduler = getattr(request.app.state, "expiry_thread", None)
    return {
        "status": "ok" if db_ok else "degraded",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "database": db_ok,
        "expiry_scheduler": bool(scheduler and scheduler.is_alive()),
        "outbox_backlog": outbox_backlog,
        "artifact_backlog": artifact_backlog,
    }
