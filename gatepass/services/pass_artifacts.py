"""
QR image rendering for approved passes, queued and retried like the outbox.
"""

from __future__ import annotations

import base64
import datetime
import io
import logging
from typing import Callable, Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.gate_pass import GatePass
from ..models.pass_artifact import PassArtifact


logger = logging.getLogger("pass_artifacts")

QR_KIND = "QR_PNG"

Renderer = Callable[[str], str]


def render_qr_data_url(data: str) -> str:
    qr = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_M, box_size=8, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def get_qr_artifact(db: Session, pass_id: str) -> Optional[PassArtifact]:
    return (
        db.query(PassArtifact)
        .filter(PassArtifact.pass_id == pass_id, PassArtifact.kind == QR_KIND)
        .first()
    )


def enqueue_qr_render(db: Session, pass_id: str) -> PassArtifact:
    existing = get_qr_artifact(db, pass_id)
    if existing is not None:
        return existing
    row = PassArtifact(pass_id=pass_id, kind=QR_KIND, status="PENDING", attempts=0)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Another writer queued it first.
        db.rollback()
        return get_qr_artifact(db, pass_id)
    logger.info("QR render queued pass=%s artifact=%s", pass_id, row.id)
    return row


def _backoff_seconds(attempt: int) -> int:
    schedule = [30, 120, 600, 1800]
    idx = min(max(attempt - 1, 0), len(schedule) - 1)
    return schedule[idx]


def process_artifact_batch(
    db: Session,
    *,
    renderer: Optional[Renderer] = None,
    max_attempts: int = 5,
    batch_size: int = 20,
    now: Optional[datetime.datetime] = None,
) -> int:
    renderer = renderer or render_qr_data_url
    now = now or datetime.datetime.now(datetime.timezone.utc)

    query = (
        db.query(PassArtifact)
        .filter(
            PassArtifact.status.in_(["PENDING", "RETRYING"]),
            or_(PassArtifact.next_retry_at.is_(None), PassArtifact.next_retry_at <= now),
        )
        .order_by(PassArtifact.created_at.asc())
        .limit(batch_size)
    )
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    rows = query.all()
    processed = 0
    for row in rows:
        row.attempts = int(row.attempts or 0) + 1
        gate_pass = db.get(GatePass, row.pass_id)
        try:
            if gate_pass is None or not gate_pass.qr_token:
                raise RuntimeError("Pass has no verification token to encode")
            row.content = renderer(gate_pass.qr_token)
            row.status = "DONE"
            row.completed_at = now
            row.last_error = None
            row.next_retry_at = None
        except Exception as exc:
            row.last_error = str(exc)
            logger.warning("QR render failed artifact=%s pass=%s attempts=%s err=%s", row.id, row.pass_id, row.attempts, exc)
            if row.attempts >= max_attempts:
                row.status = "FAILED"
                row.next_retry_at = None
            else:
                row.status = "RETRYING"
                row.next_retry_at = now + datetime.timedelta(seconds=_backoff_seconds(row.attempts))
        try:
            db.add(row)
            db.commit()
            processed += 1
        except Exception as exc:
            db.rollback()
            logger.warning("Failed to update artifact id=%s err=%s", row.id, exc)
    return processed
