"""
Rendering jobs for pass artifacts (QR images) with retry bookkeeping.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PassArtifact(Base):
    __tablename__ = "pass_artifacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pass_id: Mapped[str] = mapped_column(String(36), ForeignKey("gate_passes.id"), index=True)
    kind: Mapped[str] = mapped_column(String(16), default="QR_PNG")
    status: Mapped[str] = mapped_column(String(16), default="PENDING")  # PENDING | RETRYING | DONE | FAILED
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # data: URL of the rendered image
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("pass_id", "kind", name="uq_pass_artifacts_pass_kind"),
    )
