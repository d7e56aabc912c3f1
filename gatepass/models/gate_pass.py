"""
ORM models for gate passes and their append-only audit history.

The ``version`` column is the optimistic concurrency token: every UPDATE
is issued as ``WHERE id = :id AND version = :version`` and bumps it, so a
transition computed from a stale read fails with ``StaleDataError``
instead of overwriting a concurrent one.
"""

from __future__ import annotations

import random
import string
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_pass_code() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"GP-{int(time.time() * 1000)}-{suffix}"


class GatePass(Base):
    __tablename__ = "gate_passes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pass_code: Mapped[str] = mapped_column(String(40), unique=True, index=True, default=generate_pass_code)
    unique_token: Mapped[str] = mapped_column(String(36), unique=True, index=True, default=lambda: str(uuid.uuid4()))

    # Parties, fixed at creation
    student_id: Mapped[str] = mapped_column(String(36), index=True)
    mentor_id: Mapped[str] = mapped_column(String(36), index=True)
    hod_id: Mapped[str] = mapped_column(String(36), index=True)

    reason: Mapped[str] = mapped_column(String(500))
    destination: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(16))
    priority: Mapped[str] = mapped_column(String(16), default="medium")
    emergency_contact: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    return_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Approval sub-records
    mentor_status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | approved | rejected
    mentor_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mentor_comments: Mapped[str | None] = mapped_column(String(300), nullable=True)
    mentor_decided_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    hod_status: Mapped[str] = mapped_column(String(16), default="pending")
    hod_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hod_comments: Mapped[str | None] = mapped_column(String(300), nullable=True)
    hod_decided_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Derived lifecycle summary; see services.pass_workflow.derive_status
    status: Mapped[str] = mapped_column(String(16), index=True, default="pending")

    # Usage
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    used_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    entry_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Security material, written once at full approval
    security_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    qr_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Scheduler bookkeeping
    expiry_warning_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    overdue_alerted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mentor_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hod_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    history: Mapped[list["GatePassHistory"]] = relationship(
        back_populates="gate_pass",
        order_by="GatePassHistory.seq",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_gate_passes_student_status", "student_id", "status"),
        Index("ix_gate_passes_mentor_status", "mentor_id", "mentor_status"),
        Index("ix_gate_passes_hod_status", "hod_id", "hod_status"),
    )

    @property
    def mentor_approval(self) -> dict:
        return {
            "status": self.mentor_status,
            "timestamp": self.mentor_decided_at,
            "comments": self.mentor_comments,
            "approved_by": self.mentor_decided_by,
        }

    @property
    def hod_approval(self) -> dict:
        return {
            "status": self.hod_status,
            "timestamp": self.hod_decided_at,
            "comments": self.hod_comments,
            "approved_by": self.hod_decided_by,
        }


class GatePassHistory(Base):
    __tablename__ = "gate_pass_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pass_id: Mapped[str] = mapped_column(String(36), ForeignKey("gate_passes.id"), index=True)
    # Row version the transition committed; orders entries by commit.
    seq: Mapped[int] = mapped_column(Integer)
    action: Mapped[str] = mapped_column(String(32))
    actor_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    comments: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    gate_pass: Mapped[GatePass] = relationship(back_populates="history")

    __table_args__ = (
        UniqueConstraint("pass_id", "seq", name="uq_gate_pass_history_pass_seq"),
    )
