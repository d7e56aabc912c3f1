"""
SQLAlchemy model base class for the gate pass backend.

This package defines ORM models for principals, gate passes, their audit
history, the notification outbox and the rendering job queue. All models
should inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .app_user import AppUser  # noqa: E402,F401
from .gate_pass import GatePass, GatePassHistory  # noqa: E402,F401
from .notification_outbox import NotificationOutbox  # noqa: E402,F401
from .pass_artifact import PassArtifact  # noqa: E402,F401

__all__ = [
    "Base",

    # Principals
    "AppUser",

    # Passes
    "GatePass",
    "GatePassHistory",
    "PassArtifact",

    # Notifications
    "NotificationOutbox",
]
