"""
Read-only lookups against the principal directory.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from ..models.app_user import AppUser


def get_principal(db: Session, user_id: Optional[str]) -> Optional[AppUser]:
    if not user_id:
        return None
    user = db.get(AppUser, user_id)
    if user is None or not user.is_active:
        return None
    return user


def find_mentor(db: Session, student: AppUser) -> Optional[AppUser]:
    mentor = get_principal(db, student.mentor_id)
    if mentor is None or mentor.role != "mentor":
        return None
    return mentor


def find_department_hod(db: Session, department: Optional[str]) -> Optional[AppUser]:
    if not department:
        return None
    return (
        db.query(AppUser)
        .filter(
            AppUser.role == "hod",
            AppUser.department == department,
            AppUser.is_active.is_(True),
        )
        .order_by(AppUser.created_at.asc())
        .first()
    )


def security_principal_ids(db: Session) -> list[str]:
    rows = (
        db.query(AppUser.id)
        .filter(AppUser.role == "security", AppUser.is_active.is_(True))
        .order_by(AppUser.id.asc())
        .all()
    )
    return [row[0] for row in rows]
