import os
from pathlib import Path
import tempfile

# Settings are read once at import; pin an isolated DB and no background threads.
DB_PATH = Path(tempfile.gettempdir()) / "gatepass_test_api.db"
if DB_PATH.exists():
    DB_PATH.unlink()

os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{DB_PATH}")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
os.environ.setdefault("ENABLE_EXPIRY_SCHEDULER", "false")
os.environ.setdefault("GATEPASS_AUTH_DISABLED", "true")
os.environ.setdefault("GATEPASS_CODE_SECRET", "test-gatepass-code-secret-0123456789")
os.environ.pop("SMTP_HOST", None)

import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gatepass.models import Base
from gatepass.models.app_user import AppUser


NOW = datetime.datetime(2026, 10, 18, 9, 0, tzinfo=datetime.timezone.utc)


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def emit(self, event):
        if self.fail:
            raise RuntimeError("dispatcher offline")
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


def make_session_factory(url: str = "sqlite+pysqlite:///:memory:"):
    engine = create_engine(url, future=True, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def seed_directory(db) -> dict:
    people = {
        "mentor": AppUser(id="mentor-1", name="Dr. Rao", role="mentor", department="CSE", email="rao@example.edu"),
        "hod": AppUser(id="hod-cse", name="Prof. Iyer", role="hod", department="CSE"),
        "student": AppUser(id="stu-1", name="Asha", role="student", department="CSE", mentor_id="mentor-1"),
        "orphan": AppUser(id="stu-2", name="Ravi", role="student", department="CSE", mentor_id=None),
        "nohod": AppUser(id="stu-3", name="Meera", role="student", department="MECH", mentor_id="mentor-1"),
        "guard": AppUser(id="guard-1", name="Gate A", role="security"),
        "guard2": AppUser(id="guard-2", name="Gate B", role="security"),
    }
    for user in people.values():
        db.add(user)
    db.commit()
    return {key: user.id for key, user in people.items()}


@pytest.fixture
def db():
    SessionLocal = make_session_factory()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def people(db):
    return seed_directory(db)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
