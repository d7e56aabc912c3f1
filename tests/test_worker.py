import datetime

from conftest import NOW
from gatepass.models.notification_outbox import NotificationOutbox
from gatepass.services.notification_worker import LogProvider, ProviderSet
from gatepass.services.pass_artifacts import get_qr_artifact
from gatepass.services.pass_workflow import create_pass, hod_decide, mentor_decide
from gatepass.worker import run_once


def test_run_once_drains_outbox_and_render_queue(db, people):
    gp = create_pass(
        db,
        student_id=people["student"],
        departure_time=NOW + datetime.timedelta(hours=2),
        return_time=NOW + datetime.timedelta(hours=4),
        reason="Family function at home town",
        destination="Home",
        category="family",
        now=NOW,
    )
    mentor_decide(db, gp.id, actor_id=people["mentor"], decision="approve", now=NOW)
    hod_decide(db, gp.id, actor_id=people["hod"], decision="approve", now=NOW)
    queued = db.query(NotificationOutbox).count()
    assert queued == 4

    result = run_once(db, providers=ProviderSet(log=LogProvider(), email=LogProvider()))
    assert result["sweeps"] is None
    assert result["artifacts"] == 1
    assert result["notifications"] == queued
    assert get_qr_artifact(db, gp.id).status == "DONE"
    assert {r.status for r in db.query(NotificationOutbox).all()} == {"SENT"}


def test_run_once_can_include_sweeps(db, people):
    result = run_once(db, providers=ProviderSet(log=LogProvider(), email=LogProvider()), run_sweeps_too=True)
    assert result["sweeps"].total == 0
