"""Write outbox - queued completions are replayed idempotently."""

import httpx
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from coursework.models import ActivitySubmission, PointAward
from coursework.services.completion import COMPLETION_WRITE
from coursework.services.outbox import Outbox, get_outbox
from tests.factories import headers_for, make_activity


def test_enqueue_dedupes_by_key():
    outbox = Outbox()
    outbox.enqueue("k", (1, 2), {"v": 1})
    outbox.enqueue("k", (1, 2), {"v": 2}, error="locked")
    outbox.enqueue("k", (1, 3), {"v": 3})

    assert len(outbox) == 2
    assert outbox.pending()[0].payload == {"v": 2}
    assert outbox.pending()[0].last_error == "locked"


async def test_failed_replay_stays_queued(session_factory):
    outbox = Outbox()

    async def broken(session, payload):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    outbox.register("broken", broken)
    outbox.enqueue("broken", (1,), {})

    result = await outbox.flush(session_factory)
    assert (result.flushed, result.failed) == (0, 1)
    assert outbox.pending()[0].attempts == 1


async def test_unknown_kind_is_not_dropped(session_factory):
    outbox = Outbox()
    outbox.enqueue("mystery", (1,), {})
    result = await outbox.flush(session_factory)
    assert result.failed == 1
    assert len(outbox) == 1


async def test_queued_completion_is_replayed(
    client: httpx.AsyncClient, db_session, course, teacher, student, enrolled, monkeypatch
):
    custom = await make_activity(db_session, course, "custom", points=15)
    headers = headers_for(student)

    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", failing_commit)
    failed = await client.post(f"/api/activities/{custom.id}/attempt/complete", headers=headers)
    monkeypatch.undo()
    assert failed.status_code == 503

    listed = await client.get("/api/internal/outbox", headers=headers_for(teacher))
    assert [e["kind"] for e in listed.json()] == [COMPLETION_WRITE]

    flushed = await client.post("/api/internal/outbox/flush", headers=headers_for(teacher))
    assert flushed.json() == {"flushed": 1, "failed": 0, "pending": 0}

    db_session.expire_all()
    submission = (
        await db_session.execute(
            select(ActivitySubmission).where(ActivitySubmission.activity_id == custom.id)
        )
    ).scalar_one()
    award = (
        await db_session.execute(select(PointAward).where(PointAward.student_id == student.id))
    ).scalar_one()
    assert submission.status == "submitted"
    assert award.points == 15

    # Flushing again has nothing left to do
    again = await client.post("/api/internal/outbox/flush", headers=headers_for(teacher))
    assert again.json()["flushed"] == 0
    assert len(get_outbox()) == 0


async def test_outbox_routes_are_teacher_only(client: httpx.AsyncClient, student):
    response = await client.get("/api/internal/outbox", headers=headers_for(student))
    assert response.status_code == 403
