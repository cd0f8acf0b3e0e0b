"""Store failures on write paths surface as retryable 503s, not unhandled errors."""

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from coursework.models import Enrollment, PointAward
from coursework.services import completion
from coursework.services.outbox import get_outbox
from tests.factories import headers_for, make_activity


@pytest.fixture
def locked_commit(db_session, monkeypatch):
    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", failing_commit)
    return monkeypatch


async def test_authoring_write_failure_is_503(
    client: httpx.AsyncClient, course, teacher, locked_commit
):
    response = await client.post(
        f"/api/courses/{course.id}/activities",
        json={"activity_type": "custom", "title": "Fraction hunt", "points": 5},
        headers=headers_for(teacher),
    )

    assert response.status_code == 503
    assert response.json()["retryable"] is True


async def test_join_write_failure_is_503(
    client: httpx.AsyncClient, db_session, course, student, locked_commit
):
    student_id = student.id
    response = await client.post(
        "/api/join/course", json={"join_code": "MATH5A"}, headers=headers_for(student)
    )
    locked_commit.undo()

    assert response.status_code == 503
    assert response.json()["retryable"] is True
    count = (
        await db_session.execute(
            select(func.count(Enrollment.id)).where(Enrollment.student_id == student_id)
        )
    ).scalar()
    assert count == 0


async def test_register_write_failure_is_503(client: httpx.AsyncClient, locked_commit):
    response = await client.post(
        "/api/users/register",
        json={"name": "Robin", "role": "student"},
        headers={"x-authenticated-user-email": "robin@example.com"},
    )
    assert response.status_code == 503


async def test_failure_while_staging_completion_is_queued(
    client: httpx.AsyncClient, db_session, course, teacher, student, enrolled, monkeypatch
):
    custom = await make_activity(db_session, course, "custom", points=15)
    activity_id, student_id = custom.id, student.id
    headers = headers_for(student)

    async def failing_award(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(completion, "upsert_award", failing_award)
    failed = await client.post(f"/api/activities/{activity_id}/attempt/complete", headers=headers)
    monkeypatch.undo()

    assert failed.status_code == 503
    assert failed.json()["state"]["status"] != "submitted"
    [entry] = get_outbox().pending()
    assert entry.key == (student_id, activity_id)
    assert entry.payload["mastery_updates"] is None

    flushed = await client.post("/api/internal/outbox/flush", headers=headers_for(teacher))
    assert flushed.json()["flushed"] == 1

    db_session.expire_all()
    award = (
        await db_session.execute(select(PointAward).where(PointAward.student_id == student_id))
    ).scalar_one()
    assert award.points == 15
