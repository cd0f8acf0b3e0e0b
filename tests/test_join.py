"""Invite/join flow and course management routes."""

import httpx
from sqlalchemy import func, select

from coursework.models import Enrollment
from tests.factories import headers_for, make_user


async def _enrollment_count(db_session, student_id: int) -> int:
    return (
        await db_session.execute(
            select(func.count(Enrollment.id)).where(Enrollment.student_id == student_id)
        )
    ).scalar()


async def test_joining_twice_creates_one_enrollment(
    client: httpx.AsyncClient, db_session, course, student
):
    first = await client.post(
        "/api/join/course", json={"join_code": "math5a"}, headers=headers_for(student)
    )
    second = await client.post(
        "/api/join/course", json={"join_code": " MATH5A "}, headers=headers_for(student)
    )

    assert first.status_code == 200
    assert first.json()["already_enrolled"] is False
    assert first.json()["course"]["title"] == "Math 5"
    assert second.status_code == 200
    assert second.json()["already_enrolled"] is True
    assert await _enrollment_count(db_session, student.id) == 1


async def test_lesson_code_enrolls_in_course(
    client: httpx.AsyncClient, db_session, course, lesson, student
):
    response = await client.post(
        "/api/join/lesson", json={"join_code": "frac01"}, headers=headers_for(student)
    )
    assert response.status_code == 200
    assert response.json()["lesson"]["course_id"] == course.id

    courses = await client.get("/api/courses", headers=headers_for(student))
    assert [c["id"] for c in courses.json()] == [course.id]
    assert "join_code" not in courses.json()[0]


async def test_invalid_code_is_404(client: httpx.AsyncClient, student):
    response = await client.post(
        "/api/join/course", json={"join_code": "NOPE99"}, headers=headers_for(student)
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Invalid join code"


async def test_teachers_cannot_join(client: httpx.AsyncClient, course, teacher):
    response = await client.post(
        "/api/join/course", json={"join_code": "MATH5A"}, headers=headers_for(teacher)
    )
    assert response.status_code == 403


async def test_regenerated_code_replaces_old_one(
    client: httpx.AsyncClient, course, teacher, student
):
    response = await client.post(
        f"/api/courses/{course.id}/join-code", headers=headers_for(teacher)
    )
    new_code = response.json()["join_code"]
    assert new_code != "MATH5A"
    assert len(new_code) == 6

    old = await client.post(
        "/api/join/course", json={"join_code": "MATH5A"}, headers=headers_for(student)
    )
    new = await client.post(
        "/api/join/course", json={"join_code": new_code}, headers=headers_for(student)
    )
    assert old.status_code == 404
    assert new.status_code == 200


async def test_teacher_creates_course_and_lessons(client: httpx.AsyncClient, teacher):
    created = await client.post(
        "/api/courses",
        json={"title": "Science", "learning_objectives": ["Cells", "Cells", " Energy "]},
        headers=headers_for(teacher),
    )
    assert created.status_code == 201
    course = created.json()
    assert course["learning_objectives"] == ["Cells", "Energy"]
    assert len(course["join_code"]) == 6

    bad = await client.post(
        f"/api/courses/{course['id']}/lessons",
        json={"title": "Atoms", "learning_objectives": ["Atoms"]},
        headers=headers_for(teacher),
    )
    assert bad.status_code == 422

    for title in ("Cells 1", "Cells 2"):
        await client.post(
            f"/api/courses/{course['id']}/lessons",
            json={"title": title, "learning_objectives": ["Cells"]},
            headers=headers_for(teacher),
        )
    lessons = await client.get(f"/api/courses/{course['id']}/lessons", headers=headers_for(teacher))
    assert [(l["title"], l["position"]) for l in lessons.json()] == [("Cells 1", 0), ("Cells 2", 1)]


async def test_other_teacher_cannot_see_course(
    client: httpx.AsyncClient, db_session, course
):
    intruder = await make_user(db_session, "other@example.com", "Mr. Other", role="teacher")
    response = await client.get(
        f"/api/courses/{course.id}/students", headers=headers_for(intruder)
    )
    assert response.status_code == 404


async def test_roster_lists_enrolled_students(
    client: httpx.AsyncClient, course, teacher, student, enrolled
):
    response = await client.get(f"/api/courses/{course.id}/students", headers=headers_for(teacher))
    assert [s["student_id"] for s in response.json()] == [student.id]
