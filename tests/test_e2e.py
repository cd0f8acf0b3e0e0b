"""End-to-end: a teacher sets a quiz, a student joins and answers, mastery shows up."""

import httpx

from tests.factories import headers_for


async def test_fraction_quiz_flow(client: httpx.AsyncClient, teacher, student):
    t, s = headers_for(teacher), headers_for(student)

    course = (await client.post(
        "/api/courses",
        json={"title": "Math 4", "learning_objectives": ["Fractions"]},
        headers=t,
    )).json()

    joined = await client.post("/api/join/course", json={"join_code": course["join_code"]}, headers=s)
    assert joined.status_code == 200

    quiz = (await client.post(
        f"/api/courses/{course['id']}/activities",
        json={
            "activity_type": "quiz",
            "title": "Fraction check",
            "points": 50,
            "content": {
                "questions": [
                    {"question": "1/2 of 8?", "options": ["4", "6"], "correct_answer": 0},
                    {"question": "1/4 of 8?", "options": ["2", "3"], "correct_answer": 0},
                ],
            },
        },
        headers=t,
    )).json()
    assert quiz["assign_to_all"] is True

    listed = await client.get(f"/api/courses/{course['id']}/activities", headers=s)
    assert [a["id"] for a in listed.json()] == [quiz["id"]]

    attempt = await client.post(
        f"/api/activities/{quiz['id']}/attempt/quiz", json={"answers": ["4", "3"]}, headers=s
    )
    assert attempt.status_code == 200
    assert attempt.json()["status"] == "submitted"
    assert attempt.json()["points_earned"] == 25
    assert attempt.json()["score"] == 50

    objectives = (await client.get(
        f"/api/analytics/courses/{course['id']}/objectives", headers=t
    )).json()["objectives"]
    assert objectives[0]["objective"] == "Fractions"
    assert objectives[0]["mastery_level"] == 50
    assert objectives[0]["students_count"] == 1

    board = (await client.get(
        f"/api/analytics/courses/{course['id']}/leaderboard", headers=t
    )).json()
    assert board["entries"][0]["total_points"] == 25

    progress = (await client.get(
        f"/api/analytics/courses/{course['id']}/students", headers=t
    )).json()
    assert progress[0]["progress_percent"] == 100.0

    courses = (await client.get("/api/courses", headers=s)).json()
    assert courses[0]["progress_percent"] == 100.0
