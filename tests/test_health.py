"""Smoke tests - verify the app starts and basic endpoints respond."""

import httpx

from tests.factories import headers_for


async def test_health_returns_ok(client: httpx.AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_me_without_header_is_401(client: httpx.AsyncClient):
    response = await client.get("/api/users/me")
    assert response.status_code == 401


async def test_me_unregistered_is_403(client: httpx.AsyncClient):
    response = await client.get(
        "/api/users/me", headers={"x-authenticated-user-email": "nobody@example.com"}
    )
    assert response.status_code == 403


async def test_register_then_me(client: httpx.AsyncClient):
    headers = {"x-authenticated-user-email": "New.Teacher@Example.com"}
    response = await client.post(
        "/api/users/register", json={"name": "New Teacher", "role": "teacher"}, headers=headers
    )
    assert response.status_code == 201
    assert response.json()["email"] == "new.teacher@example.com"

    me = await client.get("/api/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["role"] == "teacher"

    again = await client.post(
        "/api/users/register", json={"name": "New Teacher", "role": "teacher"}, headers=headers
    )
    assert again.status_code == 409


async def test_register_rejects_unknown_role(client: httpx.AsyncClient):
    response = await client.post(
        "/api/users/register",
        json={"name": "Eve", "role": "admin"},
        headers={"x-authenticated-user-email": "eve@example.com"},
    )
    assert response.status_code == 400


async def test_student_cannot_create_course(client: httpx.AsyncClient, student):
    response = await client.post(
        "/api/courses", json={"title": "Hacked"}, headers=headers_for(student)
    )
    assert response.status_code == 403
