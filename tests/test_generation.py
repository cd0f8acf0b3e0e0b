"""Generative content gateway - parsing, provider failures and routes."""

import json

import httpx
import pytest

from coursework.config import settings
from coursework.dependencies import get_generator
from coursework.errors import GenerationError
from coursework.services.generation import (
    GenerationPrompt,
    MockContentGenerator,
    RealContentGenerator,
    parse_structured,
)
from main import app
from tests.factories import headers_for, make_activity


PROMPT = GenerationPrompt(topic="Fractions", learning_objectives=["Equivalent fractions"])


def test_extracts_json_wrapped_in_prose():
    text = 'Here you go:\n{"title": "Pizza fractions", "description": "Slice it"}\nEnjoy!'
    parsed = parse_structured(text, "activity")
    assert parsed["title"] == "Pizza fractions"
    assert parsed["activity_type"] == "custom"


def test_malformed_json_is_retryable():
    with pytest.raises(GenerationError) as exc:
        parse_structured('{"questions": [', "quiz")
    assert exc.value.retryable
    assert exc.value.status_code == 502


def test_off_schema_json_is_rejected():
    with pytest.raises(GenerationError):
        parse_structured('{"questions": [{"question": "Q", "options": ["only one"]}]}', "quiz")


def test_empty_response():
    with pytest.raises(GenerationError):
        parse_structured("   ", "tutor_turn")


async def test_mock_quiz_has_one_question_per_objective():
    quiz = await MockContentGenerator().generate(PROMPT, "quiz")
    assert len(quiz["questions"]) == 1
    assert quiz["questions"][0]["learning_objective"] == "Equivalent fractions"


async def test_mock_stream_reassembles_to_valid_json():
    chunks = [c async for c in MockContentGenerator().stream(PROMPT, "activity")]
    assert len(chunks) > 1
    assert json.loads("".join(chunks))["title"] == "Exploring Fractions"


def _real_generator(monkeypatch, handler) -> RealContentGenerator:
    """A real generator whose HTTP calls go to ``handler`` instead of the network."""
    monkeypatch.setattr(settings, "GENERATION_API_KEY", "test-key")
    transport = httpx.MockTransport(handler)
    original = httpx.AsyncClient

    def patched_client(*args, **kwargs):
        kwargs["transport"] = transport
        return original(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", patched_client)
    return RealContentGenerator()


async def test_real_generator_parses_provider_content(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer test-key"
        content = json.dumps({"reply": "Nice", "objective_updates": []})
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    turn = await _real_generator(monkeypatch, handler).generate(PROMPT, "tutor_turn")
    assert turn["reply"] == "Nice"


async def test_real_generator_timeout_maps_to_504(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GenerationError) as exc:
        await _real_generator(monkeypatch, handler).generate(PROMPT, "quiz")
    assert exc.value.timeout
    assert exc.value.status_code == 504


async def test_real_generator_provider_error_maps_to_502(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(GenerationError) as exc:
        await _real_generator(monkeypatch, handler).generate(PROMPT, "quiz")
    assert exc.value.status_code == 502


async def test_real_generator_without_key_fails_cleanly(monkeypatch):
    monkeypatch.setattr(settings, "GENERATION_API_KEY", "")
    with pytest.raises(GenerationError):
        await RealContentGenerator().generate(PROMPT, "quiz")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


async def test_generate_quiz_route(client: httpx.AsyncClient, teacher):
    response = await client.post(
        "/api/generate/quiz",
        json={"topic": "Fractions", "learning_objectives": ["Halves", "Quarters"]},
        headers=headers_for(teacher),
    )
    assert response.status_code == 200
    assert len(response.json()["questions"]) == 2


async def test_generate_requires_teacher(client: httpx.AsyncClient, student):
    response = await client.post(
        "/api/generate/quiz", json={"topic": "Fractions"}, headers=headers_for(student)
    )
    assert response.status_code == 403


async def test_stream_route_relays_chunks_in_order(client: httpx.AsyncClient, teacher):
    response = await client.post(
        "/api/generate/activity/stream", json={"topic": "Fractions"}, headers=headers_for(teacher)
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    data = [
        line[len("data: "):]
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]
    assert data[-1] == "[DONE]"
    assert json.loads("".join(data[:-1]))["title"] == "Exploring Fractions"


class FailingGenerator(MockContentGenerator):
    async def generate(self, prompt, schema):
        raise GenerationError("Content provider timed out", timeout=True)


async def test_gateway_timeout_surfaces_as_retryable_504(client: httpx.AsyncClient, teacher):
    app.dependency_overrides[get_generator] = FailingGenerator
    response = await client.post(
        "/api/generate/activity", json={"topic": "Fractions"}, headers=headers_for(teacher)
    )
    assert response.status_code == 504
    assert response.json() == {"detail": "Content provider timed out", "retryable": True}


async def test_tutor_failure_leaves_attempt_untouched(
    client: httpx.AsyncClient, db_session, course, student, enrolled
):
    tutor = await make_activity(db_session, course, "ai_chat")
    app.dependency_overrides[get_generator] = FailingGenerator

    response = await client.post(
        f"/api/activities/{tutor.id}/attempt/tutor",
        json={"message": "help"},
        headers=headers_for(student),
    )
    assert response.status_code == 504

    attempt = await client.get(f"/api/activities/{tutor.id}/attempt", headers=headers_for(student))
    assert attempt.json()["status"] == "not_started"
