"""Generative content gateway - structured prompts in, validated JSON content out.

The provider is treated as slow and unreliable: every failure mode (timeout,
transport error, HTTP error, malformed or off-schema JSON) becomes a
retryable ``GenerationError`` instead of propagating a provider exception.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx
from pydantic import BaseModel, Field, ValidationError

from coursework.config import settings
from coursework.errors import GenerationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompt and response schemas
# ---------------------------------------------------------------------------


class GenerationPrompt(BaseModel):
    topic: str
    difficulty: int = Field(default=3, ge=1, le=5)
    learning_objectives: list[str] = []
    constraints: list[str] = []
    activity_type: str | None = None
    subject: str | None = None
    grade_level: str | None = None
    # Tutor turns only
    student_message: str | None = None
    current_mastery: dict[str, float] = {}


class QuizItem(BaseModel):
    question: str
    options: list[str] = Field(min_length=2)
    correct_answer: int | str
    explanation: str = ""
    learning_objective: str | None = None


class GeneratedQuiz(BaseModel):
    questions: list[QuizItem] = Field(min_length=1)


class GeneratedActivity(BaseModel):
    title: str
    description: str = ""
    activity_type: str = "custom"
    content: dict = {}


class ObjectiveUpdate(BaseModel):
    objective: str
    mastery_level: float = Field(ge=0, le=100)


class TutorTurn(BaseModel):
    reply: str
    objective_updates: list[ObjectiveUpdate] = []


SCHEMAS: dict[str, type[BaseModel]] = {
    "quiz": GeneratedQuiz,
    "activity": GeneratedActivity,
    "tutor_turn": TutorTurn,
}

SCHEMA_HINTS: dict[str, str] = {
    "quiz": (
        '{"questions": [{"question": "str", "options": ["str", "str", "str", "str"], '
        '"correct_answer": 0, "explanation": "str", "learning_objective": "str"}]}'
    ),
    "activity": (
        '{"title": "str", "description": "str", "activity_type": "str", '
        '"content": {}}'
    ),
    "tutor_turn": (
        '{"reply": "str", "objective_updates": '
        '[{"objective": "str", "mastery_level": 0}]}'
    ),
}


def build_prompt(prompt: GenerationPrompt, schema: str) -> str:
    objectives = "\n".join(
        f"{i}. {obj}" for i, obj in enumerate(prompt.learning_objectives, start=1)
    ) or "None specified"
    constraints = "\n".join(f"- {c}" for c in prompt.constraints) or "- None"

    lines = [
        "You are an expert educational content designer.",
        f"Topic: {prompt.topic}",
        f"Subject: {prompt.subject or 'General'}",
        f"Grade level: {prompt.grade_level or 'Unspecified'}",
        f"Difficulty: {prompt.difficulty}/5",
        "Learning objectives:",
        objectives,
        "Constraints:",
        constraints,
    ]
    if schema == "tutor_turn":
        mastery = ", ".join(
            f"{obj}: {level:.0f}%" for obj, level in prompt.current_mastery.items()
        ) or "not yet assessed"
        lines += [
            f"Current mastery: {mastery}",
            f"Student says: {prompt.student_message or ''}",
            "Reply as a patient tutor and re-estimate mastery (0-100) of each objective.",
        ]
    elif prompt.activity_type:
        lines.append(f"Activity type: {prompt.activity_type}")

    lines += [
        "Produce EXACT JSON with this schema (no extra keys, no prose):",
        SCHEMA_HINTS[schema],
    ]
    return "\n".join(lines)


def parse_structured(text: str, schema: str) -> dict:
    """Pull the JSON object out of model text and validate it against the schema."""
    if not text or not text.strip():
        raise GenerationError("Empty response from content provider")
    try:
        json_start = text.index("{")
        json_end = text.rindex("}") + 1
        data = json.loads(text[json_start:json_end])
    except (ValueError, json.JSONDecodeError) as e:
        logger.error("Unparseable %s response: %s", schema, e)
        raise GenerationError("Content provider returned malformed JSON") from e

    try:
        return SCHEMAS[schema].model_validate(data).model_dump()
    except ValidationError as e:
        logger.error("Off-schema %s response: %s", schema, e)
        raise GenerationError(f"Content provider response did not match the {schema} schema") from e


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


class ContentGenerator(ABC):
    """Abstract interface for the text-generation provider."""

    @abstractmethod
    async def generate(self, prompt: GenerationPrompt, schema: str) -> dict:
        """Return validated structured content for ``schema``."""

    @abstractmethod
    def stream(self, prompt: GenerationPrompt, schema: str) -> AsyncIterator[str]:
        """Yield raw text chunks in order as the provider produces them."""


class RealContentGenerator(ContentGenerator):
    """Calls an OpenAI-compatible chat-completions endpoint over HTTP."""

    def __init__(self) -> None:
        self._base_url = settings.GENERATION_BASE_URL.rstrip("/")
        self._timeout = settings.GENERATION_TIMEOUT_SECONDS

    def _payload(self, prompt: GenerationPrompt, schema: str, stream: bool = False) -> dict:
        return {
            "model": settings.GENERATION_MODEL,
            "messages": [{"role": "user", "content": build_prompt(prompt, schema)}],
            "response_format": {"type": "json_object"},
            "stream": stream,
        }

    def _headers(self) -> dict:
        if not settings.HAS_GENERATION_KEY:
            raise GenerationError("Content generation is not configured")
        return {"Authorization": f"Bearer {settings.GENERATION_API_KEY}"}

    async def generate(self, prompt: GenerationPrompt, schema: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._base_url}/chat/completions",
                    json=self._payload(prompt, schema),
                    headers=self._headers(),
                )
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as e:
            logger.error("Content provider timed out for %s: %s", schema, e)
            raise GenerationError("Content provider timed out", timeout=True) from e
        except httpx.HTTPStatusError as e:
            logger.error("Content provider returned %d for %s", e.response.status_code, schema)
            raise GenerationError(f"Content provider error ({e.response.status_code})") from e
        except httpx.HTTPError as e:
            logger.error("Content provider request failed for %s: %s", schema, e)
            raise GenerationError("Content provider unreachable") from e
        except json.JSONDecodeError as e:
            raise GenerationError("Content provider returned malformed JSON") from e

        try:
            text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError("Content provider response had no content") from e
        return parse_structured(text, schema)

    async def stream(self, prompt: GenerationPrompt, schema: str) -> AsyncIterator[str]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self._base_url}/chat/completions",
                    json=self._payload(prompt, schema, stream=True),
                    headers=self._headers(),
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.startswith("data: "):
                            continue
                        data = line[len("data: "):]
                        if data.strip() == "[DONE]":
                            break
                        try:
                            delta = json.loads(data)["choices"][0]["delta"].get("content")
                        except (json.JSONDecodeError, KeyError, IndexError, TypeError):
                            logger.warning("Skipping malformed stream chunk for %s", schema)
                            continue
                        if delta:
                            yield delta
        except httpx.TimeoutException as e:
            raise GenerationError("Content provider timed out", timeout=True) from e
        except httpx.HTTPError as e:
            logger.error("Content provider stream failed for %s: %s", schema, e)
            raise GenerationError("Content provider unreachable") from e


class MockContentGenerator(ContentGenerator):
    """Deterministic content for development without a provider."""

    def _content(self, prompt: GenerationPrompt, schema: str) -> dict:
        objectives = prompt.learning_objectives or [prompt.topic]
        if schema == "quiz":
            return {
                "questions": [
                    {
                        "question": f"Which statement best describes {obj}?",
                        "options": [
                            f"A key idea of {obj}",
                            "An unrelated fact",
                            "A common misconception",
                            "None of the above",
                        ],
                        "correct_answer": 0,
                        "explanation": f"{obj} is central to {prompt.topic}.",
                        "learning_objective": obj,
                    }
                    for obj in objectives
                ]
            }
        if schema == "activity":
            return {
                "title": f"Exploring {prompt.topic}",
                "description": f"A guided activity on {prompt.topic}.",
                "activity_type": prompt.activity_type or "custom",
                "content": {
                    "learning_objectives": objectives,
                    "sections": [{"heading": obj, "body": f"Notes on {obj}."} for obj in objectives],
                },
            }
        # tutor_turn: every turn nudges each objective up by 20 points
        current = prompt.current_mastery or {obj: 0.0 for obj in objectives}
        return {
            "reply": f"Good thinking! Let's go deeper into {prompt.topic}.",
            "objective_updates": [
                {"objective": obj, "mastery_level": min(100.0, level + 20.0)}
                for obj, level in current.items()
            ],
        }

    async def generate(self, prompt: GenerationPrompt, schema: str) -> dict:
        return parse_structured(json.dumps(self._content(prompt, schema)), schema)

    async def stream(self, prompt: GenerationPrompt, schema: str) -> AsyncIterator[str]:
        text = json.dumps(self._content(prompt, schema))
        for i in range(0, len(text), 64):
            yield text[i:i + 64]


# Singleton instance
_content_generator: ContentGenerator | None = None


def get_content_generator() -> ContentGenerator:
    """Factory: returns mock or real generator based on config."""
    global _content_generator
    if _content_generator is None:
        if settings.USE_MOCK_GENERATION:
            logger.info("Using MockContentGenerator")
            _content_generator = MockContentGenerator()
        else:
            logger.info("Using RealContentGenerator -> %s", settings.GENERATION_BASE_URL)
            _content_generator = RealContentGenerator()
    return _content_generator
