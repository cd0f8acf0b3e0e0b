"""Content generation routes for teachers - quizzes and activity drafts."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from coursework.dependencies import get_generator, require_teacher
from coursework.errors import GenerationError
from coursework.models.user import User
from coursework.services.generation import ContentGenerator, GenerationPrompt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generate", tags=["generation"])


def sse_data(chunk: str) -> str:
    """One SSE message; each line of the chunk gets its own data field."""
    return "".join(f"data: {line}\n" for line in chunk.split("\n")) + "\n"


@router.post("/quiz")
async def generate_quiz(
    prompt: GenerationPrompt,
    user: User = Depends(require_teacher),
    generator: ContentGenerator = Depends(get_generator),
):
    logger.info("Teacher %d generating quiz on %r", user.id, prompt.topic)
    return await generator.generate(prompt, "quiz")


@router.post("/activity")
async def generate_activity(
    prompt: GenerationPrompt,
    user: User = Depends(require_teacher),
    generator: ContentGenerator = Depends(get_generator),
):
    logger.info("Teacher %d generating activity on %r", user.id, prompt.topic)
    return await generator.generate(prompt, "activity")


@router.post("/activity/stream")
async def stream_activity(
    prompt: GenerationPrompt,
    user: User = Depends(require_teacher),
    generator: ContentGenerator = Depends(get_generator),
):
    """Relay provider chunks as server-sent events, ending with a done or error event."""

    async def events():
        try:
            async for chunk in generator.stream(prompt, "activity"):
                yield sse_data(chunk)
        except GenerationError as e:
            logger.error("Activity stream for teacher %d failed: %s", user.id, e.detail)
            yield f"event: error\ndata: {e.detail}\n\n"
            return
        yield "event: done\ndata: [DONE]\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")
