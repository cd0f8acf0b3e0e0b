"""Operational routes - inspect and replay the write outbox."""

import logging

from fastapi import APIRouter, Depends, Request

from coursework.dependencies import require_teacher
from coursework.models.user import User
from coursework.services.outbox import get_outbox

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/internal", tags=["internal"])


@router.get("/outbox")
async def list_outbox(user: User = Depends(require_teacher)):
    return [
        {
            "kind": e.kind,
            "key": list(e.key),
            "attempts": e.attempts,
            "last_error": e.last_error,
            "queued_at": e.queued_at.isoformat(),
        }
        for e in get_outbox().pending()
    ]


@router.post("/outbox/flush")
async def flush_outbox(request: Request, user: User = Depends(require_teacher)):
    """Replay queued writes now; whatever fails again stays queued."""
    result = await get_outbox().flush(request.app.state.session_factory)
    logger.info("Outbox flush by %d: %d flushed, %d failed", user.id, result.flushed, result.failed)
    return {"flushed": result.flushed, "failed": result.failed, "pending": len(get_outbox())}
