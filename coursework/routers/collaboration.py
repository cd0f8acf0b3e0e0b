"""Collaboration routes - append to, replay and follow an activity's event log."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import commit_or_raise, get_db
from coursework.dependencies import get_current_user, require_student
from coursework.errors import ValidationFailed
from coursework.models.activity import Activity
from coursework.models.user import User
from coursework.services.access import require_activity_access
from coursework.services.collaboration import (
    append_event,
    event_to_dict,
    get_collaboration_hub,
    publish_events,
    replay,
    replay_all,
    session_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activities", tags=["collaboration"])

KEEPALIVE_SECONDS = 15


class EventRequest(BaseModel):
    kind: str
    body: str | None = None
    target_event_id: int | None = None


def _require_collaborative(activity: Activity) -> None:
    if activity.activity_type != "collaborative":
        raise ValidationFailed("kind", "Only collaborative activities have a session log")


@router.post("/{activity_id}/collaboration/events", status_code=201)
async def post_event(
    activity_id: int,
    body: EventRequest,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Append an event; the first action of a student also records their join."""
    activity = await require_activity_access(db, user, activity_id)
    _require_collaborative(activity)

    events = await append_event(
        db, activity.id, user.id, body.kind, body=body.body, target_event_id=body.target_event_id
    )
    if events:
        await commit_or_raise(db)
        publish_events(activity.id, events)
    return {"events": [event_to_dict(e) for e in events]}


@router.get("/{activity_id}/collaboration/events")
async def get_events(
    activity_id: int,
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=500, ge=1, le=1000),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Events after ``after_id`` plus a summary of the whole session so far."""
    activity = await require_activity_access(db, user, activity_id)
    _require_collaborative(activity)

    events = await replay(db, activity.id, after_id=after_id, limit=limit)
    summary = await session_summary(db, activity.id)
    return {
        "events": [event_to_dict(e) for e in events],
        "last_id": events[-1].id if events else after_id,
        "summary": summary,
    }


@router.get("/{activity_id}/collaboration/stream")
async def stream_events(
    activity_id: int,
    after_id: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Server-sent events: the backlog after ``after_id``, then live events as they land."""
    activity = await require_activity_access(db, user, activity_id)
    _require_collaborative(activity)

    # Subscribe before replaying so nothing committed in between is lost
    hub = get_collaboration_hub()
    queue = hub.subscribe(activity.id)
    backlog = [event_to_dict(e) for e in await replay_all(db, activity.id, after_id=after_id)]

    async def event_stream():
        last_id = after_id
        try:
            for event in backlog:
                last_id = event["id"]
                yield f"id: {event['id']}\ndata: {json.dumps(event)}\n\n"
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if event["id"] <= last_id:
                    continue
                last_id = event["id"]
                yield f"id: {event['id']}\ndata: {json.dumps(event)}\n\n"
        finally:
            hub.unsubscribe(activity_id, queue)
            logger.debug("Collaboration stream for activity %d closed at %d", activity_id, last_id)

    return StreamingResponse(event_stream(), media_type="text/event-stream")
