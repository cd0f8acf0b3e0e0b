"""Collaboration event log with replay and in-process broadcast.

Every participant action is appended to ``collaboration_events`` before it
is broadcast. Subscribers that fall behind (or reconnect) catch up by
replaying from the last event id they saw, so the log is the source of
truth and the broadcast is only a latency optimisation.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.errors import ValidationFailed
from coursework.models.collaboration_event import EVENT_KINDS, CollaborationEvent

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


def event_to_dict(event: CollaborationEvent) -> dict:
    return {
        "id": event.id,
        "activity_id": event.activity_id,
        "student_id": event.student_id,
        "kind": event.kind,
        "body": event.body,
        "target_event_id": event.target_event_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


class CollaborationHub:
    """Fan-out of freshly appended events to live subscribers, per activity."""

    def __init__(self) -> None:
        self._subscribers: dict[int, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, activity_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers[activity_id].add(queue)
        return queue

    def unsubscribe(self, activity_id: int, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(activity_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[activity_id]

    def subscriber_count(self, activity_id: int) -> int:
        return len(self._subscribers.get(activity_id, ()))

    def publish(self, activity_id: int, event: dict) -> int:
        """Deliver to every subscriber with room; full queues miss the event and must replay."""
        delivered = 0
        for queue in list(self._subscribers.get(activity_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Subscriber queue full for activity %d; event %s dropped",
                    activity_id, event.get("id"),
                )
        return delivered


# Singleton instance
_hub: CollaborationHub | None = None


def get_collaboration_hub() -> CollaborationHub:
    global _hub
    if _hub is None:
        _hub = CollaborationHub()
    return _hub


async def _has_joined(db: AsyncSession, activity_id: int, student_id: int) -> bool:
    result = await db.execute(
        select(CollaborationEvent.id).where(
            CollaborationEvent.activity_id == activity_id,
            CollaborationEvent.student_id == student_id,
            CollaborationEvent.kind == "join",
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def append_event(
    db: AsyncSession,
    activity_id: int,
    student_id: int,
    kind: str,
    body: str | None = None,
    target_event_id: int | None = None,
) -> list[CollaborationEvent]:
    """Validate and stage an event (plus an implicit join); the caller commits and publishes.

    Returns the staged events in log order.
    """
    if kind not in EVENT_KINDS:
        raise ValidationFailed("kind", f"Unknown event kind {kind!r}")
    if kind in ("contribution", "message") and not (body and body.strip()):
        raise ValidationFailed("body", "Body is required")
    if kind == "vote":
        if target_event_id is None:
            raise ValidationFailed("target_event_id", "Votes must reference a contribution")
        target = await db.get(CollaborationEvent, target_event_id)
        if target is None or target.activity_id != activity_id or target.kind != "contribution":
            raise ValidationFailed("target_event_id", "Contribution not found")

    staged: list[CollaborationEvent] = []
    already_joined = await _has_joined(db, activity_id, student_id)
    if kind == "join" and already_joined:
        return staged
    if kind != "join" and not already_joined:
        staged.append(CollaborationEvent(activity_id=activity_id, student_id=student_id, kind="join"))

    staged.append(CollaborationEvent(
        activity_id=activity_id,
        student_id=student_id,
        kind=kind,
        body=body.strip() if body else None,
        target_event_id=target_event_id if kind == "vote" else None,
    ))
    db.add_all(staged)
    return staged


def publish_events(activity_id: int, events: list[CollaborationEvent]) -> None:
    hub = get_collaboration_hub()
    for event in events:
        hub.publish(activity_id, event_to_dict(event))


async def replay(
    db: AsyncSession, activity_id: int, after_id: int = 0, limit: int = 500
) -> list[CollaborationEvent]:
    """Events with id greater than ``after_id``, in log order."""
    result = await db.execute(
        select(CollaborationEvent)
        .where(
            CollaborationEvent.activity_id == activity_id,
            CollaborationEvent.id > after_id,
        )
        .order_by(CollaborationEvent.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def replay_all(
    db: AsyncSession, activity_id: int, after_id: int = 0, page_size: int = 500
) -> list[CollaborationEvent]:
    """Every event after ``after_id``, fetched a page at a time."""
    events: list[CollaborationEvent] = []
    while True:
        page = await replay(db, activity_id, after_id=after_id, limit=page_size)
        events.extend(page)
        if len(page) < page_size:
            return events
        after_id = page[-1].id


async def session_summary(db: AsyncSession, activity_id: int) -> dict:
    """Participants, contribution count and votes per contribution for the whole log."""
    participants, contributions = await collaboration_counts(db, activity_id)
    contribution_ids = (
        await db.execute(
            select(CollaborationEvent.id)
            .where(
                CollaborationEvent.activity_id == activity_id,
                CollaborationEvent.kind == "contribution",
            )
            .order_by(CollaborationEvent.id)
        )
    ).scalars().all()
    votes: dict[int, int] = {cid: 0 for cid in contribution_ids}

    tallies = await db.execute(
        select(CollaborationEvent.target_event_id, func.count(CollaborationEvent.id))
        .where(
            CollaborationEvent.activity_id == activity_id,
            CollaborationEvent.kind == "vote",
        )
        .group_by(CollaborationEvent.target_event_id)
    )
    for target_id, count in tallies.all():
        if target_id in votes:
            votes[target_id] = count
    return {
        "participants": participants,
        "contributions": contributions,
        "votes": votes,
    }


async def collaboration_counts(db: AsyncSession, activity_id: int) -> tuple[int, int]:
    """(distinct participants, contributions) for an activity's log."""
    participants = (
        await db.execute(
            select(func.count(func.distinct(CollaborationEvent.student_id))).where(
                CollaborationEvent.activity_id == activity_id
            )
        )
    ).scalar() or 0
    contributions = (
        await db.execute(
            select(func.count(CollaborationEvent.id)).where(
                CollaborationEvent.activity_id == activity_id,
                CollaborationEvent.kind == "contribution",
            )
        )
    ).scalar() or 0
    return participants, contributions
