"""Outbox for writes that failed to persist.

A failed write is queued here under its idempotency key instead of being
assumed successful. ``flush`` replays each queued write through the handler
registered for its kind; handlers must be idempotent upserts so a replay
after a partial success is harmless.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursework.errors import CourseworkError

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, dict], Awaitable[None]]


@dataclass
class PendingWrite:
    kind: str
    key: tuple
    payload: dict
    attempts: int = 0
    last_error: str | None = None
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class FlushResult:
    flushed: int = 0
    failed: int = 0


class Outbox:
    """Process-local queue of pending writes, deduplicated by (kind, key)."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, tuple], PendingWrite] = {}
        self._handlers: dict[str, Handler] = {}

    def register(self, kind: str, handler: Handler) -> None:
        self._handlers[kind] = handler

    def enqueue(self, kind: str, key: tuple, payload: dict, error: str | None = None) -> PendingWrite:
        """Queue a write; a newer write for the same key replaces the older one."""
        previous = self._entries.get((kind, key))
        entry = PendingWrite(
            kind=kind,
            key=key,
            payload=payload,
            attempts=previous.attempts if previous else 0,
            last_error=error,
        )
        self._entries[(kind, key)] = entry
        logger.warning("Queued %s write %s for retry: %s", kind, key, error)
        return entry

    def pending(self) -> list[PendingWrite]:
        return sorted(self._entries.values(), key=lambda e: e.queued_at)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    async def flush(self, session_factory: async_sessionmaker) -> FlushResult:
        """Replay every queued write once, each in its own transaction."""
        result = FlushResult()
        for entry in self.pending():
            handler = self._handlers.get(entry.kind)
            if handler is None:
                logger.error("No outbox handler registered for %s", entry.kind)
                result.failed += 1
                continue

            async with session_factory() as session:
                try:
                    await handler(session, entry.payload)
                    await session.commit()
                except (SQLAlchemyError, CourseworkError) as e:
                    await session.rollback()
                    entry.attempts += 1
                    entry.last_error = str(e)
                    result.failed += 1
                    logger.error(
                        "Outbox replay of %s %s failed (attempt %d): %s",
                        entry.kind, entry.key, entry.attempts, e,
                    )
                    continue

            self._entries.pop((entry.kind, entry.key), None)
            result.flushed += 1
            logger.info("Outbox replayed %s %s", entry.kind, entry.key)
        return result


# Singleton instance
_outbox: Outbox | None = None


def get_outbox() -> Outbox:
    global _outbox
    if _outbox is None:
        _outbox = Outbox()
    return _outbox
