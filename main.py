"""Coursework - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from coursework.config import settings
from coursework.database import async_session, init_db
from coursework.errors import register_exception_handlers
from coursework.middleware import AuthMiddleware
from coursework.routers import (
    activities,
    analytics,
    assignments,
    attempts,
    collaboration,
    courses,
    generation,
    internal,
    join,
    users,
)

logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # Create data directory if needed
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    # Initialize database tables
    await init_db()
    yield


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

# Sessions for work done outside a request (outbox replay)
app.state.session_factory = async_session

# Middleware
app.add_middleware(AuthMiddleware)

# Errors
register_exception_handlers(app)

# Routers
app.include_router(users.router)
app.include_router(courses.router)
app.include_router(join.router)
app.include_router(activities.router)
app.include_router(attempts.router)
app.include_router(collaboration.router)
app.include_router(assignments.router)
app.include_router(analytics.router)
app.include_router(generation.router)
app.include_router(internal.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
