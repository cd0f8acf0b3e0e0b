"""Shared pytest fixtures for the coursework test suite."""

from collections.abc import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coursework.database import Base, get_db
from coursework.dependencies import get_generator
from coursework.models import Course, Enrollment, Lesson, User
from coursework.services import scoring
from coursework.services.generation import MockContentGenerator
from coursework.services.outbox import get_outbox
from main import app
from tests.factories import enroll, make_user

# ---------------------------------------------------------------------------
# Async engine & session fixtures (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def async_engine():
    """Create a fresh in-memory async engine per test.

    StaticPool keeps a single connection so every session sees the same database.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async session that rolls back anything left uncommitted."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def clean_process_state():
    """Reset the process-local outbox and simulation matcher around every test."""
    get_outbox().clear()
    matcher = scoring.get_action_matcher()
    yield
    get_outbox().clear()
    scoring.set_action_matcher(matcher)


@pytest.fixture()
async def client(
    session_factory, db_session: AsyncSession
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTPX async client wired to the FastAPI app with test DB override."""

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_generator] = MockContentGenerator

    # Outbox replay opens its own sessions against the test DB
    original_factory = app.state.session_factory
    app.state.session_factory = session_factory

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.session_factory = original_factory


# ---------------------------------------------------------------------------
# Convenience / data fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
async def teacher(db_session: AsyncSession) -> User:
    return await make_user(db_session, "teacher@example.com", "Ms. Rivera", role="teacher")


@pytest.fixture()
async def student(db_session: AsyncSession) -> User:
    return await make_user(db_session, "sam@example.com", "Sam")


@pytest.fixture()
async def other_student(db_session: AsyncSession) -> User:
    return await make_user(db_session, "alex@example.com", "Alex")


@pytest.fixture()
async def course(db_session: AsyncSession, teacher: User) -> Course:
    course = Course(
        teacher_id=teacher.id,
        title="Math 5",
        subject="Mathematics",
        grade_level="5",
        join_code="MATH5A",
    )
    course.learning_objectives = ["Fractions", "Decimals"]
    db_session.add(course)
    await db_session.commit()
    return course


@pytest.fixture()
async def lesson(db_session: AsyncSession, course: Course) -> Lesson:
    lesson = Lesson(course_id=course.id, title="Fractions 101", position=0, join_code="FRAC01")
    lesson.learning_objectives = ["Fractions"]
    db_session.add(lesson)
    await db_session.commit()
    return lesson


@pytest.fixture()
async def enrolled(db_session: AsyncSession, student: User, course: Course) -> Enrollment:
    """``student`` enrolled in ``course``."""
    return await enroll(db_session, student, course)
