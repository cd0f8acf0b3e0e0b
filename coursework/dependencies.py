"""FastAPI dependencies for route handlers."""

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import get_db
from coursework.models.user import User
from coursework.services.auth import get_user_by_email
from coursework.services.generation import ContentGenerator, get_content_generator


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """Require an authenticated and registered user."""
    email = getattr(request.state, "user_email", None)
    if not email:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await get_user_by_email(db, email)
    if user is None:
        raise HTTPException(status_code=403, detail="Not registered")
    return user


async def require_teacher(user: User = Depends(get_current_user)) -> User:
    """Require teacher role."""
    if not user.is_teacher:
        raise HTTPException(status_code=403, detail="Teacher access required")
    return user


async def require_student(user: User = Depends(get_current_user)) -> User:
    """Require student role."""
    if user.role != "student":
        raise HTTPException(status_code=403, detail="Student access required")
    return user


def get_generator() -> ContentGenerator:
    """Overridable in tests via ``app.dependency_overrides``."""
    return get_content_generator()
