"""Authentication service - identity-proxy header parsing + user lookup."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.config import settings
from coursework.database import commit_or_raise
from coursework.models.user import User


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Look up a registered user by email."""
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, email: str, name: str, role: str = "student") -> User:
    """Register a new account."""
    user = User(email=email, name=name, role=role)
    db.add(user)
    await commit_or_raise(db)
    await db.refresh(user)
    return user


def get_auth_email(headers) -> str | None:
    """Extract the authenticated email from the identity proxy header."""
    email = headers.get(settings.AUTH_HEADER)
    if email is None:
        return None
    email = email.strip().lower()
    return email or None
