"""User registration and profile routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import get_db
from coursework.dependencies import get_current_user
from coursework.models.user import ROLES, User
from coursework.services.auth import create_user, get_user_by_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    role: str = "student"


class UserOut(BaseModel):
    id: int
    email: str
    name: str
    role: str


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, email=user.email, name=user.name, role=user.role)


@router.post("/register", response_model=UserOut, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Register the signed-in identity as a teacher or student."""
    email = request.state.user_email
    if not email:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if body.role not in ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")

    existing = await get_user_by_email(db, email)
    if existing is not None:
        raise HTTPException(status_code=409, detail="Already registered")

    user = await create_user(db, email=email, name=body.name.strip(), role=body.role)
    logger.info("Registered %s as %s", email, body.role)
    return _user_out(user)


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return _user_out(user)
