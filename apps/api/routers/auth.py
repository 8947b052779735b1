"""
Authentication router exposing the resolved principal.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from routers.auth_scope import get_principal
from services.access_guard import Principal
from services.errors import store_unavailable_on_failure

router = APIRouter()


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    role: str
    is_admin: bool
    credits: int


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Get current account, role and credit balance."""
    async with store_unavailable_on_failure("Account could not be read."):
        result = await db.execute(
            select(User.id, User.email, User.name, User.credits).where(User.id == principal.account_id)
        )
    row = result.first()
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")

    return CurrentUserResponse(
        user_id=row.id,
        email=row.email,
        name=row.name,
        role=principal.role,
        is_admin=principal.is_admin,
        credits=int(row.credits or 0),
    )
