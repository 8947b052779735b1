"""Authentication dependencies resolving the request principal."""

import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from services.access_guard import Principal, admin_authorize
from services.errors import store_unavailable_on_failure
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


async def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[Principal]:
    """Resolve the principal from a Bearer session token, or None without a valid session."""
    if not credentials or credentials.scheme.lower() != "bearer":
        return None

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        logger.info("session_rejected: %s", exc)
        return None

    async with store_unavailable_on_failure("Session account could not be resolved."):
        result = await db.execute(select(User.id, User.role, User.email).where(User.id == claims.subject))
    row = result.first()
    if row is None:
        logger.info("session_rejected: unknown account %s", claims.subject)
        return None

    return Principal(account_id=row.id, role=row.role, email=row.email or claims.email)


async def get_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=401, detail="Missing or invalid session token.")
    return principal


async def require_admin(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    decision = admin_authorize(principal)
    if decision.status == "allowed":
        return principal
    if decision.reason == "no_session":
        raise HTTPException(status_code=401, detail="Missing or invalid session token.")
    raise HTTPException(status_code=403, detail="Administrator role required.")
