"""Account credit balance, verification and consumption router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from routers.auth_scope import get_optional_principal, get_principal
from routers.guard import get_access_guard, get_ledger, raise_for_decision
from routers.rate_limit import rate_limit
from services.access_guard import AccessGuard, Principal
from services.errors import AccountNotFoundError
from services.ledger import CreditLedger

router = APIRouter()
logger = logging.getLogger(__name__)


class ConsumeCreditsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feature_id: str = Field(min_length=1, max_length=64)
    description: Optional[str] = Field(default=None, max_length=500)


@router.get("/balance")
async def credit_balance(
    history: bool = Query(default=False),
    limit: int = Query(default=10, ge=1),
    page: int = Query(default=1, ge=1),
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_ledger),
):
    try:
        balance = await ledger.get_balance(principal.account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Account not found.") from exc

    payload = {"success": True, "credits": balance}
    if history:
        page_size = min(limit, max(int(settings.CREDIT_HISTORY_MAX_LIMIT), 1))
        offset = (page - 1) * page_size
        payload["history"] = await ledger.history(principal.account_id, limit=page_size, offset=offset)
        payload["pagination"] = {"page": page, "limit": page_size, "skip": offset}
    return payload


@router.get("/verify")
async def verify_credits(
    feature_id: str = Query(min_length=1, max_length=64),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
):
    decision = await guard.check(principal, feature_id)
    if decision.status in ("forbidden", "not_found"):
        raise_for_decision(decision)
    return {
        "success": True,
        "has_enough": decision.permitted,
        "required": decision.required,
        "available": decision.available,
        "metered": decision.status != "allowed_free",
    }


@router.post("/consume")
async def consume_credits(
    request: ConsumeCreditsRequest,
    _rate_limit: None = Depends(rate_limit("credits_consume", limit=120, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
):
    decision = await guard.authorize(principal, request.feature_id, description=request.description)
    raise_for_decision(decision)
    return {
        "success": True,
        "feature_id": request.feature_id,
        "consumed": decision.charged,
        "remaining_credits": decision.balance_after,
        "decision": decision.status,
    }
