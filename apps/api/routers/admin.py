"""Administrative router: feature costs, plans, usage statistics, accounts and grants."""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from routers.auth_scope import require_admin
from routers.guard import get_ledger, get_plan_catalog, get_registry
from services.access_guard import Principal
from services.errors import (
    AccountNotFoundError,
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    InvalidCreditAmountError,
    PlanNotFoundError,
    store_unavailable_on_failure,
)
from services.feature_costs import FeatureCostRegistry, serialize_feature_cost
from services.ledger import CreditLedger
from services.plans import PlanCatalog, serialize_plan

router = APIRouter()
logger = logging.getLogger(__name__)

FEATURE_ID_PATTERN = r"^[a-z0-9][a-z0-9_-]*$"


class CreateFeatureCostRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feature_id: str = Field(min_length=1, max_length=64, pattern=FEATURE_ID_PATTERN)
    feature_name: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=500)
    credit_cost: int = Field(ge=0, le=100000)
    active: bool = True


class UpsertFeatureCostRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    credit_cost: int = Field(ge=0, le=100000)
    active: bool
    feature_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)


class PatchFeatureCostRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feature_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    credit_cost: Optional[int] = Field(default=None, ge=0, le=100000)
    active: Optional[bool] = None


class GrantCreditsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    credits: int = Field(ge=1, le=1000000)
    reason: Optional[str] = Field(default=None, max_length=500)


class CreatePlanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=1000)
    price_cents: int = Field(ge=0, le=100000000)
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    credits: int = Field(ge=0, le=1000000)
    features: List[str] = Field(default_factory=list, max_length=50)
    active: bool = True


class PatchPlanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    price_cents: Optional[int] = Field(default=None, ge=0, le=100000000)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    credits: Optional[int] = Field(default=None, ge=0, le=1000000)
    features: Optional[List[str]] = Field(default=None, max_length=50)
    active: Optional[bool] = None


@router.get("/credit-settings")
async def list_feature_costs(
    active_only: bool = Query(default=False),
    _admin: Principal = Depends(require_admin),
    registry: FeatureCostRegistry = Depends(get_registry),
):
    rows = await registry.list(active_only=active_only)
    return {"success": True, "settings": [serialize_feature_cost(row) for row in rows]}


@router.post("/credit-settings")
async def create_feature_cost(
    request: CreateFeatureCostRequest,
    admin: Principal = Depends(require_admin),
    registry: FeatureCostRegistry = Depends(get_registry),
):
    try:
        row = await registry.create(
            request.feature_id,
            feature_name=request.feature_name,
            cost=request.credit_cost,
            active=request.active,
            description=request.description,
        )
    except FeatureAlreadyExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.info("admin_feature_cost_create admin=%s feature=%s", admin.account_id, request.feature_id)
    return {"success": True, "setting": serialize_feature_cost(row)}


@router.put("/credit-settings/{feature_id}")
async def upsert_feature_cost(
    request: UpsertFeatureCostRequest,
    feature_id: str = Path(min_length=1, max_length=64, pattern=FEATURE_ID_PATTERN),
    admin: Principal = Depends(require_admin),
    registry: FeatureCostRegistry = Depends(get_registry),
):
    try:
        row = await registry.upsert(
            feature_id,
            request.credit_cost,
            request.active,
            feature_name=request.feature_name,
            description=request.description,
        )
    except InvalidCreditAmountError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info("admin_feature_cost_upsert admin=%s feature=%s", admin.account_id, feature_id)
    return {"success": True, "setting": serialize_feature_cost(row)}


@router.patch("/credit-settings/{feature_id}")
async def patch_feature_cost(
    request: PatchFeatureCostRequest,
    feature_id: str = Path(min_length=1, max_length=64, pattern=FEATURE_ID_PATTERN),
    admin: Principal = Depends(require_admin),
    registry: FeatureCostRegistry = Depends(get_registry),
):
    fields = request.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=422, detail="No fields to update.")
    try:
        row = await registry.update(
            feature_id,
            feature_name=fields.get("feature_name"),
            description=fields.get("description"),
            cost=fields.get("credit_cost"),
            active=fields.get("active"),
        )
    except FeatureNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info("admin_feature_cost_patch admin=%s feature=%s fields=%s", admin.account_id, feature_id, sorted(fields))
    return {"success": True, "setting": serialize_feature_cost(row)}


@router.delete("/credit-settings/{feature_id}")
async def delete_feature_cost(
    feature_id: str = Path(min_length=1, max_length=64, pattern=FEATURE_ID_PATTERN),
    admin: Principal = Depends(require_admin),
    registry: FeatureCostRegistry = Depends(get_registry),
):
    # Soft delete: usage history keeps resolving the feature name.
    try:
        row = await registry.set_active(feature_id, False)
    except FeatureNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info("admin_feature_cost_delete admin=%s feature=%s", admin.account_id, feature_id)
    return {"success": True, "setting": serialize_feature_cost(row)}


@router.get("/plans")
async def list_plans(
    _admin: Principal = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    plans = await catalog.list()
    return {"success": True, "plans": [serialize_plan(plan) for plan in plans]}


@router.post("/plans", status_code=201)
async def create_plan(
    request: CreatePlanRequest,
    admin: Principal = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    plan = await catalog.create(**request.model_dump())
    logger.info("admin_plan_create admin=%s plan=%s", admin.account_id, plan.id)
    return {"success": True, "plan": serialize_plan(plan)}


@router.get("/plans/{plan_id}")
async def get_plan(
    plan_id: str = Path(min_length=1, max_length=64),
    _admin: Principal = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    try:
        plan = await catalog.get(plan_id)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True, "plan": serialize_plan(plan)}


@router.patch("/plans/{plan_id}")
async def patch_plan(
    request: PatchPlanRequest,
    plan_id: str = Path(min_length=1, max_length=64),
    admin: Principal = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    fields = request.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=422, detail="No fields to update.")
    try:
        plan = await catalog.update(plan_id, **fields)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info("admin_plan_patch admin=%s plan=%s fields=%s", admin.account_id, plan_id, sorted(fields))
    return {"success": True, "plan": serialize_plan(plan)}


@router.delete("/plans/{plan_id}")
async def delete_plan(
    plan_id: str = Path(min_length=1, max_length=64),
    admin: Principal = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    # Deactivated plans stay referenced by existing subscriptions.
    try:
        plan = await catalog.deactivate(plan_id)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info("admin_plan_delete admin=%s plan=%s", admin.account_id, plan_id)
    return {"success": True, "plan": serialize_plan(plan)}


@router.get("/credit-usage")
async def credit_usage_stats(
    _admin: Principal = Depends(require_admin),
    registry: FeatureCostRegistry = Depends(get_registry),
    ledger: CreditLedger = Depends(get_ledger),
):
    stats = await ledger.usage_stats(await registry.names())
    return {"success": True, **stats}


@router.get("/users")
async def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    role: Optional[Literal["user", "admin"]] = Query(default=None),
    email: Optional[str] = Query(default=None, max_length=200),
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if role:
        filters.append(User.role == role)
    if email:
        filters.append(User.email.ilike(f"%{email}%"))

    count_query = select(func.count(User.id))
    query = select(User.id, User.email, User.name, User.role, User.credits, User.created_at)
    for criterion in filters:
        count_query = count_query.where(criterion)
        query = query.where(criterion)

    async with store_unavailable_on_failure("Account list could not be read."):
        total = int((await db.execute(count_query)).scalar() or 0)
        result = await db.execute(
            query.order_by(User.created_at.desc(), User.id.asc()).offset((page - 1) * limit).limit(limit)
        )
    users = [
        {
            "id": row.id,
            "email": row.email,
            "name": row.name,
            "role": row.role,
            "credits": row.credits,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in result.all()
    ]
    return {
        "success": True,
        "users": users,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.post("/users/credits")
async def grant_credits(
    request: GrantCreditsRequest,
    admin: Principal = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    try:
        balance = await ledger.grant(
            request.user_id,
            request.credits,
            request.reason or "Credits added by administrator",
            source="admin",
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Account not found.") from exc
    logger.info("admin_grant admin=%s user=%s credits=%s", admin.account_id, request.user_id, request.credits)
    return {
        "success": True,
        "user_id": request.user_id,
        "credits_added": request.credits,
        "balance_after": balance,
    }


@router.get("/users/{user_id}/reconcile")
async def reconcile_user_credits(
    user_id: str,
    _admin: Principal = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    try:
        return await ledger.reconcile(user_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Account not found.") from exc
