"""Feature cost registry backed by the feature_costs table."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.feature_cost import FeatureCost
from services.errors import (
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    InvalidCreditAmountError,
    store_unavailable_on_failure,
)

logger = logging.getLogger(__name__)


DEFAULT_FEATURE_COSTS: Dict[str, Dict[str, object]] = {
    "copywriting": {"feature_name": "AI Copywriting", "cost": 5},
    "hashtags": {"feature_name": "Hashtag Generator", "cost": 2},
    "content-ideas": {"feature_name": "Content Ideas", "cost": 3},
    "captions": {"feature_name": "Caption Writer", "cost": 2},
    "transcription": {"feature_name": "Transcription", "cost": 10},
    "consultant": {"feature_name": "AI Consultant", "cost": 1},
}


@dataclass(frozen=True)
class FeatureQuote:
    """Snapshot of one feature_costs row taken in a single read."""

    feature_id: str
    feature_name: str
    cost: int
    active: bool


def _validate_cost(cost: int) -> int:
    value = int(cost)
    if value < 0:
        raise InvalidCreditAmountError("credit_cost must be a non-negative integer")
    return value


def serialize_feature_cost(row: FeatureCost) -> Dict[str, object]:
    return {
        "feature_id": row.feature_id,
        "feature_name": row.feature_name,
        "description": row.description or "",
        "credit_cost": row.credit_cost,
        "active": bool(row.active),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


class FeatureCostRegistry:
    """Read-mostly lookup of feature prices, with admin mutations."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def _query(self, statement):
        async with store_unavailable_on_failure("Feature cost catalog could not be read."):
            return await self._db.execute(statement)

    async def _save(self, feature_id: str, row: Optional[FeatureCost] = None) -> None:
        async with store_unavailable_on_failure(f"Cost change for feature {feature_id} was not saved."):
            await self._db.commit()
            if row is not None:
                await self._db.refresh(row)

    async def _get_row(self, feature_id: str) -> Optional[FeatureCost]:
        result = await self._query(select(FeatureCost).where(FeatureCost.feature_id == feature_id))
        return result.scalar_one_or_none()

    async def get_cost(self, feature_id: str) -> FeatureQuote:
        row = await self._get_row(feature_id)
        if row is None:
            raise FeatureNotFoundError(feature_id)
        return FeatureQuote(
            feature_id=row.feature_id,
            feature_name=row.feature_name,
            cost=int(row.credit_cost),
            active=bool(row.active),
        )

    async def list(self, active_only: bool = False) -> List[FeatureCost]:
        query = select(FeatureCost).order_by(FeatureCost.feature_id.asc())
        if active_only:
            query = query.where(FeatureCost.active.is_(True))
        result = await self._query(query)
        return list(result.scalars().all())

    async def names(self) -> Dict[str, str]:
        result = await self._query(select(FeatureCost.feature_id, FeatureCost.feature_name))
        return {feature_id: feature_name for feature_id, feature_name in result.all()}

    async def create(
        self,
        feature_id: str,
        *,
        feature_name: str,
        cost: int,
        active: bool = True,
        description: str = "",
    ) -> FeatureCost:
        credit_cost = _validate_cost(cost)
        if await self._get_row(feature_id) is not None:
            raise FeatureAlreadyExistsError(feature_id)

        row = FeatureCost(
            feature_id=feature_id,
            feature_name=feature_name,
            description=description or "",
            credit_cost=credit_cost,
            active=bool(active),
        )
        self._db.add(row)
        try:
            await self._save(feature_id, row)
        except IntegrityError as exc:
            await self._db.rollback()
            raise FeatureAlreadyExistsError(feature_id) from exc
        logger.info("feature_cost_created feature=%s cost=%s active=%s", feature_id, credit_cost, active)
        return row

    async def upsert(
        self,
        feature_id: str,
        cost: int,
        active: bool,
        *,
        feature_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> FeatureCost:
        credit_cost = _validate_cost(cost)
        row = await self._get_row(feature_id)
        if row is None:
            row = FeatureCost(
                feature_id=feature_id,
                feature_name=feature_name or feature_id,
                description=description or "",
                credit_cost=credit_cost,
                active=bool(active),
            )
            self._db.add(row)
        else:
            row.credit_cost = credit_cost
            row.active = bool(active)
            if feature_name is not None:
                row.feature_name = feature_name
            if description is not None:
                row.description = description
        await self._save(feature_id, row)
        logger.info("feature_cost_upserted feature=%s cost=%s active=%s", feature_id, credit_cost, active)
        return row

    async def update(
        self,
        feature_id: str,
        *,
        feature_name: Optional[str] = None,
        description: Optional[str] = None,
        cost: Optional[int] = None,
        active: Optional[bool] = None,
    ) -> FeatureCost:
        row = await self._get_row(feature_id)
        if row is None:
            raise FeatureNotFoundError(feature_id)
        if cost is not None:
            row.credit_cost = _validate_cost(cost)
        if feature_name is not None:
            row.feature_name = feature_name
        if description is not None:
            row.description = description
        if active is not None:
            row.active = bool(active)
        await self._save(feature_id, row)
        logger.info("feature_cost_updated feature=%s cost=%s active=%s", feature_id, row.credit_cost, row.active)
        return row

    async def set_active(self, feature_id: str, active: bool) -> FeatureCost:
        return await self.update(feature_id, active=active)

    async def seed_defaults(self) -> List[str]:
        """Install the default catalog entries that are missing; returns the ids added."""
        existing = set((await self.names()).keys())
        added: List[str] = []
        for feature_id, defaults in DEFAULT_FEATURE_COSTS.items():
            if feature_id in existing:
                continue
            self._db.add(
                FeatureCost(
                    feature_id=feature_id,
                    feature_name=str(defaults["feature_name"]),
                    description=f"Use of {defaults['feature_name']}",
                    credit_cost=int(defaults["cost"]),
                    active=True,
                )
            )
            added.append(feature_id)
        if added:
            await self._save(",".join(added))
        return added
