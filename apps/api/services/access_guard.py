"""Access guard: authorize a principal for a metered feature."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Literal, Optional

from models.user import ROLE_ADMIN
from services.errors import AccountNotFoundError, FeatureNotFoundError
from services.feature_costs import FeatureCostRegistry
from services.ledger import CreditLedger

logger = logging.getLogger(__name__)


DecisionStatus = Literal["allowed", "allowed_free", "denied", "forbidden", "not_found"]


@dataclass(frozen=True)
class Principal:
    """Authenticated identity resolved by the auth layer."""

    account_id: str
    role: str = "user"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass(frozen=True)
class Decision:
    status: DecisionStatus
    feature_id: Optional[str] = None
    required: Optional[int] = None
    available: Optional[int] = None
    balance_after: Optional[int] = None
    charged: int = 0
    reason: Optional[str] = None

    @property
    def permitted(self) -> bool:
        return self.status in ("allowed", "allowed_free")

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status, "charged": self.charged}
        for key in ("feature_id", "required", "available", "balance_after", "reason"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


ALLOWED = Decision(status="allowed")
FORBIDDEN = Decision(status="forbidden", reason="no_session")


def admin_authorize(principal: Optional[Principal]) -> Decision:
    """Role check for admin-only operations; never touches credits."""
    if principal is None or not principal.account_id:
        return FORBIDDEN
    if not principal.is_admin:
        return Decision(status="forbidden", reason="not_admin")
    return ALLOWED


class AccessGuard:
    """Gate for metered features.

    ``authorize`` debits on success; ``check`` runs the same decision tree without
    mutating anything.
    """

    def __init__(self, registry: FeatureCostRegistry, ledger: CreditLedger):
        self._registry = registry
        self._ledger = ledger

    async def authorize(
        self,
        principal: Optional[Principal],
        feature_id: str,
        description: Optional[str] = None,
    ) -> Decision:
        if principal is None or not principal.account_id:
            return FORBIDDEN

        try:
            quote = await self._registry.get_cost(feature_id)
        except FeatureNotFoundError:
            return Decision(status="not_found", feature_id=feature_id, reason="unknown_feature")

        if not quote.active:
            return Decision(status="allowed_free", feature_id=feature_id)

        try:
            result = await self._ledger.try_debit(
                principal.account_id,
                quote.cost,
                feature_id=feature_id,
                description=description or f"Use of {quote.feature_name}",
            )
        except AccountNotFoundError:
            return Decision(status="not_found", feature_id=feature_id, reason="unknown_account")

        if not result.ok:
            return Decision(
                status="denied",
                feature_id=feature_id,
                required=quote.cost,
                available=result.available,
            )
        return Decision(
            status="allowed",
            feature_id=feature_id,
            required=quote.cost,
            balance_after=result.new_balance,
            charged=quote.cost,
        )

    async def check(self, principal: Optional[Principal], feature_id: str) -> Decision:
        if principal is None or not principal.account_id:
            return FORBIDDEN

        try:
            quote = await self._registry.get_cost(feature_id)
        except FeatureNotFoundError:
            return Decision(status="not_found", feature_id=feature_id, reason="unknown_feature")

        try:
            available = await self._ledger.get_balance(principal.account_id)
        except AccountNotFoundError:
            return Decision(status="not_found", feature_id=feature_id, reason="unknown_account")

        if not quote.active:
            return Decision(status="allowed_free", feature_id=feature_id, required=0, available=available)
        if available < quote.cost:
            return Decision(status="denied", feature_id=feature_id, required=quote.cost, available=available)
        return Decision(status="allowed", feature_id=feature_id, required=quote.cost, available=available)
