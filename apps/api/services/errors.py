"""Domain errors raised by the credit services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


# Driver and pool failures that mean the store could not be reached, as opposed to
# constraint or programming errors.
STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class CreditsError(RuntimeError):
    """Base class for credit metering failures."""


class AccountNotFoundError(CreditsError):
    """Raised when an account id has no matching user row."""

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found.")
        self.account_id = account_id


class FeatureNotFoundError(CreditsError):
    """Raised when a feature id has no cost configuration."""

    def __init__(self, feature_id: str):
        super().__init__(f"Feature {feature_id} not found.")
        self.feature_id = feature_id


class FeatureAlreadyExistsError(CreditsError):
    def __init__(self, feature_id: str):
        super().__init__(f"A cost configuration for feature {feature_id} already exists.")
        self.feature_id = feature_id


class InvalidCreditAmountError(CreditsError, ValueError):
    """Raised for negative costs/debits and non-positive grants."""


class PlanNotFoundError(CreditsError):
    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} not found.")
        self.plan_id = plan_id


class SubscriptionNotFoundError(CreditsError):
    def __init__(self, reference: str):
        super().__init__(f"Subscription {reference} not found.")
        self.reference = reference


class SubscriptionStateError(CreditsError):
    """Raised for transitions the subscription's current status does not allow."""


class StoreUnavailableError(CreditsError):
    """Transient persistence failure. The transaction was rolled back; retrying the whole call is safe."""


@asynccontextmanager
async def store_unavailable_on_failure(message: str) -> AsyncIterator[None]:
    """Re-raise driver/pool failures inside the block as ``StoreUnavailableError``."""
    try:
        yield
    except STORE_ERRORS as exc:
        raise StoreUnavailableError(message) from exc
