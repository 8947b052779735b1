"""SubscriptionPayment model: payment notifications already applied."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class SubscriptionPayment(Base):
    """Append-only; the unique ``payment_id`` makes notification replays no-ops."""

    __tablename__ = "subscription_payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id = Column(String, ForeignKey("subscriptions.id"), nullable=False, index=True)
    payment_id = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False, default=0)
    credits_granted = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    subscription = relationship("Subscription", back_populates="payments")
